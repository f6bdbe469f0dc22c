"""
Row projection - canonical CSV row -> validated TripUpdate

A row without a Trip ID is rejected with MissingTripId; every other problem
(absent columns, non-numeric counts) resolves to a default so one bad cell
never costs the whole row. Batches collect one warning per rejected row and
carry on with the rest.
"""

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Mapping

from core.errors import MissingTripId
from models.card import TripUpdate
from schemas import trip_csv_schema as schema

logger = logging.getLogger(__name__)

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)", re.ASCII)


@dataclass
class ProjectionResult:
    """Trip updates from a batch, plus one warning per skipped row."""
    updates: List[TripUpdate] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def skipped(self) -> int:
        return len(self.warnings)


def coerce_text(value: Any) -> str:
    """Render a cell as trimmed text. None becomes ''."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def parse_count(value: Any) -> int:
    """
    Parse an item count the way spreadsheet exports need it.

    Accepts ints, integral floats and strings with a leading integer
    ("12", " 7 items", "3.9" -> 3). Anything else, and anything negative,
    counts as 0.
    """
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        count = value
    elif isinstance(value, float):
        if not math.isfinite(value):
            return 0
        count = int(value)
    else:
        match = _LEADING_INT.match(str(value))
        if not match:
            return 0
        count = int(match.group(1))
    return max(count, 0)


def project_row(row: Mapping[str, Any], row_number: int = None) -> TripUpdate:
    """
    Project one canonical row into a TripUpdate.

    Args:
        row: Row already passed through normalize_row
        row_number: 1-based position in the batch, used in the error message

    Raises:
        MissingTripId: Trip ID is absent or blank
    """
    trip_id = coerce_text(row.get(schema.TRIP_ID))
    if not trip_id:
        raise MissingTripId(row_number)

    accepted = parse_count(row.get(schema.ITEMS_ACCEPTED))
    ready = parse_count(row.get(schema.ITEMS_READY))
    if ready > accepted:
        ready = accepted

    return TripUpdate(
        trip_id=trip_id,
        traveler=coerce_text(row.get(schema.TRAVELER)),
        usa_dest=coerce_text(row.get(schema.USA_DEST)),
        items_accepted=accepted,
        items_ready_to_process=ready,
        total_bundle_weight=coerce_text(row.get(schema.TOTAL_BUNDLE_WEIGHT)),
        trip_verification_status=coerce_text(row.get(schema.VERIFICATION_STATUS)),
        ship_bundle=coerce_text(row.get(schema.SHIP_BUNDLE)),
        latam_departure=coerce_text(row.get(schema.LATAM_DEPARTURE)),
        latam_arrival=coerce_text(row.get(schema.LATAM_ARRIVAL)),
        max_usa_date=coerce_text(row.get(schema.MAX_USA_DATE)),
    )


def project_rows(rows: Iterable[Mapping[str, Any]]) -> ProjectionResult:
    """Project a batch of canonical rows, skipping rows without a Trip ID."""
    result = ProjectionResult()
    for idx, row in enumerate(rows, start=1):
        try:
            result.updates.append(project_row(row, row_number=idx))
        except MissingTripId as e:
            logger.warning(f"{e.message}, skipping")
            result.warnings.append(e.message)
    return result


def parse_rows(raw_rows: Iterable[Mapping[Any, Any]]) -> ProjectionResult:
    """Normalize headers of raw rows, then project them.

    Entries that are not mappings normalize to an empty row and are reported
    as missing a Trip ID.
    """
    return project_rows(
        schema.normalize_row(row) if isinstance(row, Mapping) else {}
        for row in raw_rows
    )
