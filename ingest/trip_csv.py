"""
Trip CSV files - read tracker exports into raw rows, write the board back out

Rows come back exactly as the file has them (raw headers, string cells);
header normalization and projection happen in the shared row pipeline.
"""

import csv
import io
import logging
from pathlib import Path
from typing import Dict, Iterable, List, TextIO, Union

from models.card import Card
from schemas import trip_csv_schema as schema

logger = logging.getLogger(__name__)

BUCKET_COLUMN = "Bucket"
ASSIGNED_TO_COLUMN = "Assigned To"

EXPORT_HEADERS: List[str] = schema.CANONICAL_HEADERS + [BUCKET_COLUMN, ASSIGNED_TO_COLUMN]


def _is_blank(row: Dict) -> bool:
    return all(value is None or not str(value).strip() for value in row.values())


def parse_trip_csv(stream: TextIO) -> List[Dict[str, str]]:
    """
    Read every data row of a CSV stream as a header -> cell dict.

    Lines with no content in any cell are skipped.
    """
    reader = csv.DictReader(stream)
    rows = [row for row in reader if not _is_blank(row)]
    logger.debug(f"Parsed {len(rows)} rows, headers: {reader.fieldnames}")
    return rows


def parse_trip_csv_bytes(data: bytes) -> List[Dict[str, str]]:
    """Decode an uploaded file (UTF-8, with or without a BOM) and parse it."""
    return parse_trip_csv(io.StringIO(data.decode("utf-8-sig"), newline=""))


def read_trip_csv(path: Union[str, Path]) -> List[Dict[str, str]]:
    with open(path, "r", encoding="utf-8-sig", newline="") as f:
        return parse_trip_csv(f)


def card_to_row(card: Card) -> Dict[str, str]:
    """Render a card under the canonical export headers."""
    return {
        schema.TRIP_ID: card.trip_id,
        schema.TRAVELER: card.traveler,
        schema.USA_DEST: card.usa_dest,
        schema.ITEMS_ACCEPTED: str(card.items_accepted),
        schema.ITEMS_READY: str(card.items_ready_to_process),
        schema.VERIFICATION_STATUS: card.trip_verification_status,
        schema.SHIP_BUNDLE: card.ship_bundle,
        schema.TOTAL_BUNDLE_WEIGHT: card.total_bundle_weight,
        schema.LATAM_DEPARTURE: card.latam_departure,
        schema.LATAM_ARRIVAL: card.latam_arrival,
        schema.MAX_USA_DATE: card.max_usa_date,
        BUCKET_COLUMN: card.current_bucket.value,
        ASSIGNED_TO_COLUMN: card.assigned_to or "",
    }


def write_trip_csv(path: Union[str, Path], cards: Iterable[Card]) -> int:
    """
    Write cards to a CSV file.

    Returns:
        Number of rows written
    """
    count = 0
    with open(path, "w", encoding="utf-8", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=EXPORT_HEADERS)
        writer.writeheader()
        for card in cards:
            writer.writerow(card_to_row(card))
            count += 1
    return count
