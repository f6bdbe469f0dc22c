"""
Trip CSV Schema - canonical column names for trip imports

Exports from the trip tracker arrive with loose headers: byte-order marks,
stray whitespace, underscores instead of spaces, British spellings. Every row
is normalized to the canonical header names below before it is projected
into a trip update. The server and the board client both import this module,
so an uploaded file normalizes identically on either side.
"""

import re
from typing import Any, Dict, List, Mapping

# Canonical column names, in export order
TRIP_ID = "Trip ID"
TRAVELER = "Traveler"
USA_DEST = "USA Dest"
ITEMS_ACCEPTED = "Items Accepted"
ITEMS_READY = "Items Ready to process"
VERIFICATION_STATUS = "Trip Verification Status"
SHIP_BUNDLE = "Ship Bundle"
TOTAL_BUNDLE_WEIGHT = "Total Bundle Weight"
LATAM_DEPARTURE = "LATAM Departure"
LATAM_ARRIVAL = "LATAM Arrival"
MAX_USA_DATE = "Max USA Date"

CANONICAL_HEADERS: List[str] = [
    TRIP_ID,
    TRAVELER,
    USA_DEST,
    ITEMS_ACCEPTED,
    ITEMS_READY,
    VERIFICATION_STATUS,
    SHIP_BUNDLE,
    TOTAL_BUNDLE_WEIGHT,
    LATAM_DEPARTURE,
    LATAM_ARRIVAL,
    MAX_USA_DATE,
]

# Lookup key (lowercase, single-spaced) -> canonical header
HEADER_ALIASES: Dict[str, str] = {
    "trip id": TRIP_ID,
    "tripid": TRIP_ID,
    "traveler": TRAVELER,
    "traveller": TRAVELER,
    "usa dest": USA_DEST,
    "usa destination": USA_DEST,
    "items accepted": ITEMS_ACCEPTED,
    "items ready to process": ITEMS_READY,
    "items ready": ITEMS_READY,
    "trip verification status": VERIFICATION_STATUS,
    "ship bundle": SHIP_BUNDLE,
    "total bundle weight": TOTAL_BUNDLE_WEIGHT,
    "latam departure": LATAM_DEPARTURE,
    "latam arrival": LATAM_ARRIVAL,
    "max usa date": MAX_USA_DATE,
}

BOM = "\ufeff"
_SEPARATOR_RUN = re.compile(r"[\s_]+")


def normalize_key(key: Any = "") -> str:
    """
    Map a raw column name to its canonical header.

    Unknown names come back with the BOM removed and surrounding whitespace
    trimmed, case unchanged. Applying it twice gives the same result.
    """
    if key is None:
        return ""
    cleaned = str(key).replace(BOM, "").strip()
    lookup_key = _SEPARATOR_RUN.sub(" ", cleaned.lower())
    return HEADER_ALIASES.get(lookup_key, cleaned)


def normalize_row(row: Mapping[Any, Any] = None) -> Dict[str, Any]:
    """
    Normalize every key of a raw row.

    Drops None values and keys that clean to nothing; trims string values and
    leaves other values untouched.
    """
    normalized: Dict[str, Any] = {}
    if not row:
        return normalized
    for key, value in row.items():
        if value is None:
            continue
        header = normalize_key(key)
        if not header:
            continue
        normalized[header] = value.strip() if isinstance(value, str) else value
    return normalized
