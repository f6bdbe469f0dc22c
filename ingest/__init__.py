"""Trip CSV ingestion module."""

from ingest.trip_csv import (
    parse_trip_csv as parse_trip_csv,
)
from ingest.trip_csv import (
    parse_trip_csv_bytes as parse_trip_csv_bytes,
)
from ingest.trip_csv import (
    read_trip_csv as read_trip_csv,
)
from ingest.trip_csv import (
    write_trip_csv as write_trip_csv,
)

__all__ = ["parse_trip_csv", "parse_trip_csv_bytes", "read_trip_csv", "write_trip_csv"]
