"""Data models for the bundle board."""
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class Bucket(str, Enum):
    """Pipeline stage of a trip, in board order."""
    PENDING = "Pending/In Progress"
    APPROVED_NOT_TA = "Approved, Not TA'd"
    APPROVED_TA_IN_PROGRESS = "Approved, TA in progress"
    TA_COMPLETED = "TA Completed, Ready for bundle"
    BUNDLING = "Bundling in Progress"
    BUNDLE_COMPLETED = "Bundle Completed"
    LABELED = "Labeled"

    @classmethod
    def parse(cls, value: Any) -> "Bucket":
        """Look up a bucket by its display name. Raises ValueError if unknown."""
        if isinstance(value, cls):
            return value
        return cls(str(value).strip())


BUCKET_ORDER: Tuple[Bucket, ...] = tuple(Bucket)

ASSIGNEES: Tuple[str, ...] = ("Greg", "Caz", "Justin", "Ansley")

TX_APPROVED = "TX Approved"


# Python attribute -> wire (JSON/camelCase) name
WIRE_NAMES: Dict[str, str] = {
    "trip_id": "tripId",
    "traveler": "traveler",
    "usa_dest": "usaDest",
    "items_accepted": "itemsAccepted",
    "items_ready_to_process": "itemsReadyToProcess",
    "total_bundle_weight": "totalBundleWeight",
    "trip_verification_status": "tripVerificationStatus",
    "ship_bundle": "shipBundle",
    "latam_departure": "latamDeparture",
    "latam_arrival": "latamArrival",
    "max_usa_date": "maxUSADate",
    "assigned_to": "assignedTo",
    "current_bucket": "currentBucket",
    "manually_moved": "manuallyMoved",
}


def _as_count(value: Any) -> int:
    """Coerce a stored count to a non-negative int."""
    try:
        count = int(value)
    except (TypeError, ValueError):
        return 0
    return max(count, 0)


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


@dataclass
class TripUpdate:
    """
    One validated CSV row, ready to merge into the card store.

    Counts are already clamped: items_ready_to_process <= items_accepted.
    """
    trip_id: str
    traveler: str = ""
    usa_dest: str = ""
    items_accepted: int = 0
    items_ready_to_process: int = 0
    total_bundle_weight: str = ""
    trip_verification_status: str = ""
    ship_bundle: str = ""
    latam_departure: str = ""
    latam_arrival: str = ""
    max_usa_date: str = ""


# Fields a CSV merge refreshes on an existing card
DESCRIPTIVE_FIELDS: Tuple[str, ...] = tuple(
    f.name for f in fields(TripUpdate) if f.name != "trip_id"
)


@dataclass
class Card:
    """A trip on the board. One per trip_id."""
    trip_id: str
    traveler: str = ""
    usa_dest: str = ""
    items_accepted: int = 0
    items_ready_to_process: int = 0
    total_bundle_weight: str = ""
    trip_verification_status: str = ""
    ship_bundle: str = ""
    latam_departure: str = ""
    latam_arrival: str = ""
    max_usa_date: str = ""
    assigned_to: Optional[str] = None
    current_bucket: Bucket = Bucket.PENDING
    manually_moved: bool = False

    def __post_init__(self):
        if self.items_ready_to_process > self.items_accepted:
            self.items_ready_to_process = self.items_accepted

    def copy(self, **changes) -> "Card":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize using wire field names."""
        data = {}
        for attr, wire in WIRE_NAMES.items():
            value = getattr(self, attr)
            if isinstance(value, Bucket):
                value = value.value
            data[wire] = value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Card":
        """
        Build a card from a wire-format dict.

        Unknown buckets fall back to Pending/In Progress and counts are
        coerced to non-negative ints, so a hand-edited cards.json never
        produces an invalid card.
        """
        trip_id = _as_text(data.get("tripId")).strip()
        if not trip_id:
            raise ValueError("card has no tripId")

        try:
            bucket = Bucket.parse(data.get("currentBucket", Bucket.PENDING.value))
        except ValueError:
            bucket = Bucket.PENDING

        assigned_to = data.get("assignedTo") or None

        return cls(
            trip_id=trip_id,
            traveler=_as_text(data.get("traveler")),
            usa_dest=_as_text(data.get("usaDest")),
            items_accepted=_as_count(data.get("itemsAccepted")),
            items_ready_to_process=_as_count(data.get("itemsReadyToProcess")),
            total_bundle_weight=_as_text(data.get("totalBundleWeight")),
            trip_verification_status=_as_text(data.get("tripVerificationStatus")),
            ship_bundle=_as_text(data.get("shipBundle")),
            latam_departure=_as_text(data.get("latamDeparture")),
            latam_arrival=_as_text(data.get("latamArrival")),
            max_usa_date=_as_text(data.get("maxUSADate")),
            assigned_to=assigned_to,
            current_bucket=bucket,
            manually_moved=bool(data.get("manuallyMoved", False)),
        )


@dataclass
class MergeReport:
    """Outcome of merging a batch of trip updates."""
    created: int = 0
    updated: int = 0
    cards: list = field(default_factory=list)

    @property
    def applied(self) -> int:
        return self.created + self.updated
