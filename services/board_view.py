"""
Board views - filters, sorting and summary statistics over a card set

Pure functions: every board applies them to its own copy of the cards, and
the server uses the same code for GET /api/summary.
"""

import math
import re
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Optional, Union

from models.card import ASSIGNEES, BUCKET_ORDER, Bucket, Card

FILTER_ALL = "all"
FILTER_TODAY = "today"
FILTER_THIS_WEEK = "this-week"
FILTER_NEXT_WEEK = "next-week"
FILTER_AMBASSADORS = "ambassadors"
FILTER_CUSTOM_RANGE = "custom-range"
FILTER_ASSIGNEE = "assignee"

FILTER_NAMES = (
    FILTER_ALL,
    FILTER_TODAY,
    FILTER_THIS_WEEK,
    FILTER_NEXT_WEEK,
    FILTER_AMBASSADORS,
    FILTER_CUSTOM_RANGE,
    FILTER_ASSIGNEE,
)

DATE_FILTERS = frozenset({FILTER_TODAY, FILTER_THIS_WEEK, FILTER_NEXT_WEEK, FILTER_CUSTOM_RANGE})

SHIP_DATE_FORMATS = [
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%m/%d/%y",
    "%m-%d-%Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%b %d %Y",
    "%d %b %Y",
    "%d %B %Y",
]

_ISO_PREFIX = re.compile(r"^(\d{4}-\d{2}-\d{2})[T ]")
_LEADING_FLOAT = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)", re.ASCII)


def parse_ship_date(value: Optional[str]) -> Optional[date]:
    """Parse a Ship Bundle cell. Returns None when it isn't a recognizable date."""
    if not value:
        return None
    text = str(value).strip()
    iso_match = _ISO_PREFIX.match(text)
    if iso_match:
        text = iso_match.group(1)
    for fmt in SHIP_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def parse_weight(value: Optional[str]) -> float:
    """Parse a leading decimal number; unparsable weights count as 0."""
    if value is None:
        return 0.0
    match = _LEADING_FLOAT.match(str(value))
    if not match:
        return 0.0
    weight = float(match.group(1))
    return weight if math.isfinite(weight) else 0.0


def _normalize_name(name: Optional[str]) -> str:
    return (name or "").strip().lower()


def week_bounds(today: date, weeks_ahead: int = 0):
    """Monday and Sunday of the week containing today (shifted by weeks_ahead)."""
    monday = today - timedelta(days=today.weekday()) + timedelta(weeks=weeks_ahead)
    return monday, monday + timedelta(days=6)


@dataclass(frozen=True)
class ViewFilter:
    """A named board filter plus whatever parameters it needs."""
    name: str = FILTER_ALL
    start: Optional[date] = None
    end: Optional[date] = None
    assignee: Optional[str] = None
    roster: FrozenSet[str] = field(default_factory=frozenset)

    def __post_init__(self):
        if self.name not in FILTER_NAMES:
            raise ValueError(f"Unknown filter: {self.name!r}")

    @classmethod
    def custom_range(cls, start: Optional[date], end: Optional[date]) -> "ViewFilter":
        if start is None or end is None:
            raise ValueError("custom-range needs both a start and an end date")
        return cls(FILTER_CUSTOM_RANGE, start=start, end=end)

    @classmethod
    def for_assignee(cls, assignee: str) -> "ViewFilter":
        return cls(FILTER_ASSIGNEE, assignee=assignee)

    @classmethod
    def ambassadors(cls, roster: Iterable[str]) -> "ViewFilter":
        return cls(FILTER_AMBASSADORS, roster=frozenset(roster))


def is_ambassador(card: Card, roster: FrozenSet[str]) -> bool:
    traveler = (card.traveler or "").strip()
    if not traveler:
        return False
    lowered = {_normalize_name(name) for name in roster}
    return traveler.lower() in lowered or traveler in roster


def passes(card: Card, view: ViewFilter, today: Optional[date] = None) -> bool:
    """Check whether a card is visible under a filter."""
    if view.name == FILTER_ALL:
        return True
    if view.name == FILTER_ASSIGNEE:
        return card.assigned_to == view.assignee
    if view.name == FILTER_AMBASSADORS:
        return is_ambassador(card, view.roster)

    ship_date = parse_ship_date(card.ship_bundle)
    if ship_date is None:
        return False

    today = today or date.today()
    if view.name == FILTER_CUSTOM_RANGE:
        if view.start is None or view.end is None:
            return False
        return view.start <= ship_date <= view.end
    if view.name == FILTER_TODAY:
        return ship_date == today
    if view.name == FILTER_THIS_WEEK:
        start, end = week_bounds(today)
        return start <= ship_date <= end
    if view.name == FILTER_NEXT_WEEK:
        start, end = week_bounds(today, weeks_ahead=1)
        return start <= ship_date <= end
    return True


def sort_for_display(cards: Iterable[Card]) -> List[Card]:
    """Soonest ship date first; cards without a parsable date go last."""
    def key(card: Card):
        ship_date = parse_ship_date(card.ship_bundle)
        return (ship_date is None, ship_date or date.min, card.trip_id)
    return sorted(cards, key=key)


def visible_cards(
    cards: Iterable[Card],
    view: Optional[ViewFilter] = None,
    today: Optional[date] = None,
) -> List[Card]:
    """Cards passing the filter, in display order."""
    view = view or ViewFilter()
    return sort_for_display(card for card in cards if passes(card, view, today))


@dataclass
class BoardSummary:
    """Totals over the visible cards."""
    total_trips: int = 0
    items_accepted: int = 0
    total_weight: float = 0.0

    @property
    def weight_display(self) -> str:
        return f"{self.total_weight:.2f}"

    def summary_line(self) -> str:
        return (f"Total Trips: {self.total_trips} | Items Accepted: {self.items_accepted} | "
                f"Total Bundle Weight: {self.weight_display} lbs")

    def to_dict(self) -> Dict[str, Union[int, str]]:
        return {
            "totalTrips": self.total_trips,
            "itemsAccepted": self.items_accepted,
            "totalBundleWeight": self.weight_display,
        }


def summarize(cards: Iterable[Card]) -> BoardSummary:
    summary = BoardSummary()
    for card in cards:
        summary.total_trips += 1
        summary.items_accepted += card.items_accepted or 0
        summary.total_weight += parse_weight(card.total_bundle_weight)
    return summary


def bucket_counts(cards: Iterable[Card]) -> "OrderedDict[Bucket, int]":
    """Cards per bucket, in board order. Drives the bar chart."""
    counts = OrderedDict((bucket, 0) for bucket in BUCKET_ORDER)
    for card in cards:
        try:
            bucket = Bucket.parse(card.current_bucket)
        except ValueError:
            continue
        counts[bucket] += 1
    return counts


def assignee_counts(cards: Iterable[Card]) -> Dict[str, int]:
    counts = {name: 0 for name in ASSIGNEES}
    for card in cards:
        if card.assigned_to in counts:
            counts[card.assigned_to] += 1
    return counts


def ship_countdown(card: Card, today: Optional[date] = None) -> Optional[str]:
    """Badge text for a card's departure, or None without a ship date."""
    ship_date = parse_ship_date(card.ship_bundle)
    if ship_date is None:
        return None
    days = (ship_date - (today or date.today())).days
    if days <= 0:
        return "Leaves Today"
    if days == 1:
        return "Leaves Tomorrow"
    return f"Leaves in {days} days"


def format_time_remaining(seconds: float) -> str:
    """Render a countdown as 'Xd Yh Zm'. Negative durations show as zero."""
    if seconds < 0:
        return "0d 0h 0m"
    total = int(seconds)
    days, rest = divmod(total, 86400)
    hours, rest = divmod(rest, 3600)
    minutes = rest // 60
    return f"{days}d {hours}h {minutes}m"


def load_ambassador_roster(path: Optional[Union[str, Path]]) -> FrozenSet[str]:
    """Read one traveler name per line; blank lines and # comments are ignored."""
    if not path:
        return frozenset()
    names = set()
    with open(path, encoding="utf-8") as f:
        for line in f:
            name = line.strip()
            if name and not name.startswith("#"):
                names.add(name)
    return frozenset(names)
