"""
Card Store - the authoritative trip_id -> Card mapping

Features:
1. Merge CSV-derived trip updates (bucket re-derived unless manually moved)
2. Manual edits of bucket / assignee (marks the card manually moved)
3. Bulk clear of the Bundle Completed stage
4. JSON file persistence, rewritten atomically after every mutation

Every mutating operation runs under one lock, builds the new mapping as a
copy, writes it to disk, and only then swaps it in and notifies listeners.
A failed write raises PersistenceFailure and leaves memory as it was.
"""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from core.errors import (
    CardNotFoundError,
    InvalidBatchShape,
    InvalidEdit,
    MalformedCachedState,
    PersistenceFailure,
)
from models.card import ASSIGNEES, Bucket, Card, DESCRIPTIVE_FIELDS, MergeReport, TripUpdate
from models.events import ChangeEvent
from services.bucket_classifier import classify
from services.row_projector import coerce_text

logger = logging.getLogger(__name__)

Listener = Callable[[ChangeEvent], None]

_UNSET: Any = object()


def validate_bucket(value: Any) -> Bucket:
    """Parse a bucket name, raising InvalidEdit if it is not a known stage."""
    try:
        return Bucket.parse(value)
    except ValueError:
        raise InvalidEdit(f"Unknown bucket: {value!r}")


def validate_assignee(value: Any) -> Optional[str]:
    """Normalize an assignee; '' and None both mean unassigned."""
    if value is None or value == "":
        return None
    if value not in ASSIGNEES:
        raise InvalidEdit(f"Unknown assignee: {value!r}")
    return value


def merge_update(existing: Optional[Card], update: TripUpdate) -> Card:
    """
    Merge one trip update into a card, returning a new card.

    New cards get a classified bucket, no assignee and manually_moved False.
    Existing cards get every descriptive field refreshed; their bucket is
    re-derived only if nobody moved them by hand, and the assignee and manual
    flag are kept.
    """
    fields = {name: getattr(update, name) for name in DESCRIPTIVE_FIELDS}
    bucket = classify(
        update.trip_verification_status,
        update.items_accepted,
        update.items_ready_to_process,
    )
    if existing is None:
        return Card(
            trip_id=update.trip_id,
            assigned_to=None,
            current_bucket=bucket,
            manually_moved=False,
            **fields,
        )
    if not existing.manually_moved:
        fields["current_bucket"] = bucket
    return existing.copy(**fields)


def load_snapshot(path: Path) -> Dict[str, Card]:
    """
    Read a persisted card mapping.

    A missing file is an empty board. A malformed file is logged and also
    treated as empty; individual bad entries are skipped.
    """
    if not path.exists():
        logger.info(f"No card file at {path}, starting empty")
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            raw = json.load(f)
        if not isinstance(raw, dict):
            raise MalformedCachedState(f"expected a JSON object, got {type(raw).__name__}")
    except (OSError, ValueError, MalformedCachedState) as e:
        logger.warning(f"Malformed card file {path}, starting empty: {e}")
        return {}

    cards: Dict[str, Card] = {}
    for key, entry in raw.items():
        if not isinstance(entry, dict):
            logger.warning(f"Skipping malformed card entry {key!r}")
            continue
        try:
            card = Card.from_dict(entry)
        except ValueError as e:
            logger.warning(f"Skipping malformed card entry {key!r}: {e}")
            continue
        cards[card.trip_id] = card
    return cards


def write_snapshot(path: Path, cards: Dict[str, Card]) -> None:
    """Rewrite the whole card file via a temp file + rename."""
    payload = {trip_id: card.to_dict() for trip_id, card in cards.items()}
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.remove(tmp_name)
        raise


class CardStore:
    """
    Authoritative in-memory card mapping with file-backed persistence.

    Usage:
        with CardStore.open("data/cards.json") as store:
            store.add_listener(broadcaster.publish)
            store.merge_batch(updates)

    A store created without a path keeps everything in memory.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path else None
        self._cards: Dict[str, Card] = {}
        self._listeners: List[Listener] = []
        self._lock = threading.RLock()
        self._closed = False
        self._mutated = False

    @classmethod
    def open(cls, path: Optional[Union[str, Path]] = None) -> "CardStore":
        """Create a store and load its persisted state."""
        store = cls(path)
        store.load()
        return store

    def load(self) -> None:
        """(Re)load cards from the backing file."""
        with self._lock:
            self._cards = load_snapshot(self.path) if self.path else {}
            self._mutated = False
            logger.info(f"Card store loaded: {len(self._cards)} cards")

    def close(self) -> None:
        """Flush to disk if anything changed since load. Safe to call twice."""
        with self._lock:
            if self._closed:
                return
            if self._mutated:
                self._persist(self._cards)
            self._closed = True
            logger.info("Card store closed")

    def __enter__(self) -> "CardStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, listener: Listener) -> None:
        """Register a callable invoked once per change event."""
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, events: Iterable[ChangeEvent]) -> None:
        for event in events:
            for listener in list(self._listeners):
                try:
                    listener(event)
                except Exception:
                    logger.exception(f"Listener failed for {event.type.value} event")

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _persist(self, cards: Dict[str, Card]) -> None:
        if self.path is None:
            return
        try:
            write_snapshot(self.path, cards)
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to write card file {self.path}: {e}", exc_info=True)
            raise PersistenceFailure(f"Failed to save cards: {e}") from e

    def _commit(self, cards: Dict[str, Card], events: List[ChangeEvent]) -> None:
        """Persist, swap in, then notify. Caller holds the lock."""
        self._persist(cards)
        self._cards = cards
        self._mutated = True
        self._emit(events)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def merge_batch(self, updates: Iterable[TripUpdate]) -> MergeReport:
        """
        Upsert a batch of trip updates in input order (see merge_update).

        Emits one card-updated event per update, including repeats of an
        identical batch.
        """
        updates = list(updates)
        report = MergeReport()
        if not updates:
            return report

        with self._lock:
            cards = dict(self._cards)
            events: List[ChangeEvent] = []

            for update in updates:
                existing = cards.get(update.trip_id)
                card = merge_update(existing, update)
                if existing is None:
                    report.created += 1
                else:
                    report.updated += 1

                cards[card.trip_id] = card
                report.cards.append(card.copy())
                events.append(ChangeEvent.card_updated(card.copy()))
                logger.debug(f"Card set: {card.trip_id} -> {card.current_bucket.value}")

            self._commit(cards, events)

        logger.info(
            f"Merged {report.applied} trip updates "
            f"({report.created} created, {report.updated} updated); {len(self._cards)} cards total"
        )
        return report

    def apply_manual_edit(
        self,
        trip_id: str,
        current_bucket: Any = _UNSET,
        assigned_to: Any = _UNSET,
    ) -> Card:
        """
        Overwrite a card's bucket and/or assignee by hand.

        Always marks the card manually moved, so later CSV merges keep its
        bucket.

        Raises:
            CardNotFoundError: No card with this trip_id
            InvalidEdit: Unknown bucket or assignee
        """
        with self._lock:
            existing = self._cards.get(trip_id)
            if existing is None:
                raise CardNotFoundError(trip_id)

            changes: Dict[str, Any] = {"manually_moved": True}
            if current_bucket is not _UNSET:
                changes["current_bucket"] = validate_bucket(current_bucket)
            if assigned_to is not _UNSET:
                changes["assigned_to"] = validate_assignee(assigned_to)

            card = existing.copy(**changes)
            cards = dict(self._cards)
            cards[trip_id] = card
            self._commit(cards, [ChangeEvent.card_updated(card.copy())])

        logger.info(
            f"Manual edit: {trip_id} -> bucket={card.current_bucket.value}, "
            f"assignee={card.assigned_to or '(none)'}"
        )
        return card.copy()

    def upsert_card(self, data: Dict[str, Any]) -> Card:
        """
        Apply a card posted by a board client.

        An existing card takes only the bucket and assignee from the payload
        (as a manual edit); its CSV-derived fields stay authoritative. An
        unknown trip is created from the full payload.

        Raises:
            InvalidBatchShape: Payload has no tripId
            InvalidEdit: Unknown bucket or assignee
        """
        trip_id = coerce_text(data.get("tripId")) if isinstance(data, dict) else ""
        if not trip_id:
            raise InvalidBatchShape("Invalid card")

        with self._lock:
            if trip_id in self._cards:
                edits = {}
                if data.get("currentBucket") not in (None, ""):
                    edits["current_bucket"] = data["currentBucket"]
                if "assignedTo" in data:
                    edits["assigned_to"] = data["assignedTo"]
                return self.apply_manual_edit(trip_id, **edits)

            card = self._card_from_payload(trip_id, data)
            cards = dict(self._cards)
            cards[trip_id] = card
            self._commit(cards, [ChangeEvent.card_updated(card.copy())])

        logger.info(f"Card created from payload: {trip_id} -> {card.current_bucket.value}")
        return card.copy()

    def _card_from_payload(self, trip_id: str, data: Dict[str, Any]) -> Card:
        has_bucket = data.get("currentBucket") not in (None, "")
        if has_bucket:
            validate_bucket(data["currentBucket"])
        assignee = validate_assignee(data.get("assignedTo"))

        card = Card.from_dict({**data, "tripId": trip_id})
        if not has_bucket:
            card.current_bucket = classify(
                card.trip_verification_status,
                card.items_accepted,
                card.items_ready_to_process,
            )
        card.assigned_to = assignee
        card.manually_moved = bool(data.get("manuallyMoved")) or has_bucket or assignee is not None
        return card

    def clear_completed(self) -> int:
        """
        Delete every card in Bundle Completed.

        Emits one clear-completed event whether or not anything was removed.

        Returns:
            Number of cards removed
        """
        with self._lock:
            removed = [
                trip_id for trip_id, card in self._cards.items()
                if card.current_bucket == Bucket.BUNDLE_COMPLETED
            ]
            cards = {
                trip_id: card for trip_id, card in self._cards.items()
                if trip_id not in removed
            }
            event = ChangeEvent.clear_completed(removed)
            if removed:
                self._commit(cards, [event])
            else:
                self._emit([event])

        for trip_id in removed:
            logger.info(f"Cleared completed card: {trip_id}")
        return len(removed)

    def restore_card(self, card: Card) -> Card:
        """Reinsert a card out of band (e.g. after an accidental clear)."""
        if not card.trip_id:
            raise InvalidBatchShape("Invalid card")
        with self._lock:
            restored = card.copy()
            cards = dict(self._cards)
            cards[restored.trip_id] = restored
            self._commit(cards, [ChangeEvent.card_restored(restored.copy())])

        logger.info(f"Card restored: {restored.trip_id}")
        return restored.copy()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, trip_id: str) -> Optional[Card]:
        with self._lock:
            card = self._cards.get(trip_id)
            return card.copy() if card else None

    def list_all(self) -> List[Card]:
        """Snapshot of every card. Order carries no meaning."""
        with self._lock:
            return [card.copy() for card in self._cards.values()]

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        """Wire-format mapping, as served by GET /api/cards."""
        with self._lock:
            return {trip_id: card.to_dict() for trip_id, card in self._cards.items()}

    def __len__(self) -> int:
        return len(self._cards)

    def __contains__(self, trip_id: object) -> bool:
        return trip_id in self._cards
