"""Tests for the card store."""

import json

import pytest

from core.errors import CardNotFoundError, InvalidBatchShape, InvalidEdit, PersistenceFailure
from models.card import Bucket, Card, TripUpdate
from models.events import EventType
from services.card_store import CardStore, load_snapshot, merge_update


def update(trip_id="T1", status="TX Approved", accepted=5, ready=0, **fields):
    return TripUpdate(
        trip_id=trip_id,
        trip_verification_status=status,
        items_accepted=accepted,
        items_ready_to_process=ready,
        **fields,
    )


class TestCard:
    """Tests for the Card model."""

    def test_ready_clamped(self):
        card = Card(trip_id="T1", items_accepted=2, items_ready_to_process=7)
        assert card.items_ready_to_process == 2

    def test_wire_names(self):
        data = Card(trip_id="T1", max_usa_date="2026-04-01").to_dict()
        assert data["tripId"] == "T1"
        assert data["maxUSADate"] == "2026-04-01"
        assert data["currentBucket"] == "Pending/In Progress"
        assert data["assignedTo"] is None
        assert data["manuallyMoved"] is False

    def test_from_dict_unknown_bucket(self):
        """Unknown buckets in stored data fall back to Pending/In Progress."""
        card = Card.from_dict({"tripId": "T1", "currentBucket": "Shipped"})
        assert card.current_bucket == Bucket.PENDING

    def test_from_dict_requires_trip_id(self):
        with pytest.raises(ValueError):
            Card.from_dict({"traveler": "Ana"})


class TestMergeUpdate:
    """Tests for the shared merge rule."""

    def test_new_card(self):
        card = merge_update(None, update(ready=5, traveler="Ana"))
        assert card.current_bucket == Bucket.TA_COMPLETED
        assert card.assigned_to is None
        assert card.manually_moved is False
        assert card.traveler == "Ana"

    def test_reclassifies_unmoved_card(self):
        existing = merge_update(None, update(ready=0))
        card = merge_update(existing, update(ready=3))
        assert card.current_bucket == Bucket.APPROVED_TA_IN_PROGRESS

    def test_keeps_manual_bucket_and_assignee(self):
        existing = Card(
            trip_id="T1",
            current_bucket=Bucket.BUNDLING,
            assigned_to="Greg",
            manually_moved=True,
        )
        card = merge_update(existing, update(ready=5, traveler="New Name"))
        assert card.current_bucket == Bucket.BUNDLING
        assert card.assigned_to == "Greg"
        assert card.manually_moved is True
        assert card.traveler == "New Name"
        assert card.items_ready_to_process == 5


class TestMergeBatch:
    """Tests for CardStore.merge_batch."""

    def test_creates_cards(self, store, events):
        report = store.merge_batch([update("T1"), update("T2", ready=5)])
        assert report.created == 2
        assert report.updated == 0
        assert store.get("T1").current_bucket == Bucket.APPROVED_NOT_TA
        assert store.get("T2").current_bucket == Bucket.TA_COMPLETED
        assert [e.type for e in events] == [EventType.CARD_UPDATED, EventType.CARD_UPDATED]

    def test_idempotent(self, store, events):
        """Re-merging the same batch leaves the same state but emits again."""
        batch = [update("T1", ready=2), update("T2", status="Pending")]
        store.merge_batch(batch)
        first = store.snapshot()

        report = store.merge_batch(batch)
        assert store.snapshot() == first
        assert report.updated == 2
        assert len(events) == 4

    def test_duplicate_trip_in_batch_last_wins(self, store):
        store.merge_batch([update("T1", ready=0), update("T1", ready=5)])
        assert len(store) == 1
        assert store.get("T1").current_bucket == Bucket.TA_COMPLETED

    def test_empty_batch_no_op(self, store, events, cards_path):
        report = store.merge_batch([])
        assert report.applied == 0
        assert events == []
        assert not cards_path.exists()

    def test_override_preserved(self, store):
        """A manual move survives later CSV merges."""
        store.merge_batch([update("T1", ready=0)])
        store.apply_manual_edit("T1", current_bucket="Labeled", assigned_to="Caz")

        store.merge_batch([update("T1", ready=5, traveler="Ana")])

        card = store.get("T1")
        assert card.current_bucket == Bucket.LABELED
        assert card.assigned_to == "Caz"
        assert card.manually_moved is True
        assert card.traveler == "Ana"


class TestManualEdit:
    """Tests for apply_manual_edit and upsert_card."""

    def test_sets_manually_moved(self, store):
        store.merge_batch([update("T1")])
        card = store.apply_manual_edit("T1", assigned_to="Justin")
        assert card.manually_moved is True
        assert card.current_bucket == Bucket.APPROVED_NOT_TA

    def test_unassign(self, store):
        store.merge_batch([update("T1")])
        store.apply_manual_edit("T1", assigned_to="Greg")
        assert store.apply_manual_edit("T1", assigned_to="").assigned_to is None

    def test_unknown_card(self, store, events):
        with pytest.raises(CardNotFoundError):
            store.apply_manual_edit("missing", current_bucket="Labeled")
        assert events == []

    def test_invalid_bucket(self, store):
        store.merge_batch([update("T1")])
        with pytest.raises(InvalidEdit):
            store.apply_manual_edit("T1", current_bucket="Shipped")
        assert store.get("T1").manually_moved is False

    def test_invalid_assignee(self, store):
        store.merge_batch([update("T1")])
        with pytest.raises(InvalidEdit):
            store.apply_manual_edit("T1", assigned_to="Bob")

    def test_upsert_existing_takes_only_bucket_and_assignee(self, store):
        store.merge_batch([update("T1", traveler="Ana")])
        card = store.upsert_card({
            "tripId": "T1",
            "traveler": "Edited",
            "currentBucket": "Bundling in Progress",
        })
        assert card.traveler == "Ana"
        assert card.current_bucket == Bucket.BUNDLING
        assert card.manually_moved is True

    def test_upsert_creates_unknown_trip(self, store):
        card = store.upsert_card({
            "tripId": "T7",
            "tripVerificationStatus": "TX Approved",
            "itemsAccepted": 4,
            "itemsReadyToProcess": 4,
        })
        assert card.current_bucket == Bucket.TA_COMPLETED
        assert card.manually_moved is False
        assert "T7" in store

    def test_upsert_missing_trip_id(self, store):
        with pytest.raises(InvalidBatchShape):
            store.upsert_card({"traveler": "Ana"})

    def test_upsert_null_bucket_on_existing_card(self, store):
        """A null bucket means no bucket change, for new and existing cards alike."""
        store.upsert_card({"tripId": "T5", "currentBucket": None})
        card = store.upsert_card({"tripId": "T5", "currentBucket": None, "assignedTo": "Greg"})
        assert card.current_bucket == Bucket.PENDING
        assert card.assigned_to == "Greg"


class TestReturnedCopies:
    """Cards handed out by the store are detached from its state."""

    def test_manual_edit_result(self, store, cards_path):
        store.merge_batch([update("T1", status="Pending")])
        card = store.apply_manual_edit("T1", assigned_to="Greg")
        card.current_bucket = Bucket.LABELED

        assert store.get("T1").current_bucket == Bucket.PENDING
        on_disk = json.loads(cards_path.read_text(encoding="utf-8"))
        assert on_disk["T1"]["currentBucket"] == "Pending/In Progress"

    def test_merge_report_and_events(self, store, events):
        report = store.merge_batch([update("T1")])
        report.cards[0].assigned_to = "Greg"
        events[0].card.traveler = "Mutated"

        card = store.get("T1")
        assert card.assigned_to is None
        assert card.traveler == ""

    def test_upsert_and_restore_results(self, store):
        store.upsert_card({"tripId": "T2"}).traveler = "Mutated"
        store.restore_card(Card(trip_id="T3")).traveler = "Mutated"
        assert store.get("T2").traveler == ""
        assert store.get("T3").traveler == ""


class TestClearCompleted:
    """Tests for clear_completed."""

    def test_removes_exactly_completed(self, store, events):
        store.merge_batch([update("T1"), update("T2"), update("T3")])
        store.apply_manual_edit("T1", current_bucket="Bundle Completed")
        store.apply_manual_edit("T3", current_bucket="Labeled")
        events.clear()

        assert store.clear_completed() == 1
        assert "T1" not in store
        assert {c.trip_id for c in store.list_all()} == {"T2", "T3"}

        assert len(events) == 1
        assert events[0].type == EventType.CLEAR_COMPLETED
        assert events[0].to_message() == {"type": "clear-completed", "tripIds": ["T1"]}

    def test_second_call_no_op(self, store, events):
        store.merge_batch([update("T1")])
        store.apply_manual_edit("T1", current_bucket="Bundle Completed")
        store.clear_completed()
        before = store.snapshot()
        events.clear()

        assert store.clear_completed() == 0
        assert store.snapshot() == before
        assert [e.type for e in events] == [EventType.CLEAR_COMPLETED]


class TestRestore:
    def test_restore_reinserts(self, store, events):
        card = Card(trip_id="T9", current_bucket=Bucket.BUNDLE_COMPLETED, manually_moved=True)
        store.restore_card(card)
        assert store.get("T9").current_bucket == Bucket.BUNDLE_COMPLETED
        assert events[-1].to_message()["type"] == "card-restored"


class TestPersistence:
    """Tests for the JSON card file."""

    def test_written_after_mutation(self, store, cards_path):
        store.merge_batch([update("T1", traveler="Ana")])
        data = json.loads(cards_path.read_text(encoding="utf-8"))
        assert data["T1"]["traveler"] == "Ana"
        assert data["T1"]["currentBucket"] == "Approved, Not TA'd"

    def test_reopen_restores_state(self, store, cards_path):
        store.merge_batch([update("T1")])
        store.apply_manual_edit("T1", assigned_to="Ansley")

        reopened = CardStore.open(cards_path)
        assert reopened.snapshot() == store.snapshot()

    def test_malformed_file_is_empty(self, cards_path):
        cards_path.parent.mkdir(parents=True, exist_ok=True)
        cards_path.write_text("{not json", encoding="utf-8")
        assert load_snapshot(cards_path) == {}
        assert len(CardStore.open(cards_path)) == 0

    def test_non_object_file_is_empty(self, cards_path):
        cards_path.parent.mkdir(parents=True, exist_ok=True)
        cards_path.write_text("[1, 2, 3]", encoding="utf-8")
        assert load_snapshot(cards_path) == {}

    def test_bad_entries_skipped(self, cards_path):
        cards_path.parent.mkdir(parents=True, exist_ok=True)
        cards_path.write_text(json.dumps({
            "T1": {"tripId": "T1"},
            "T2": "garbage",
            "T3": {"traveler": "no id"},
        }), encoding="utf-8")
        assert list(load_snapshot(cards_path)) == ["T1"]

    def test_write_failure_leaves_state_untouched(self, store, events, cards_path, monkeypatch):
        """A failed write raises, keeps memory and disk as they were, emits nothing."""
        store.merge_batch([update("T1", ready=0)])
        before = store.snapshot()
        on_disk = cards_path.read_text(encoding="utf-8")
        events.clear()

        def fail_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr("services.card_store.os.replace", fail_replace)

        with pytest.raises(PersistenceFailure):
            store.merge_batch([update("T1", ready=5), update("T2")])

        assert store.snapshot() == before
        assert cards_path.read_text(encoding="utf-8") == on_disk
        assert events == []
        assert not list(cards_path.parent.glob("*.tmp"))

    def test_close_without_changes_keeps_malformed_file(self, cards_path):
        cards_path.parent.mkdir(parents=True, exist_ok=True)
        cards_path.write_text("{not json", encoding="utf-8")

        CardStore.open(cards_path).close()

        assert cards_path.read_text(encoding="utf-8") == "{not json"

    def test_close_after_change_writes(self, cards_path):
        with CardStore.open(cards_path) as store:
            store.merge_batch([update("T1")])
        assert "T1" in json.loads(cards_path.read_text(encoding="utf-8"))

    def test_memory_only_store(self):
        store = CardStore()
        store.merge_batch([update("T1")])
        assert len(store) == 1
        store.close()
