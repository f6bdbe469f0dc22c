"""Tests for the observer replica and the HTTP client."""

import json
from unittest.mock import MagicMock

import pytest
import requests

from models.card import Bucket, Card
from models.events import ChangeEvent
from websockets.exceptions import ConnectionClosed

from services.board_client import BoardApiClient, BoardClientError, BoardReplica, bootstrap_replica


def card_message(trip_id, bucket=Bucket.PENDING, **fields):
    return ChangeEvent.card_updated(Card(trip_id=trip_id, current_bucket=bucket, **fields)).to_message()


class TestBoardReplica:
    """Tests for applying events and resyncs."""

    def test_card_updated_and_restored(self):
        replica = BoardReplica()
        assert replica.apply_event(card_message("T1", traveler="Ana"))
        restored = ChangeEvent.card_restored(Card(trip_id="T2")).to_message()
        assert replica.apply_event(restored)
        assert set(replica.cards) == {"T1", "T2"}
        assert replica.cards["T1"].traveler == "Ana"

    def test_clear_completed_drops_listed_and_completed(self):
        """Listed ids go, and so does any card the replica holds as completed."""
        replica = BoardReplica()
        replica.apply_event(card_message("T1", Bucket.BUNDLE_COMPLETED))
        replica.apply_event(card_message("T2", Bucket.LABELED))
        replica.apply_event(card_message("T3"))

        replica.apply_event({"type": "clear-completed", "tripIds": ["T2"]})
        assert set(replica.cards) == {"T3"}

    def test_unknown_event_ignored(self):
        replica = BoardReplica()
        assert replica.apply_event({"type": "card-deleted"}) is False
        assert replica.apply_event({"type": "card-updated"}) is False
        assert replica.cards == {}

    def test_converges_with_server(self, store):
        """Replaying the store's events yields the store's state."""
        replica = BoardReplica()
        store.add_listener(lambda event: replica.apply_event(event.to_message()))

        store.upsert_card({"tripId": "T1", "currentBucket": "Bundle Completed"})
        store.upsert_card({"tripId": "T2", "tripVerificationStatus": "TX Approved"})
        store.apply_manual_edit("T2", assigned_to="Greg")
        store.clear_completed()

        assert {k: v.to_dict() for k, v in replica.cards.items()} == store.snapshot()

    def test_resync_replaces_state(self):
        replica = BoardReplica()
        replica.apply_event(card_message("STALE"))
        count = replica.resync({
            "T1": Card(trip_id="T1").to_dict(),
            "BAD": {"traveler": "no id"},
        })
        assert count == 1
        assert set(replica.cards) == {"T1"}

    def test_preview_matches_server(self, store):
        """A local preview classifies rows exactly as the store does."""
        rows = [
            {"trip_id": "T1", "Items Accepted": "5", "Items Ready to process": "9",
             "Trip Verification Status": "TX Approved"},
            {"Traveler": "no id"},
        ]
        replica = BoardReplica()
        result = replica.preview_merge(rows)
        assert result.warnings == ["Row 2: missing Trip ID"]

        from services.row_projector import parse_rows
        store.merge_batch(parse_rows(rows).updates)
        assert replica.cards["T1"].to_dict() == store.get("T1").to_dict()


class TestReplicaCache:
    """Tests for the local cache file."""

    def test_cache_written_and_reloaded(self, tmp_path):
        cache = tmp_path / "cache.json"
        replica = BoardReplica(cache)
        replica.apply_event(card_message("T1"))

        assert "T1" in json.loads(cache.read_text(encoding="utf-8"))
        assert set(BoardReplica(cache).cards) == {"T1"}

    def test_malformed_cache_is_empty(self, tmp_path):
        cache = tmp_path / "cache.json"
        cache.write_text("not json at all", encoding="utf-8")
        assert BoardReplica(cache).cards == {}


def make_response(status_code=200, payload=None):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload if payload is not None else {}
    response.text = json.dumps(payload)
    return response


class TestBoardApiClient:
    """Tests for BoardApiClient with a mocked session."""

    def test_fetch_cards(self):
        client = BoardApiClient("http://board.test/")
        client._session.request = MagicMock(return_value=make_response(200, {"cards": {"T1": {"tripId": "T1"}}}))

        assert client.fetch_cards() == {"T1": {"tripId": "T1"}}
        kwargs = client._session.request.call_args.kwargs
        assert kwargs["method"] == "GET"
        assert kwargs["url"] == "http://board.test/api/cards"

    def test_error_status_raises(self):
        client = BoardApiClient("http://board.test")
        client._session.request = MagicMock(return_value=make_response(400, {"error": "Invalid card"}))

        with pytest.raises(BoardClientError, match="Invalid card"):
            client.save_card(Card(trip_id="T1"))

    def test_fetch_retries_connection_errors(self, monkeypatch):
        monkeypatch.setattr(BoardApiClient.fetch_cards.retry, "sleep", lambda seconds: None)
        client = BoardApiClient("http://board.test")
        client._session.request = MagicMock(side_effect=[
            requests.ConnectionError("refused"),
            make_response(200, {"cards": {}}),
        ])

        assert client.fetch_cards() == {}
        assert client._session.request.call_count == 2

    def test_upload_sends_rows(self):
        client = BoardApiClient("http://board.test")
        client._session.request = MagicMock(return_value=make_response(200, {"success": True, "count": 1}))

        client.upload_rows([{"Trip ID": "T1"}])
        kwargs = client._session.request.call_args.kwargs
        assert kwargs["json"] == {"rows": [{"Trip ID": "T1"}]}


class TestBootstrap:
    def test_keeps_cache_when_server_down(self, tmp_path, monkeypatch):
        monkeypatch.setattr(BoardApiClient.fetch_cards.retry, "sleep", lambda seconds: None)
        cache = tmp_path / "cache.json"
        seeded = BoardReplica(cache)
        seeded.apply_event(card_message("CACHED"))

        client = BoardApiClient("http://board.test")
        client._session.request = MagicMock(side_effect=requests.ConnectionError("refused"))

        replica = bootstrap_replica(client, cache)
        assert set(replica.cards) == {"CACHED"}

    def test_resyncs_from_server(self, tmp_path):
        client = BoardApiClient("http://board.test")
        client._session.request = MagicMock(
            return_value=make_response(200, {"cards": {"T1": Card(trip_id="T1").to_dict()}})
        )
        replica = bootstrap_replica(client, tmp_path / "cache.json")
        assert set(replica.cards) == {"T1"}


class SessionSocket:
    """recv() over a TestClient WebSocket session, like a websockets connection."""

    def __init__(self, session):
        self.session = session

    def __enter__(self):
        self.session.__enter__()
        return self

    def __exit__(self, *exc_info):
        return self.session.__exit__(*exc_info)

    def recv(self):
        return self.session.receive_text()


class ScriptedSocket:
    """Replays canned messages, then reports the connection closed."""

    def __init__(self, messages):
        self.messages = list(messages)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def recv(self):
        if not self.messages:
            raise ConnectionClosed(None, None)
        return self.messages.pop(0)


class TestFollow:
    """Tests for following the push channel."""

    def test_events_url(self):
        assert BoardApiClient("https://board.example.com/").events_url == "wss://board.example.com/ws"
        assert BoardApiClient("http://localhost:3000").events_url == "ws://localhost:3000/ws"

    def test_resyncs_then_applies_events(self, client):
        """A change made right after the snapshot still reaches the replica."""
        client.post("/api/card", json={"card": {"tripId": "T1", "traveler": "Ana"}})

        api = BoardApiClient("http://testserver")

        def fetch_cards():
            snapshot = client.get("/api/cards").json()["cards"]
            client.post("/api/card", json={"card": {"tripId": "T1", "currentBucket": "Labeled"}})
            return snapshot

        api.fetch_cards = fetch_cards

        replica = BoardReplica()
        replica.cards["T9"] = Card(trip_id="T9")
        seen = []

        applied = api.follow(
            replica,
            on_change=seen.append,
            max_events=1,
            connect=lambda url: SessionSocket(client.websocket_connect(url)),
        )

        assert applied == 1
        assert set(replica.cards) == {"T1"}
        assert replica.cards["T1"].current_bucket == Bucket.LABELED
        assert replica.cards["T1"].traveler == "Ana"
        assert seen[0]["type"] == "card-updated"

    def test_stops_when_connection_closes(self):
        api = BoardApiClient("http://board.test")
        api.fetch_cards = lambda: {}
        messages = [
            json.dumps(card_message("T1")),
            "not json",
            json.dumps({"type": "mystery"}),
        ]

        replica = BoardReplica()
        applied = api.follow(replica, connect=lambda url: ScriptedSocket(messages))

        assert applied == 1
        assert set(replica.cards) == {"T1"}
