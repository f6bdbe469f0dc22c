"""
Board client - one observer's local copy of the card set

A BoardReplica starts from its local cache file, resynchronizes from
GET /api/cards, and then applies push events as they arrive. It imports the
same normalizer, projector and merge rule as the server, so a CSV previewed
locally lands in exactly the buckets the server will compute.
"""

import json
import logging
from datetime import date
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential
from websockets.exceptions import ConnectionClosed
from websockets.sync.client import connect as ws_connect

from models.card import Bucket, Card
from models.events import EventType
from services import board_view
from services.card_store import load_snapshot, merge_update, write_snapshot
from services.row_projector import ProjectionResult, parse_rows

logger = logging.getLogger(__name__)


class BoardClientError(Exception):
    """Raised when the board server rejects a request or can't be reached."""
    pass


class BoardReplica:
    """Local card mapping kept in step with the server by events and resyncs."""

    def __init__(self, cache_path: Optional[Union[str, Path]] = None):
        self.cache_path = Path(cache_path) if cache_path else None
        self.cards: Dict[str, Card] = {}
        if self.cache_path is not None:
            self.cards = load_snapshot(self.cache_path)
            logger.info(f"Board cache loaded: {len(self.cards)} cards")

    def save_cache(self) -> None:
        if self.cache_path is None:
            return
        try:
            write_snapshot(self.cache_path, self.cards)
        except OSError as e:
            logger.warning(f"Failed to write board cache {self.cache_path}: {e}")

    def resync(self, snapshot: Mapping[str, Dict[str, Any]]) -> int:
        """
        Replace local state with a full server snapshot.

        Returns:
            Number of cards after the resync
        """
        cards: Dict[str, Card] = {}
        for key, entry in snapshot.items():
            try:
                card = Card.from_dict(entry)
            except (TypeError, ValueError, AttributeError) as e:
                logger.warning(f"Skipping malformed card {key!r} in snapshot: {e}")
                continue
            cards[card.trip_id] = card
        self.cards = cards
        self.save_cache()
        logger.info(f"Resynced {len(cards)} cards")
        return len(cards)

    def apply_event(self, message: Mapping[str, Any]) -> bool:
        """
        Apply one push-channel message.

        Returns:
            True if the message was understood and applied
        """
        event_type = message.get("type")

        if event_type in (EventType.CARD_UPDATED.value, EventType.CARD_RESTORED.value):
            payload = message.get("card")
            if not isinstance(payload, dict):
                logger.warning(f"Ignoring {event_type} without a card")
                return False
            try:
                card = Card.from_dict(payload)
            except ValueError as e:
                logger.warning(f"Ignoring {event_type}: {e}")
                return False
            self.cards[card.trip_id] = card

        elif event_type == EventType.CLEAR_COMPLETED.value:
            removed = set(message.get("tripIds") or ())
            self.cards = {
                trip_id: card for trip_id, card in self.cards.items()
                if trip_id not in removed and card.current_bucket != Bucket.BUNDLE_COMPLETED
            }

        else:
            logger.warning(f"Ignoring unknown event type: {event_type!r}")
            return False

        self.save_cache()
        return True

    def preview_merge(self, raw_rows: Iterable[Mapping[Any, Any]]) -> ProjectionResult:
        """Merge raw CSV rows locally, ahead of the server's broadcast."""
        result = parse_rows(raw_rows)
        for update in result.updates:
            self.cards[update.trip_id] = merge_update(self.cards.get(update.trip_id), update)
        if result.updates:
            self.save_cache()
        return result

    def visible(self, view: Optional[board_view.ViewFilter] = None, today: Optional[date] = None) -> List[Card]:
        return board_view.visible_cards(self.cards.values(), view, today)

    def summary(self, view: Optional[board_view.ViewFilter] = None, today: Optional[date] = None):
        return board_view.summarize(self.visible(view, today))

    def bucket_counts(self, view: Optional[board_view.ViewFilter] = None, today: Optional[date] = None):
        return board_view.bucket_counts(self.visible(view, today))


class BoardApiClient:
    """HTTP client for the board server."""

    def __init__(self, base_url: str, timeout: int = 10):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = requests.Session()
        self._session.headers.update({"Content-Type": "application/json"})

    def _request(self, method: str, endpoint: str, data: Optional[Dict] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{endpoint}"
        response = self._session.request(method=method, url=url, json=data, timeout=self.timeout)
        if response.status_code >= 400:
            try:
                error = response.json().get("error", response.text)
            except ValueError:
                error = response.text
            raise BoardClientError(f"{method} {endpoint} failed ({response.status_code}): {error}")
        return response.json()

    @retry(
        retry=retry_if_exception_type(requests.RequestException),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        reraise=True,
    )
    def fetch_cards(self) -> Dict[str, Dict[str, Any]]:
        """Full snapshot for bootstrap/resync."""
        return self._request("GET", "/api/cards").get("cards") or {}

    def upload_rows(self, rows: List[Dict[str, Any]]) -> Dict[str, Any]:
        return self._request("POST", "/api/uploadCsv", {"rows": rows})

    def save_card(self, card: Card) -> Dict[str, Any]:
        return self._request("POST", "/api/card", {"card": card.to_dict()})

    def restore_card(self, card: Card) -> Dict[str, Any]:
        return self._request("POST", "/api/card/restore", {"card": card.to_dict()})

    def clear_completed(self) -> Dict[str, Any]:
        return self._request("POST", "/api/clearCompleted")

    @property
    def events_url(self) -> str:
        """Push channel URL derived from the HTTP base URL."""
        scheme, _, rest = self.base_url.partition("://")
        return f"{'wss' if scheme == 'https' else 'ws'}://{rest}/ws"

    def follow(
        self,
        replica: BoardReplica,
        on_change: Optional[Callable[[Mapping[str, Any]], None]] = None,
        max_events: Optional[int] = None,
        connect: Callable = ws_connect,
    ) -> int:
        """
        Keep a replica in step with the server until the connection closes.

        Connects to the push channel first, then resyncs from GET /api/cards,
        so nothing published in between is lost. Every message after that is
        applied with replica.apply_event.

        Args:
            replica: Local copy to update
            on_change: Called with each applied message
            max_events: Stop after this many messages (None = run until closed)
            connect: WebSocket connect function

        Returns:
            Number of messages applied
        """
        applied = 0
        received = 0
        with connect(self.events_url) as ws:
            logger.info(f"Following board events at {self.events_url}")
            replica.resync(self.fetch_cards())

            while max_events is None or received < max_events:
                try:
                    raw = ws.recv()
                except ConnectionClosed:
                    logger.info("Board event stream closed")
                    break
                received += 1

                try:
                    message = json.loads(raw)
                except ValueError:
                    logger.warning(f"Ignoring non-JSON push message: {raw!r}")
                    continue
                if not isinstance(message, dict):
                    logger.warning(f"Ignoring push message that is not an object: {raw!r}")
                    continue

                if replica.apply_event(message):
                    applied += 1
                    if on_change is not None:
                        on_change(message)
        return applied


def bootstrap_replica(client: BoardApiClient, cache_path: Optional[Union[str, Path]] = None) -> BoardReplica:
    """
    Start an observer: load the cache, then resync from the server.

    If the server can't be reached the cached cards are kept.
    """
    replica = BoardReplica(cache_path)
    try:
        replica.resync(client.fetch_cards())
    except (requests.RequestException, BoardClientError) as e:
        logger.error(f"Failed to load cards from server, using cache: {e}")
    return replica
