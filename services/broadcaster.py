"""
Change Broadcaster - fan out store events to every connected board

Delivery is best-effort: each event goes to the subscribers connected when it
is published, a failing subscriber is logged and skipped, and nothing is
retried or acknowledged. A board that connects late resynchronizes from
GET /api/cards instead of replaying missed events.
"""

import asyncio
import itertools
import logging
import threading
from typing import Any, Callable, Dict, Optional

from models.events import ChangeEvent

logger = logging.getLogger(__name__)

Deliver = Callable[[ChangeEvent], None]


class QueueSubscriber:
    """
    Bridge from the (synchronous) store to one async WebSocket connection.

    Events may be published from any thread; they are handed to the owning
    event loop with call_soon_threadsafe and queued as JSON-ready messages.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self.loop = loop or asyncio.get_running_loop()
        self.queue: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue()

    def __call__(self, event: ChangeEvent) -> None:
        self.loop.call_soon_threadsafe(self.queue.put_nowait, event.to_message())

    async def get(self) -> Dict[str, Any]:
        return await self.queue.get()


class ChangeBroadcaster:
    """Registry of connected observers; publishes each event to all of them."""

    def __init__(self):
        self._subscribers: Dict[str, Deliver] = {}
        self._lock = threading.Lock()
        self._ids = itertools.count(1)

    def subscribe(self, deliver: Deliver, subscriber_id: Optional[str] = None) -> str:
        """Register an observer. Returns its subscriber id."""
        with self._lock:
            if subscriber_id is None:
                subscriber_id = f"sub-{next(self._ids)}"
            self._subscribers[subscriber_id] = deliver
        logger.info(f"Observer connected: {subscriber_id} ({self.subscriber_count} total)")
        return subscriber_id

    def unsubscribe(self, subscriber_id: str) -> bool:
        with self._lock:
            removed = self._subscribers.pop(subscriber_id, None) is not None
        if removed:
            logger.info(f"Observer disconnected: {subscriber_id} ({self.subscriber_count} total)")
        return removed

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: ChangeEvent) -> int:
        """
        Deliver one event to every current subscriber.

        Returns:
            Number of subscribers that accepted the event
        """
        with self._lock:
            targets = list(self._subscribers.items())

        delivered = 0
        for subscriber_id, deliver in targets:
            try:
                deliver(event)
                delivered += 1
            except Exception as e:
                logger.warning(f"Failed to deliver {event.type.value} to {subscriber_id}: {e}")
        logger.debug(f"Broadcast {event.type.value} to {delivered}/{len(targets)} observers")
        return delivered

    def attach(self, store) -> None:
        """Publish every change the store emits."""
        store.add_listener(self.publish)
