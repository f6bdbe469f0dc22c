"""Change events pushed to every connected board."""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from models.card import Card


class EventType(str, Enum):
    CARD_UPDATED = "card-updated"
    CLEAR_COMPLETED = "clear-completed"
    CARD_RESTORED = "card-restored"


@dataclass(frozen=True)
class ChangeEvent:
    """
    One store mutation as seen by observers.

    card-updated and card-restored carry the full card. clear-completed
    carries the ids it removed; observers still drop every cached card in
    Bundle Completed, so a cache that missed an update converges anyway.
    """
    type: EventType
    card: Optional[Card] = None
    removed_trip_ids: Tuple[str, ...] = ()

    @classmethod
    def card_updated(cls, card: Card) -> "ChangeEvent":
        return cls(EventType.CARD_UPDATED, card=card)

    @classmethod
    def card_restored(cls, card: Card) -> "ChangeEvent":
        return cls(EventType.CARD_RESTORED, card=card)

    @classmethod
    def clear_completed(cls, removed_trip_ids=()) -> "ChangeEvent":
        return cls(EventType.CLEAR_COMPLETED, removed_trip_ids=tuple(removed_trip_ids))

    def to_message(self) -> Dict[str, Any]:
        """Render as the JSON message sent over the push channel."""
        message: Dict[str, Any] = {"type": self.type.value}
        if self.type is EventType.CLEAR_COMPLETED:
            message["tripIds"] = list(self.removed_trip_ids)
        elif self.card is not None:
            message["card"] = self.card.to_dict()
        return message
