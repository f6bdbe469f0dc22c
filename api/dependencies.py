"""Request-scoped access to the objects owned by the app."""

from typing import FrozenSet

from fastapi import Request

from services.broadcaster import ChangeBroadcaster
from services.card_store import CardStore


def get_store(request: Request) -> CardStore:
    return request.app.state.store


def get_broadcaster(request: Request) -> ChangeBroadcaster:
    return request.app.state.broadcaster


def get_ambassadors(request: Request) -> FrozenSet[str]:
    return getattr(request.app.state, "ambassadors", frozenset())
