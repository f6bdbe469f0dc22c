"""
Card endpoints.

- GET  /api/cards           full snapshot for board bootstrap/resync
- POST /api/uploadCsv       merge CSV rows into the board
- POST /api/card            manual edit (or create) of one card
- POST /api/card/restore    out-of-band reinsertion of a card
- POST /api/clearCompleted  remove every Bundle Completed card
- GET  /api/summary         totals and bucket counts for a filter
"""

import logging
from datetime import date
from typing import Any, Dict, FrozenSet, List, Optional

from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel, Field

from api.dependencies import get_ambassadors, get_store
from core.errors import InvalidBatchShape, InvalidFilter
from core.logging_config import LogContext, generate_upload_id
from models.card import Card
from services import board_view
from services.card_store import CardStore
from services.row_projector import parse_rows

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Cards"])


# ----- Pydantic Models -----

class CardsResponse(BaseModel):
    """All cards keyed by trip id."""
    cards: Dict[str, Dict[str, Any]]


class UploadResponse(BaseModel):
    """Result of a CSV upload."""
    success: bool = True
    count: int = Field(..., description="Rows merged into the board")
    total: int = Field(..., description="Cards on the board after the merge")
    warnings: List[str] = Field(default_factory=list, description="One entry per skipped row")


class CardResponse(BaseModel):
    success: bool = True
    card: Dict[str, Any]


class ClearCompletedResponse(BaseModel):
    success: bool = True
    removed: int


class SummaryResponse(BaseModel):
    """Aggregates over the cards visible under a filter."""
    filter: str
    totalTrips: int
    itemsAccepted: int
    totalBundleWeight: str
    summary: str
    buckets: Dict[str, int]
    assignees: Dict[str, int]


# ----- Helpers -----

def _card_payload(payload: Any) -> Dict[str, Any]:
    card = payload.get("card") if isinstance(payload, dict) else None
    if not isinstance(card, dict) or not str(card.get("tripId") or "").strip():
        logger.warning(f"Invalid card received: {card!r}")
        raise InvalidBatchShape("Invalid card")
    return card


# ----- Endpoints -----

@router.get("/cards", response_model=CardsResponse)
async def list_cards(store: CardStore = Depends(get_store)):
    """Full card mapping, keyed by trip id."""
    return CardsResponse(cards=store.snapshot())


@router.post("/uploadCsv", response_model=UploadResponse)
async def upload_csv(payload: Any = Body(None), store: CardStore = Depends(get_store)):
    """
    Merge uploaded CSV rows.

    Headers are normalized server-side, rows without a Trip ID are skipped
    with a warning, and every other row is merged. A body whose `rows` is
    not a list is rejected whole.
    """
    rows = payload.get("rows") if isinstance(payload, dict) else None
    if not isinstance(rows, list):
        logger.warning("uploadCsv: invalid rows format")
        raise InvalidBatchShape("Invalid rows format")

    with LogContext(upload_id=generate_upload_id()):
        logger.info(f"Received CSV rows: {len(rows)}")
        result = parse_rows(rows)
        report = store.merge_batch(result.updates)
        logger.info(f"Cards after CSV merge: {len(store)} ({result.skipped} rows skipped)")

    return UploadResponse(
        success=True,
        count=report.applied,
        total=len(store),
        warnings=result.warnings,
    )


@router.post("/card", response_model=CardResponse)
async def save_card(payload: Any = Body(None), store: CardStore = Depends(get_store)):
    """
    Save a card edited on a board.

    For an existing trip only the bucket and assignee are taken, and the
    card is marked manually moved. Unknown trips are created.
    """
    data = _card_payload(payload)
    with LogContext(trip_id=str(data["tripId"]).strip()):
        card = store.upsert_card(data)
        logger.info(f"Card saved: {card.trip_id}")
    return CardResponse(card=card.to_dict())


@router.post("/card/restore", response_model=CardResponse)
async def restore_card(payload: Any = Body(None), store: CardStore = Depends(get_store)):
    """Reinsert a card (for example one cleared by mistake)."""
    data = _card_payload(payload)
    card = store.restore_card(Card.from_dict(data))
    return CardResponse(card=card.to_dict())


@router.post("/clearCompleted", response_model=ClearCompletedResponse)
async def clear_completed(store: CardStore = Depends(get_store)):
    """Delete every card in Bundle Completed."""
    removed = store.clear_completed()
    return ClearCompletedResponse(removed=removed)


@router.get("/summary", response_model=SummaryResponse)
async def get_summary(
    filter: str = Query(board_view.FILTER_ALL, description="Named board filter"),
    start: Optional[date] = Query(None, description="custom-range start (inclusive)"),
    end: Optional[date] = Query(None, description="custom-range end (inclusive)"),
    assignee: Optional[str] = Query(None, description="Assignee for the assignee filter"),
    store: CardStore = Depends(get_store),
    ambassadors: FrozenSet[str] = Depends(get_ambassadors),
):
    """Totals, per-bucket and per-assignee counts for the visible cards."""
    try:
        if filter == board_view.FILTER_CUSTOM_RANGE:
            view = board_view.ViewFilter.custom_range(start, end)
        elif filter == board_view.FILTER_ASSIGNEE:
            view = board_view.ViewFilter.for_assignee(assignee)
        elif filter == board_view.FILTER_AMBASSADORS:
            view = board_view.ViewFilter.ambassadors(ambassadors)
        else:
            view = board_view.ViewFilter(filter)
    except ValueError as e:
        raise InvalidFilter(str(e))

    visible = board_view.visible_cards(store.list_all(), view)
    summary = board_view.summarize(visible)

    return SummaryResponse(
        filter=view.name,
        **summary.to_dict(),
        summary=summary.summary_line(),
        buckets={bucket.value: count for bucket, count in board_view.bucket_counts(visible).items()},
        assignees=board_view.assignee_counts(visible),
    )
