"""Health check endpoints."""
import os
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from api.dependencies import get_broadcaster, get_store
from services.broadcaster import ChangeBroadcaster
from services.card_store import CardStore

router = APIRouter()

APP_VERSION = "1.0.0"
BUILD_TIME = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    build_time: str
    checks: Dict[str, Any]


@router.get("/health", response_model=HealthResponse)
async def health_check(
    store: CardStore = Depends(get_store),
    broadcaster: ChangeBroadcaster = Depends(get_broadcaster),
):
    """
    Health check endpoint.

    Returns:
    - Card store status (path, card count, writability)
    - Connected observers
    """
    checks: Dict[str, Any] = {}
    overall_status = "healthy"

    if store.path is None:
        checks["store"] = {"status": "ok", "path": None, "cards": len(store)}
    else:
        parent = store.path.parent
        writable = os.access(parent, os.W_OK) if parent.exists() else False
        checks["store"] = {
            "status": "ok" if writable else "read_only",
            "path": str(store.path),
            "exists": store.path.exists(),
            "cards": len(store),
        }
        if not writable:
            overall_status = "degraded"

    checks["observers"] = {"connected": broadcaster.subscriber_count}

    return HealthResponse(
        status=overall_status,
        version=APP_VERSION,
        build_time=BUILD_TIME,
        checks=checks,
    )


@router.get("/ready")
async def readiness_check():
    """Simple readiness probe for k8s/docker."""
    return {"ready": True}


@router.get("/live")
async def liveness_check():
    """Simple liveness probe for k8s/docker."""
    return {"alive": True}
