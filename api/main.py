"""FastAPI server for the bundle board.

Run with: uvicorn api.main:app --port 3000

Endpoints:
- /api/cards, /api/uploadCsv, /api/card, /api/card/restore, /api/clearCompleted
- /api/summary - Aggregates for a board filter
- /api/health - Health check
- /ws - Push channel (card-updated, clear-completed, card-restored)
"""
import logging
import sys
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from api.routes import cards, events, health
from core.config import AppConfig, get_config
from core.errors import BoardError
from core.logging_config import current_request_id, setup_logging
from services.board_view import load_ambassador_roster
from services.broadcaster import ChangeBroadcaster
from services.card_store import CardStore

logger = logging.getLogger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Middleware that adds a unique request ID to each request.

    - Uses the client's X-Request-ID or generates one
    - Sets it in context variables for logging
    - Adds X-Request-ID header to responses
    """
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())[:8]

        token = current_request_id.set(request_id)
        request.state.request_id = request_id

        try:
            response = await call_next(request)
        finally:
            current_request_id.reset(token)

        response.headers["X-Request-ID"] = request_id
        return response


async def board_error_handler(request: Request, exc: BoardError) -> JSONResponse:
    """Render every board error as {"error": message}."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the card store from config unless one was injected."""
    config: AppConfig = app.state.config
    owns_store = app.state.store is None

    if owns_store:
        setup_logging(config.log_level, config.log_format)
        config.validate()
        app.state.store = CardStore.open(config.storage.cards_path)
        app.state.broadcaster.attach(app.state.store)
        logger.info(f"Server started with {len(app.state.store)} cards from {config.storage.cards_path}")

    try:
        yield
    finally:
        if owns_store:
            app.state.store.remove_listener(app.state.broadcaster.publish)
            app.state.store.close()
            app.state.store = None


def create_app(
    store: Optional[CardStore] = None,
    broadcaster: Optional[ChangeBroadcaster] = None,
    config: Optional[AppConfig] = None,
) -> FastAPI:
    """
    Build the FastAPI app.

    Args:
        store: Pre-opened card store (tests); opened from config at startup if None
        broadcaster: Change broadcaster; a new one is created if None
        config: App configuration; loaded from the environment if None
    """
    config = config or get_config()

    app = FastAPI(
        title="Bundle Board",
        description="Trip bundle pipeline board with live CSV reconciliation",
        version=health.APP_VERSION,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan,
    )

    app.state.config = config
    app.state.store = store
    app.state.broadcaster = broadcaster or ChangeBroadcaster()
    roster_path = config.board.ambassadors_path
    if roster_path and Path(roster_path).exists():
        app.state.ambassadors = load_ambassador_roster(roster_path)
    else:
        app.state.ambassadors = frozenset()
    if store is not None:
        app.state.broadcaster.attach(store)

    # Request ID middleware - add first so it runs for all requests
    app.add_middleware(RequestIDMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    app.add_exception_handler(BoardError, board_error_handler)

    app.include_router(health.router, prefix="/api", tags=["Health"])
    app.include_router(cards.router)
    app.include_router(events.router)

    return app


app = create_app()
