"""WebSocket push channel: every store change is sent to every open board."""

import asyncio
import logging
import uuid

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from services.broadcaster import QueueSubscriber

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Events"])


async def _pump(websocket: WebSocket, subscriber: QueueSubscriber) -> None:
    """Forward queued change messages to the client until cancelled."""
    while True:
        message = await subscriber.get()
        await websocket.send_json(message)


@router.websocket("/ws")
async def board_events(websocket: WebSocket):
    """
    Output-only event stream.

    Clients receive card-updated, clear-completed and card-restored messages
    for changes made while they are connected; anything they send is ignored.
    A client should GET /api/cards after connecting to resynchronize.
    """
    broadcaster = websocket.app.state.broadcaster
    conn_id = f"ws-{uuid.uuid4().hex[:8]}"

    # Subscribe before accepting so no event published after the handshake is missed
    subscriber = QueueSubscriber()
    broadcaster.subscribe(subscriber, subscriber_id=conn_id)
    sender = None

    try:
        await websocket.accept()
        sender = asyncio.create_task(_pump(websocket, subscriber))
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
    except WebSocketDisconnect:
        pass
    finally:
        broadcaster.unsubscribe(conn_id)
        if sender is not None:
            sender.cancel()
            try:
                await sender
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.debug(f"Connection {conn_id} sender stopped: {e}")
