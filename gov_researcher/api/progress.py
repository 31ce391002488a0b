# =============================================================================
# Progress Stream: WebSocket per Connection Id
# =============================================================================
#
# GET /ws/{connection_id} (WebSocket). Clients connect first, then send a
# request carrying the same connection_id; events are forwarded as JSON
# text frames until the client disconnects. See services/progress.py for
# the event shape.
#
# The handler waits on two things at once: the next event and the client's
# disconnect message, so an idle client that goes away is noticed.
# =============================================================================

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from gov_researcher.services.progress import hub

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Progress"])


@router.websocket("/ws/{connection_id}")
async def progress_stream(websocket: WebSocket, connection_id: str) -> None:
    await websocket.accept()
    queue = hub.register(connection_id)
    disconnected = asyncio.create_task(_wait_for_disconnect(websocket))
    logger.info("Progress stream opened: %s", connection_id)
    try:
        while True:
            next_event = asyncio.create_task(queue.get())
            done, _ = await asyncio.wait(
                {next_event, disconnected}, return_when=asyncio.FIRST_COMPLETED,
            )
            if next_event not in done:
                next_event.cancel()
                break
            await websocket.send_json(next_event.result())
    except WebSocketDisconnect:
        pass
    finally:
        disconnected.cancel()
        hub.unregister(connection_id, queue)
        logger.info("Progress stream closed: %s", connection_id)


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    """Drain client frames until the disconnect message arrives."""
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return
