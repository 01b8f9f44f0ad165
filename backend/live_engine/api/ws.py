"""WebSocket endpoint streaming render output to map clients."""

import asyncio
import logging
import uuid

import orjson
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from live_engine.core.broadcaster import CLOSE
from live_engine.core.viewport import ViewportBounds
from live_engine.schemas.route import ViewportMessage

logger = logging.getLogger(__name__)

router = APIRouter()

# Will be set by main.py on startup
tracker = None


async def _read_viewports(websocket: WebSocket, session_id: str) -> None:
    """Apply viewport settle messages sent by the client."""
    while True:
        try:
            raw = await websocket.receive_text()
        except WebSocketDisconnect:
            return
        try:
            msg = ViewportMessage.model_validate(orjson.loads(raw))
        except (orjson.JSONDecodeError, ValidationError):
            logger.debug("Session %s sent an invalid message", session_id)
            continue
        if msg.type != "viewport":
            continue
        bounds = ViewportBounds.from_corners(msg.sw, msg.ne) if msg.sw and msg.ne else None
        tracker.settle(session_id, bounds)


@router.websocket("/ws/live")
async def live_ws(websocket: WebSocket) -> None:
    """Stream marker commands, ETAs and suggestions for one viewport."""
    await websocket.accept()

    if tracker is None:
        await websocket.close(code=1011, reason="Service not ready")
        return

    session_id = uuid.uuid4().hex
    queue = tracker.open_session(session_id)
    reader = asyncio.create_task(_read_viewports(websocket, session_id))
    try:
        while True:
            getter = asyncio.ensure_future(queue.get())
            done, _ = await asyncio.wait({getter, reader}, return_when=asyncio.FIRST_COMPLETED)
            if reader in done:
                getter.cancel()
                error = None if reader.cancelled() else reader.exception()
                if error is not None:
                    logger.error("Viewport reader for session %s failed", session_id, exc_info=error)
                    await websocket.close(code=1011)
                break
            data = getter.result()
            if data == CLOSE:
                break
            await websocket.send_bytes(data)
    except WebSocketDisconnect:
        pass
    except asyncio.CancelledError:
        pass
    except Exception:
        logger.exception("WebSocket error")
    finally:
        reader.cancel()
        tracker.close_session(session_id)
