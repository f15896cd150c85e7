"""WebSocket endpoint streaming normalized events.

Push-only: incoming client messages are read (to notice disconnects) and
otherwise ignored.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from starlette.routing import WebSocketRoute
from starlette.websockets import WebSocket, WebSocketDisconnect

from .events import CONNECTED_EVENT

logger = logging.getLogger(__name__)


async def websocket_endpoint(websocket: WebSocket) -> None:
    bus = websocket.app.state.runtime.bus
    await websocket.accept()
    await websocket.send_json(CONNECTED_EVENT)

    async def pump() -> None:
        try:
            async for event in bus.stream():
                await websocket.send_json(event)
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.debug(f"Event WebSocket send stopped: {e}")

    pump_task = asyncio.create_task(pump())
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("Event WebSocket client disconnected")
    finally:
        pump_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await pump_task


websocket_routes = [
    WebSocketRoute("/ws", websocket_endpoint),
]
