"""HTTP and WebSocket handlers of the broker."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime, timezone
from typing import Optional

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.websockets import WebSocket, WebSocketDisconnect

from ..protocol import Message, encode_message
from .sessions import BrokerConnection

logger = logging.getLogger("lockstep.broker.routes")


class WebSocketConnection(BrokerConnection):
    """Broker connection backed by a Starlette WebSocket.

    Outbound frames are queued and written by a separate task, so broker
    operations never await socket I/O.
    """

    def __init__(self, websocket: WebSocket):
        super().__init__()
        self.websocket = websocket
        self.queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue()
        self._open = True

    @property
    def is_open(self) -> bool:
        return self._open

    def _deliver(self, message: Message) -> None:
        self.queue.put_nowait(encode_message(message))

    def close(self) -> None:
        if self._open:
            self._open = False
            self.queue.put_nowait(None)

    async def drain(self) -> None:
        """Write queued frames until the connection closes."""
        while True:
            frame = await self.queue.get()
            if frame is None:
                return
            try:
                await self.websocket.send_text(frame)
            except (WebSocketDisconnect, RuntimeError, OSError) as e:
                logger.debug("Dropping frames for %r: %s", self, e)
                self._open = False
                return


async def health_handler(request: Request) -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse({
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "lockstep-broker",
    })


async def status_handler(request: Request) -> JSONResponse:
    """Report live session counts."""
    broker = request.app.state.broker
    return JSONResponse({"status": "ok", **broker.stats()})


async def websocket_session_handler(websocket: WebSocket) -> None:
    """One protocol connection: read frames, hand them to the broker."""
    broker = websocket.app.state.broker
    await websocket.accept()

    connection = WebSocketConnection(websocket)
    writer = asyncio.create_task(connection.drain())
    logger.info("Client connected: %r", connection)

    try:
        while True:
            event = await websocket.receive()
            if event["type"] == "websocket.disconnect":
                break
            raw = event.get("text")
            if raw is None:
                raw = event.get("bytes") or b""
            broker.handle_frame(connection, raw)
    except Exception:
        logger.exception("WebSocket handler error for %r", connection)
    finally:
        broker.disconnect(connection)
        connection.close()
        writer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await writer
        logger.info("Client disconnected: %r", connection)


__all__ = [
    "WebSocketConnection",
    "health_handler",
    "status_handler",
    "websocket_session_handler",
]
