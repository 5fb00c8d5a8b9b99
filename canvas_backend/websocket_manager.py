"""
WebSocket Manager - canvas change fan-out.

A client is greeted with a canvas_state message when it connects and then
receives a canvas_updated message (current share URL and shape count) after
every store change. Clients fetch the full state via GET /api/canvas.
"""
from fastapi import WebSocket
from typing import Optional, Set
import json
import asyncio

from canvas_core.logging import get_logger

logger = get_logger("websocket")


def canvas_message(kind: str, share_url: Optional[str], shape_count: int) -> dict:
    return {"type": kind, "share_url": share_url, "shape_count": shape_count}


class WebSocketManager:
    """Tracks connected canvas clients."""

    def __init__(self):
        self._clients: Set[WebSocket] = set()
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, greeting: Optional[dict] = None):
        """Accept a client, register it, then send the greeting (if any)."""
        await websocket.accept()
        async with self._lock:
            self._clients.add(websocket)
        logger.info("Canvas client connected (%d total)", len(self._clients))
        if greeting is not None:
            await websocket.send_text(json.dumps(greeting))

    async def disconnect(self, websocket: WebSocket):
        async with self._lock:
            self._clients.discard(websocket)
        logger.info("Canvas client disconnected (%d total)", len(self._clients))

    async def broadcast(self, message: dict) -> int:
        """
        Send a message to every client.

        Clients whose send fails are dropped. Returns the number reached.
        """
        if not self._clients:
            return 0

        text = json.dumps(message)
        dead: Set[WebSocket] = set()

        async with self._lock:
            for websocket in self._clients:
                try:
                    await websocket.send_text(text)
                except Exception:
                    logger.debug("Dropping canvas client after failed send", exc_info=True)
                    dead.add(websocket)
            self._clients -= dead
            return len(self._clients)

    async def notify_canvas_updated(self, share_url: Optional[str] = None, shape_count: int = 0) -> int:
        return await self.broadcast(canvas_message("canvas_updated", share_url, shape_count))

    @property
    def connection_count(self) -> int:
        return len(self._clients)
