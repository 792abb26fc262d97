"""
WebSocket Manager - Handles real-time connections and broadcasts.

This module manages WebSocket connections and broadcasts store changes
and canvas renders to all connected clients (text editor, canvas, and
assistant frontends).
"""
from fastapi import WebSocket
from typing import Set
import json
import asyncio
import logging

from flowsync_core import VisualElement

log = logging.getLogger(__name__)


class WebSocketManager:
    """
    Manages WebSocket connections and broadcasts.

    All connected clients receive diagram_updated events when the store
    changes and canvas_rendered events when a new scene is rendered.
    """

    def __init__(self):
        self._connections: Set[WebSocket] = set()
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket):
        """Accept and register a new WebSocket connection."""
        await websocket.accept()
        async with self._lock:
            self._connections.add(websocket)
        log.info("WebSocket connected. Total connections: %d", len(self._connections))

    async def disconnect(self, websocket: WebSocket):
        """Remove a WebSocket connection."""
        async with self._lock:
            self._connections.discard(websocket)
        log.info("WebSocket disconnected. Total connections: %d", len(self._connections))

    async def broadcast(self, message: dict):
        """
        Broadcast a message to all connected clients.

        Failed sends (disconnected clients) are dropped from the registry.
        """
        if not self._connections:
            return

        # Serialize once for all clients
        message_text = json.dumps(message)

        failed: Set[WebSocket] = set()

        async with self._lock:
            for websocket in self._connections:
                try:
                    await websocket.send_text(message_text)
                except Exception:
                    log.debug("Dropping client after failed send", exc_info=True)
                    failed.add(websocket)

            self._connections -= failed

    async def notify_diagram_updated(self, state: dict):
        """Notify all clients that the canonical text or its metadata changed."""
        await self.broadcast({
            "type": "diagram_updated",
            "state": state
        })

    async def notify_canvas_rendered(self, elements: list[VisualElement]):
        """Send a freshly converted scene to canvas clients."""
        await self.broadcast({
            "type": "canvas_rendered",
            "elements": [e.to_json_dict() for e in elements]
        })

    async def notify_canvas_refresh(self):
        """Ask canvas clients to refresh their viewport."""
        await self.broadcast({
            "type": "canvas_refresh"
        })

    @property
    def connection_count(self) -> int:
        """Get the number of active connections."""
        return len(self._connections)


class WebSocketCanvas:
    """CanvasRenderer that draws by broadcasting scenes to canvas clients."""

    def __init__(self, manager: WebSocketManager):
        self._manager = manager

    async def render(self, elements: list[VisualElement]) -> None:
        await self._manager.notify_canvas_rendered(elements)

    async def refresh(self) -> None:
        await self._manager.notify_canvas_refresh()
