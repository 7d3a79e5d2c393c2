"""WebSocket connection management for phase-event push."""

import logging

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class WebSocketManager:
    """Manages WebSocket connections grouped by job id.

    Phase events are broadcast to every socket watching the job.
    """

    def __init__(self):
        self.connections: dict[str, list[WebSocket]] = {}

    async def connect(self, key: str, websocket: WebSocket) -> None:
        """Accept a WebSocket connection and add it to the connection pool."""
        await websocket.accept()
        self.connections.setdefault(key, []).append(websocket)

    async def broadcast(self, key: str, message: dict) -> None:
        """Send a message to all WebSockets for ``key``.

        Sockets that fail to receive are dropped from the pool.
        """
        disconnected = []
        for ws in self.connections.get(key, []):
            try:
                await ws.send_json(message)
            except Exception as e:
                logger.debug(f"Dropping WebSocket for {key}: {e}")
                disconnected.append(ws)

        for ws in disconnected:
            if ws in self.connections.get(key, []):
                self.connections[key].remove(ws)

    def disconnect(self, key: str, websocket: WebSocket) -> None:
        """Remove a WebSocket from the connection pool."""
        if key in self.connections and websocket in self.connections[key]:
            self.connections[key].remove(websocket)
        if key in self.connections and not self.connections[key]:
            del self.connections[key]

    def cleanup(self, key: str) -> None:
        """Remove all connections for a given key."""
        self.connections.pop(key, None)
