"""Live WebSocket connections and outbound delivery.

The hub only knows sockets. Identity lives in ConnectionRegistry; the hub
maps a connection id to the socket that frames for it are written to.

Performance Notes:
    - Broadcasting uses asyncio.gather() for concurrent delivery
    - Connections whose send fails are dropped from the hub
    - Uvicorn handles ping/pong at the protocol level (default 20s interval)
"""
import asyncio
import logging
import uuid
from typing import Dict, List

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionHub:
    """Tracks accepted WebSockets by server-assigned connection id."""

    def __init__(self) -> None:
        # connection_id -> accepted WebSocket
        self.connections: Dict[str, WebSocket] = {}

    def __len__(self) -> int:
        return len(self.connections)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self.connections

    async def connect(self, websocket: WebSocket) -> str:
        """Accept a WebSocket and assign it a fresh connection id.

        Connection ids are never reused, so a reconnecting client always
        gets a new one.
        """
        await websocket.accept()
        connection_id = uuid.uuid4().hex
        self.connections[connection_id] = websocket
        return connection_id

    def disconnect(self, connection_id: str) -> None:
        self.connections.pop(connection_id, None)

    async def send_to(self, connection_id: str, message: dict) -> bool:
        """Send one frame to one connection.

        Returns:
            True if delivered, False if the connection is unknown or failed.
        """
        connection = self.connections.get(connection_id)
        if connection is None:
            return False
        if await self._safe_send(connection, message):
            return True
        self._cleanup_connections([connection_id])
        return False

    async def broadcast(self, message: dict) -> None:
        """Send a frame to every live connection concurrently."""
        targets = list(self.connections.items())
        if not targets:
            return

        results = await asyncio.gather(
            *[self._safe_send(conn, message) for _, conn in targets],
            return_exceptions=True
        )

        # Remove failed connections
        failed = [
            cid for (cid, _), success in zip(targets, results)
            if success is False
        ]
        self._cleanup_connections(failed)

    async def _safe_send(self, connection: WebSocket, message: dict) -> bool:
        """Send a message to a WebSocket connection with error handling.

        Returns:
            True if successful, False if connection failed.
        """
        try:
            await connection.send_json(message)
            return True
        except Exception as e:
            logger.debug(f"Failed to send to connection: {e}")
            return False

    def _cleanup_connections(self, failed: List[str]) -> None:
        for connection_id in failed:
            if self.connections.pop(connection_id, None) is not None:
                logger.debug(f"Removed dead connection {connection_id}")
