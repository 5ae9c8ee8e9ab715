"""
Per-user push channel over WebSockets.

A user may have several dashboard tabs open; every event addressed to the
user is delivered to all of them. Frames are JSON objects of the form
``{"event": <name>, "data": {...}}``.
"""

from typing import Any

from fastapi import WebSocket

from fee_reminder.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

QR_CODE_EVENT = "qrCode"
STATUS_EVENT = "whatsappStatus"
MESSAGE_STATUS_EVENT = "messageStatus"


class PushChannelManager:
    """Tracks open sockets per user and fans events out to them."""

    def __init__(self):
        # user_id -> open sockets; only touched from the event loop
        self._connections: dict[str, set[WebSocket]] = {}

    async def connect(self, user_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        self._connections.setdefault(user_id, set()).add(websocket)
        logger.info("Push channel connected", user_id=user_id, sockets=len(self._connections[user_id]))

    def disconnect(self, user_id: str, websocket: WebSocket) -> None:
        sockets = self._connections.get(user_id)
        if not sockets:
            return
        sockets.discard(websocket)
        if not sockets:
            del self._connections[user_id]
        logger.info("Push channel disconnected", user_id=user_id)

    async def emit(self, user_id: str, event: str, data: dict[str, Any]) -> int:
        """Send an event to every socket of one user. Returns how many received it."""
        delivered = 0
        for websocket in list(self._connections.get(user_id, ())):
            try:
                await websocket.send_json({"event": event, "data": data})
                delivered += 1
            except Exception as e:
                logger.warning("Dropping dead push socket", user_id=user_id, push_event=event, error=str(e))
                self.disconnect(user_id, websocket)

        if delivered == 0:
            logger.debug("Push event had no listeners", user_id=user_id, push_event=event)
        return delivered

    async def broadcast(self, event: str, data: dict[str, Any]) -> int:
        delivered = 0
        for user_id in list(self._connections):
            delivered += await self.emit(user_id, event, data)
        return delivered

    def connection_count(self, user_id: str | None = None) -> int:
        if user_id is not None:
            return len(self._connections.get(user_id, ()))
        return sum(len(sockets) for sockets in self._connections.values())


push_channel = PushChannelManager()
