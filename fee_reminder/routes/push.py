"""
Push channel endpoint.

Connect: WS /ws?token=<jwt>

Client -> server frames:
    {"event": "initializeWhatsApp"}   start (or resume) WhatsApp pairing
    {"event": "disconnectWhatsApp"}   tear down the caller's session
    {"event": "ping"}                 keep-alive

Server -> client frames:
    qrCode          {"qrCodeDataURL": "data:image/png;base64,..."}
    whatsappStatus  {"ready": bool, "message"?: str, "error"?: str}
    messageStatus   {"id": int, "status": "sent" | "failed", "error"?: str}
"""

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from fee_reminder.auth.verify import identity_from_token
from fee_reminder.infrastructure.observability.logging import get_logger
from fee_reminder.services.push_channel import push_channel
from fee_reminder.services.whatsapp.registry import session_registry

router = APIRouter(tags=["push"])
logger = get_logger(__name__)


@router.websocket("/ws")
async def push_endpoint(websocket: WebSocket, token: str | None = Query(None)):
    user = identity_from_token(token)
    if user is None:
        logger.warning("Rejected unauthenticated push channel")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await push_channel.connect(user.user_id, websocket)
    try:
        while True:
            try:
                message = await websocket.receive_json()
            except (KeyError, ValueError):
                # KeyError: binary frame, receive_json only reads text frames
                await websocket.send_json({"event": "error", "data": {"message": "Invalid JSON"}})
                continue

            event = message.get("event") if isinstance(message, dict) else None

            if event == "initializeWhatsApp":
                await session_registry.connect(user)
            elif event == "disconnectWhatsApp":
                await session_registry.disconnect(user.user_id)
            elif event == "ping":
                await websocket.send_json({"event": "pong", "data": {}})
            else:
                logger.debug("Unknown push event", user_id=user.user_id, push_event=event)
                await websocket.send_json(
                    {"event": "error", "data": {"message": f"Unknown event: {event}"}}
                )

    except WebSocketDisconnect:
        pass
    finally:
        push_channel.disconnect(user.user_id, websocket)
