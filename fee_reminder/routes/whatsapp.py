"""
whatsapp.py
-----------
Purpose:
    HTTP side of the WhatsApp integration. Pairing itself happens over the
    push channel (see routes/push.py); these endpoints run campaigns and
    report or tear down sessions.
"""

from fastapi import APIRouter, Body, Depends, HTTPException, status

from fee_reminder.auth.verify import current_identity
from fee_reminder.db.helpers import DatabaseError
from fee_reminder.infrastructure.observability.logging import get_logger
from fee_reminder.models.api.messaging_request import SendMessageRequest, SendRemindersRequest
from fee_reminder.models.api.messaging_response import (
    CampaignResponse,
    SimpleResponse,
    WhatsAppStatusResponse,
)
from fee_reminder.models.domain.user_domain import UserIdentity
from fee_reminder.services.campaign_service import CampaignRunner, campaign_runner
from fee_reminder.services.push_channel import STATUS_EVENT, PushChannelManager, push_channel
from fee_reminder.services.reminder_config import ReminderConfigError
from fee_reminder.services.whatsapp.errors import CampaignInProgress, SendFailure, SessionNotReady
from fee_reminder.services.whatsapp.registry import SessionRegistry, session_registry

router = APIRouter(prefix="/api", tags=["whatsapp"])
logger = get_logger(__name__)


def get_campaign_runner() -> CampaignRunner:
    return campaign_runner


def get_session_registry() -> SessionRegistry:
    return session_registry


def get_push_channel() -> PushChannelManager:
    return push_channel


@router.post("/send-reminders", response_model=CampaignResponse)
async def send_reminders(
    body: SendRemindersRequest | None = Body(None),
    user: UserIdentity = Depends(current_identity),
    runner: CampaignRunner = Depends(get_campaign_runner),
):
    template = body.message_template if body else None
    try:
        outcome = await runner.run(user, template=template)
    except SessionNotReady as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="WhatsApp not connected") from e
    except CampaignInProgress as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    except (DatabaseError, ReminderConfigError) as e:
        logger.error("Send reminders error", user_id=user.user_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to send reminders"
        ) from e

    return CampaignResponse(success=True, **outcome.summary())


@router.post("/disconnect-whatsapp", response_model=SimpleResponse)
async def disconnect_whatsapp(
    user: UserIdentity = Depends(current_identity),
    registry: SessionRegistry = Depends(get_session_registry),
    channel: PushChannelManager = Depends(get_push_channel),
):
    """Tear down every WhatsApp session in the process."""
    count = await registry.disconnect_all()
    if count == 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="WhatsApp is not connected")

    await channel.broadcast(STATUS_EVENT, {"ready": False})
    logger.info("WhatsApp disconnected by request", user_id=user.user_id, sessions=count)
    return SimpleResponse(success=True, message="WhatsApp disconnected")


@router.post("/send-message", response_model=SimpleResponse)
async def send_message(
    body: SendMessageRequest,
    user: UserIdentity = Depends(current_identity),
    runner: CampaignRunner = Depends(get_campaign_runner),
):
    try:
        await runner.send_single(user, body.phone_number, body.message)
    except SessionNotReady as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="WhatsApp client not initialized"
        ) from e
    except CampaignInProgress as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    except SendFailure as e:
        logger.error("Failed to send message", user_id=user.user_id, error=str(e))
        code = status.HTTP_400_BAD_REQUEST if not e.recoverable else status.HTTP_502_BAD_GATEWAY
        raise HTTPException(status_code=code, detail="Failed to send message") from e

    return SimpleResponse(success=True, message="Message sent successfully")


@router.get("/whatsapp/status", response_model=WhatsAppStatusResponse)
async def whatsapp_status(
    user: UserIdentity = Depends(current_identity),
    registry: SessionRegistry = Depends(get_session_registry),
    runner: CampaignRunner = Depends(get_campaign_runner),
):
    session = registry.get(user.user_id)
    return WhatsAppStatusResponse(
        ready=bool(session and session.is_ready),
        state=session.state.value if session else None,
        campaign_running=runner.is_running(user.user_id),
    )
