"""GET/PUT /api/config: the reminder settings editable from the dashboard."""

import asyncio

from fastapi import APIRouter, Depends, HTTPException, status

from fee_reminder.auth.verify import current_identity
from fee_reminder.infrastructure.observability.logging import get_logger
from fee_reminder.models.api.config_request import UpdateTemplateRequest
from fee_reminder.models.api.messaging_response import SimpleResponse
from fee_reminder.models.domain.user_domain import UserIdentity
from fee_reminder.services.reminder_config import ReminderConfigError, reminder_config_store

router = APIRouter(prefix="/api", tags=["config"])
logger = get_logger(__name__)


@router.get("/config")
async def get_config(user: UserIdentity = Depends(current_identity)):
    try:
        config = await asyncio.to_thread(reminder_config_store.load)
    except ReminderConfigError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Error loading configuration"
        ) from e
    return config.model_dump(by_alias=True)


@router.put("/config", response_model=SimpleResponse)
async def update_config(body: UpdateTemplateRequest, user: UserIdentity = Depends(current_identity)):
    try:
        await asyncio.to_thread(reminder_config_store.update_message_template, body.message_template)
    except (ReminderConfigError, OSError) as e:
        logger.error("Error saving template", user_id=user.user_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Error saving template"
        ) from e
    return SimpleResponse(success=True, message="Template updated successfully")
