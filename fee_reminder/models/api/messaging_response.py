# fee_reminder/models/api/messaging_response.py
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class CampaignResponse(BaseModel):
    """Response for POST /api/send-reminders"""

    model_config = ConfigDict(populate_by_name=True)

    success: bool
    sent_count: int = Field(..., alias="sentCount")
    errors: list[dict[str, Any]] = Field(default_factory=list)
    message: str


class SimpleResponse(BaseModel):
    success: bool
    message: str


class WhatsAppStatusResponse(BaseModel):
    """Response for GET /api/whatsapp/status"""

    ready: bool
    state: str | None = None
    campaign_running: bool = False
