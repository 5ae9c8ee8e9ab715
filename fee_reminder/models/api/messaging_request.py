# fee_reminder/models/api/messaging_request.py
from pydantic import BaseModel, ConfigDict, Field


class SendMessageRequest(BaseModel):
    """Request body for POST /api/send-message."""

    model_config = ConfigDict(populate_by_name=True)

    phone_number: str = Field(..., alias="phoneNumber", min_length=1, max_length=40)
    message: str = Field(..., min_length=1, max_length=4096)


class SendRemindersRequest(BaseModel):
    """Optional body for POST /api/send-reminders; overrides the saved template."""

    model_config = ConfigDict(populate_by_name=True)

    message_template: str | None = Field(None, alias="messageTemplate", min_length=1, max_length=4096)
