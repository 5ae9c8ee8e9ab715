# fee_reminder/models/api/config_request.py
from pydantic import BaseModel, ConfigDict, Field


class UpdateTemplateRequest(BaseModel):
    """Request body for PUT /api/config."""

    model_config = ConfigDict(populate_by_name=True)

    message_template: str = Field(..., alias="messageTemplate", min_length=1, max_length=4096)
