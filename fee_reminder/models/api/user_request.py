# fee_reminder/models/api/user_request.py
from pydantic import BaseModel, Field


class RegisterRequest(BaseModel):
    """Request body for POST /api/register."""

    username: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=1, max_length=256)


class LoginRequest(BaseModel):
    """Request body for POST /api/login."""

    username: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=1, max_length=256)
