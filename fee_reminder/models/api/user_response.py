# fee_reminder/models/api/user_response.py
from pydantic import BaseModel


class RegisterResponse(BaseModel):
    success: bool
    message: str


class LoginResponse(BaseModel):
    """Response for POST /api/login; the token goes in the Authorization header."""

    success: bool
    token: str
    username: str
