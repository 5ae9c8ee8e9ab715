"""
auth.py
-------
Purpose:
    Dashboard account registration and login.

    - Passwords are stored as bcrypt hashes.
    - Login returns an HS256 access token valid for JWT_EXPIRES_HOURS.
    - Repeated failed logins from one IP for one username are throttled (429).
"""

import asyncio

from fastapi import APIRouter, HTTPException, Request, status

from fee_reminder.auth.passwords import hash_password, verify_password
from fee_reminder.auth.verify import issue_access_token
from fee_reminder.db.helpers import DatabaseError
from fee_reminder.infrastructure.observability.logging import get_logger
from fee_reminder.middleware.request_context import client_ip
from fee_reminder.models.api.user_request import LoginRequest, RegisterRequest
from fee_reminder.models.api.user_response import LoginResponse, RegisterResponse
from fee_reminder.repositories.user_repository import UserRepository, UsernameTakenError
from fee_reminder.services import login_throttle

router = APIRouter(prefix="/api", tags=["auth"])
logger = get_logger(__name__)


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
async def register(body: RegisterRequest):
    username = body.username.strip()
    if not username:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username and password are required")

    password_hash = await asyncio.to_thread(hash_password, body.password)
    try:
        await UserRepository.create(username, password_hash)
    except UsernameTakenError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username already exists") from e
    except DatabaseError as e:
        logger.error("Registration failed", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Registration failed"
        ) from e

    return RegisterResponse(success=True, message="User registered successfully")


@router.post("/login", response_model=LoginResponse)
async def login(body: LoginRequest, request: Request):
    username = body.username.strip()
    ip_address = getattr(request.state, "ip_address", None) or client_ip(request)

    if await login_throttle.is_locked_out(username, ip_address):
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many failed login attempts, try again later",
        )

    try:
        user = await UserRepository.get_by_username(username)
    except DatabaseError as e:
        logger.error("Login lookup failed", error=str(e))
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Login failed") from e

    if user is None or not await asyncio.to_thread(verify_password, body.password, user.password_hash):
        await login_throttle.record_failure(username, ip_address)
        logger.warning("Failed login attempt", ip_address=ip_address)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    await login_throttle.reset(username, ip_address)
    logger.info("User logged in", user_id=user.id)
    return LoginResponse(success=True, token=issue_access_token(user.id, user.username), username=user.username)
