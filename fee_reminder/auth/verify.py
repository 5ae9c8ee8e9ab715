"""
verify.py
---------
Purpose:
    Issue and verify the dashboard's HS256 access tokens.

Notes:
    - Tokens carry `sub` (user id) and `username`, and expire after
      JWT_EXPIRES_HOURS.
    - `auth_dependency` protects HTTP routes; `identity_from_token` is used by
      the WebSocket handshake, which cannot send an Authorization header.
"""

from datetime import UTC, datetime, timedelta

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from fee_reminder.config import settings
from fee_reminder.infrastructure.observability.logging import get_logger
from fee_reminder.models.domain.user_domain import UserIdentity

logger = get_logger(__name__)

_security = HTTPBearer()


def issue_access_token(user_id: str, username: str) -> str:
    now = datetime.now(UTC)
    payload = {
        "sub": user_id,
        "username": username,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(hours=settings.JWT_EXPIRES_HOURS)).timestamp()),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def verify_jwt(token: str) -> dict:
    try:
        decoded = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            options={"verify_exp": True, "require": ["sub", "exp"]},
        )
        return decoded
    except jwt.ExpiredSignatureError as e:
        logger.warning("Expired token presented")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Token expired",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e
    except jwt.InvalidTokenError as e:
        logger.warning("Invalid token presented", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


def auth_dependency(credentials: HTTPAuthorizationCredentials = Depends(_security)) -> dict:
    token = credentials.credentials
    return verify_jwt(token)


def current_identity(claims: dict = Depends(auth_dependency)) -> UserIdentity:
    return UserIdentity.from_claims(claims)


def identity_from_token(token: str | None) -> UserIdentity | None:
    """Resolve a raw token to an identity, or None when it is missing or invalid."""
    if not token:
        return None
    try:
        return UserIdentity.from_claims(verify_jwt(token))
    except HTTPException:
        return None
