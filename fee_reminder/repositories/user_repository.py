"""Persistence helpers for dashboard accounts."""

import uuid

import psycopg

from fee_reminder.db.helpers import DatabaseError, fetch_one
from fee_reminder.infrastructure.observability.logging import get_logger
from fee_reminder.models.domain.user_domain import UserRecord

logger = get_logger(__name__)


class UsernameTakenError(DatabaseError):
    """Raised when registering a username that already exists."""


class UserRepository:
    @classmethod
    async def get_by_username(cls, username: str) -> UserRecord | None:
        row = await fetch_one(
            "SELECT id, username, password_hash, created_at FROM users WHERE username = %s",
            (username,),
        )
        if not row:
            return None
        return UserRecord(
            id=str(row["id"]),
            username=row["username"],
            password_hash=row["password_hash"],
            created_at=row.get("created_at"),
        )

    @classmethod
    async def create(cls, username: str, password_hash: str) -> UserRecord:
        user_id = str(uuid.uuid4())
        try:
            row = await fetch_one(
                """
                INSERT INTO users (id, username, password_hash)
                VALUES (%s, %s, %s)
                RETURNING id, username, password_hash, created_at
                """,
                (user_id, username, password_hash),
            )
        except DatabaseError as e:
            if isinstance(e.__cause__, psycopg.errors.UniqueViolation):
                raise UsernameTakenError(
                    "Username already exists", operation="create_user", recoverable=False
                ) from e
            raise

        logger.info("User registered", user_id=user_id)
        return UserRecord(
            id=str(row["id"]),
            username=row["username"],
            password_hash=row["password_hash"],
            created_at=row.get("created_at"),
        )
