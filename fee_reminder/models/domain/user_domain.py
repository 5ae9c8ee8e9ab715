from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True, slots=True)
class UserIdentity:
    """Verified identity handed to the messaging core by the auth layer."""

    user_id: str
    username: str

    @classmethod
    def from_claims(cls, claims: dict) -> "UserIdentity":
        return cls(user_id=str(claims["sub"]), username=str(claims.get("username") or ""))


@dataclass(slots=True)
class UserRecord:
    """Represents a users row."""

    id: str
    username: str
    password_hash: str
    created_at: datetime | None = None
