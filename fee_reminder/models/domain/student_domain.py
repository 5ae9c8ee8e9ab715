"""
Domain models for students and reminder campaigns.

Students are owned by the storage layer; the messaging core only reads them
in bulk and writes delivery timestamps back one row at a time. Campaign
results are transient and never persisted as an entity.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum


@dataclass(slots=True)
class Recipient:
    """Represents a students row."""

    id: int | None
    owner_id: str
    name: str
    phone: str  # E.164, e.g. "+919876543210"
    amount: Decimal
    due_date: date | None = None
    last_reminder_sent: datetime | None = None
    reminder_date: date | None = None
    is_sent: bool = False


class DeliveryStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"


@dataclass(slots=True)
class DeliveryResult:
    """Outcome of one send attempt."""

    recipient: Recipient
    status: DeliveryStatus
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is DeliveryStatus.SENT


@dataclass(slots=True)
class CampaignOutcome:
    """Ordered per-recipient results of one campaign run."""

    results: list[DeliveryResult] = field(default_factory=list)

    @property
    def sent_count(self) -> int:
        return sum(1 for result in self.results if result.ok)

    @property
    def errors(self) -> list[dict]:
        return [
            {"student": result.recipient.name, "phone": result.recipient.phone, "error": result.error}
            for result in self.results
            if not result.ok
        ]

    def summary(self) -> dict:
        return {
            "sentCount": self.sent_count,
            "errors": self.errors,
            "message": f"Sent {self.sent_count} messages with {len(self.errors)} errors",
        }
