# fee_reminder/models/api/student_response.py
from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from fee_reminder.models.domain.student_domain import Recipient


class StudentResponse(BaseModel):
    id: int | None = None
    name: str
    phone: str
    amount: Decimal
    due_date: date | None = None
    last_reminder_sent: datetime | None = None
    reminder_date: date | None = None
    is_sent: bool = False

    @classmethod
    def from_recipient(cls, recipient: Recipient) -> "StudentResponse":
        return cls(
            id=recipient.id,
            name=recipient.name,
            phone=recipient.phone,
            amount=recipient.amount,
            due_date=recipient.due_date,
            last_reminder_sent=recipient.last_reminder_sent,
            reminder_date=recipient.reminder_date,
            is_sent=recipient.is_sent,
        )


class StudentListResponse(BaseModel):
    """Response for GET /api/students"""

    success: bool = True
    students: list[StudentResponse] = Field(default_factory=list)


class UploadResponse(BaseModel):
    """Response for POST /api/upload-excel"""

    success: bool
    message: str
    students: list[StudentResponse] = Field(default_factory=list)


class ScheduleReminderResponse(BaseModel):
    success: bool
    message: str
