# fee_reminder/models/api/student_request.py
"""
Student API request models.
Used by routes for input validation.
"""

from datetime import date

from pydantic import BaseModel, ConfigDict, Field


class ScheduleReminderRequest(BaseModel):
    """Request for scheduling a one-off reminder for a student."""

    model_config = ConfigDict(populate_by_name=True)

    student_id: int = Field(..., alias="studentId", ge=1, description="Student row id")
    reminder_date: date = Field(..., alias="date", description="Day the reminder should go out (YYYY-MM-DD)")
