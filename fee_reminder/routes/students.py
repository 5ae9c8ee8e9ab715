"""
students.py
-----------
Purpose:
    Manage the caller's student list.

    - POST /api/upload-excel replaces all of the caller's students with the
      rows of an uploaded .xlsx file (all-or-nothing).
    - GET /api/students lists them.
    - POST /api/schedule-reminder sets a one-off reminder date for a student.
"""

import asyncio

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status

from fee_reminder.auth.verify import current_identity
from fee_reminder.config import settings
from fee_reminder.db.helpers import DatabaseError
from fee_reminder.infrastructure.observability.logging import get_logger
from fee_reminder.models.api.student_request import ScheduleReminderRequest
from fee_reminder.models.api.student_response import (
    ScheduleReminderResponse,
    StudentListResponse,
    StudentResponse,
    UploadResponse,
)
from fee_reminder.models.domain.user_domain import UserIdentity
from fee_reminder.repositories.student_repository import StudentRepository
from fee_reminder.services.reminder_config import ReminderConfigError, reminder_config_store
from fee_reminder.services.spreadsheet_service import (
    SpreadsheetValidationError,
    parse_student_sheet,
    save_upload,
)

router = APIRouter(prefix="/api", tags=["students"])
logger = get_logger(__name__)


@router.post("/upload-excel", response_model=UploadResponse)
async def upload_excel(
    excelFile: UploadFile | None = File(None),
    user: UserIdentity = Depends(current_identity),
):
    if excelFile is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No Excel file uploaded")

    content = await excelFile.read(settings.MAX_UPLOAD_BYTES + 1)
    if len(content) > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="Excel file too large")
    if not content:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No Excel file uploaded")

    try:
        config = await asyncio.to_thread(reminder_config_store.load)
        students = await asyncio.to_thread(
            parse_student_sheet, content, user.user_id, config.default_country_code
        )
    except SpreadsheetValidationError as e:
        logger.warning("Rejected student spreadsheet", user_id=user.user_id, row=e.row, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=f"Error uploading file: {e}"
        ) from e
    except ReminderConfigError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e)) from e

    try:
        await StudentRepository.replace_all(user.user_id, students)
        saved = await StudentRepository.list_recipients(user.user_id)
    except DatabaseError as e:
        logger.error("Failed to store students", user_id=user.user_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Error uploading file"
        ) from e

    try:
        await asyncio.to_thread(save_upload, content, user.user_id)
    except OSError as e:
        logger.warning("Could not keep a copy of the upload", user_id=user.user_id, error=str(e))

    return UploadResponse(
        success=True,
        message="File uploaded successfully",
        students=[StudentResponse.from_recipient(s) for s in saved],
    )


@router.get("/students", response_model=StudentListResponse)
async def list_students(user: UserIdentity = Depends(current_identity)):
    try:
        students = await StudentRepository.list_recipients(user.user_id)
    except DatabaseError as e:
        logger.error("Failed to list students", user_id=user.user_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Error fetching students"
        ) from e
    return StudentListResponse(students=[StudentResponse.from_recipient(s) for s in students])


@router.post("/schedule-reminder", response_model=ScheduleReminderResponse)
async def schedule_reminder(
    body: ScheduleReminderRequest,
    user: UserIdentity = Depends(current_identity),
):
    try:
        updated = await StudentRepository.schedule_reminder(user.user_id, body.student_id, body.reminder_date)
    except DatabaseError as e:
        logger.error("Failed to schedule reminder", user_id=user.user_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Error scheduling reminder"
        ) from e

    if not updated:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Student not found")

    logger.info(
        "Reminder scheduled",
        user_id=user.user_id,
        student_id=body.student_id,
        reminder_date=body.reminder_date.isoformat(),
    )
    return ScheduleReminderResponse(success=True, message="Reminder scheduled")
