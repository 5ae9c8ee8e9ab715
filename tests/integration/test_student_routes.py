import io
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient
from openpyxl import Workbook

from fee_reminder.main import app
from fee_reminder.services.reminder_config import ReminderConfig

client = TestClient(app)

XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@pytest.fixture(autouse=True)
def authenticated(apply_auth_override):
    apply_auth_override(app)
    yield
    app.dependency_overrides.clear()


def _workbook_bytes(rows):
    workbook = Workbook()
    sheet = workbook.active
    sheet.append(["Name", "Phone", "Amount", "DueDate"])
    for row in rows:
        sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def test_upload_replaces_students():
    content = _workbook_bytes([["Asha", "9876543210", 500, "2024-01-10"]])

    with (
        patch("fee_reminder.routes.students.reminder_config_store.load", return_value=ReminderConfig()),
        patch("fee_reminder.routes.students.StudentRepository.replace_all", new=AsyncMock(return_value=1)) as replace,
        patch(
            "fee_reminder.routes.students.StudentRepository.list_recipients",
            new=AsyncMock(side_effect=lambda owner_id: replace.await_args.args[1]),
        ),
        patch("fee_reminder.routes.students.save_upload"),
    ):
        response = client.post(
            "/api/upload-excel", files={"excelFile": ("students.xlsx", content, XLSX_MIME)}
        )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["students"][0]["phone"] == "+919876543210"
    stored = replace.await_args.args[1]
    assert [s.name for s in stored] == ["Asha"]


def test_upload_with_invalid_rows_is_rejected_without_writing():
    content = _workbook_bytes([["Asha", "+12", 500, None]])

    with (
        patch("fee_reminder.routes.students.reminder_config_store.load", return_value=ReminderConfig()),
        patch("fee_reminder.routes.students.StudentRepository.replace_all", new=AsyncMock()) as replace,
    ):
        response = client.post(
            "/api/upload-excel", files={"excelFile": ("students.xlsx", content, XLSX_MIME)}
        )

    assert response.status_code == 400
    assert "Invalid phone format" in response.json()["detail"]
    replace.assert_not_awaited()


def test_upload_without_file():
    response = client.post("/api/upload-excel")
    assert response.status_code == 400


def test_schedule_reminder_for_unknown_student():
    with patch(
        "fee_reminder.routes.students.StudentRepository.schedule_reminder",
        new=AsyncMock(return_value=False),
    ):
        response = client.post("/api/schedule-reminder", json={"studentId": 99, "date": "2024-02-01"})

    assert response.status_code == 404


def test_schedule_reminder():
    with patch(
        "fee_reminder.routes.students.StudentRepository.schedule_reminder",
        new=AsyncMock(return_value=True),
    ) as schedule:
        response = client.post("/api/schedule-reminder", json={"studentId": 7, "date": "2024-02-01"})

    assert response.status_code == 200
    args = schedule.await_args.args
    assert args[1] == 7
    assert args[2].isoformat() == "2024-02-01"


def test_get_and_update_config(tmp_path):
    from fee_reminder.services.reminder_config import ReminderConfigStore

    store = ReminderConfigStore(tmp_path / "config.json")
    with patch("fee_reminder.routes.reminder_config.reminder_config_store", store):
        updated = client.put("/api/config", json={"messageTemplate": "Pay {{amount}}"})
        fetched = client.get("/api/config")

    assert updated.status_code == 200
    assert fetched.json()["messageTemplate"] == "Pay {{amount}}"
    assert fetched.json()["defaultCountryCode"] == "+91"
