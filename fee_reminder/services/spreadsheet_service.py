"""
Student spreadsheet import.

Reads the first sheet of an .xlsx upload with columns Name, Phone, Amount and
DueDate (header row first), normalizes phones to "+<digits>" and validates
every row before anything is written. One bad row rejects the whole file.
"""

import io
import re
import zipfile
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path

from openpyxl import load_workbook
from openpyxl.utils.datetime import from_excel
from openpyxl.utils.exceptions import InvalidFileException

from fee_reminder.config import settings
from fee_reminder.infrastructure.observability.logging import get_logger
from fee_reminder.models.domain.student_domain import Recipient

logger = get_logger(__name__)

REQUIRED_COLUMNS = ("Name", "Phone", "Amount")
PHONE_PATTERN = re.compile(r"^\+\d{8,20}$")
NATIONAL_NUMBER_MAX_DIGITS = 10
UPLOAD_FILENAME = "student_fees.xlsx"
DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y")


class SpreadsheetValidationError(ValueError):
    def __init__(self, message: str, row: int | None = None):
        super().__init__(message)
        self.row = row


def normalize_phone(raw, default_country_code: str) -> str:
    """Return "+<digits>"; bare national numbers get the default country code."""
    if isinstance(raw, float) and raw.is_integer():
        raw = int(raw)
    text = str(raw).strip()
    digits = re.sub(r"\D", "", text)
    if not digits:
        return ""
    if text.startswith("+") or len(digits) > NATIONAL_NUMBER_MAX_DIGITS:
        return f"+{digits}"
    country_digits = re.sub(r"\D", "", default_country_code)
    return f"+{country_digits}{digits}"


def parse_amount(raw) -> Decimal:
    if isinstance(raw, bool) or raw is None or str(raw).strip() == "":
        raise InvalidOperation
    amount = Decimal(str(raw).strip())
    if not amount.is_finite():
        raise InvalidOperation
    return amount


def parse_due_date(raw) -> date | None:
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if isinstance(raw, (int, float)):
        return from_excel(raw).date()

    text = str(raw).strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"unrecognized date {text!r}")


def parse_student_sheet(content: bytes, owner_id: str, default_country_code: str) -> list[Recipient]:
    try:
        workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
        raise SpreadsheetValidationError(f"Invalid Excel file: {e}") from e

    try:
        sheet = workbook.worksheets[0]
        rows = sheet.iter_rows(values_only=True)
        header = next(rows, None)
        if header is None:
            raise SpreadsheetValidationError("Spreadsheet is empty")

        columns = {str(name).strip(): index for index, name in enumerate(header) if name is not None}
        missing = [name for name in REQUIRED_COLUMNS if name not in columns]
        if missing:
            raise SpreadsheetValidationError(f"Missing columns: {', '.join(missing)}")

        def cell(values, name):
            index = columns.get(name)
            return values[index] if index is not None and index < len(values) else None

        students = []
        for row_number, values in enumerate(rows, start=2):
            if all(value is None or str(value).strip() == "" for value in values):
                continue

            name = str(cell(values, "Name") or "").strip()
            raw_phone = cell(values, "Phone")
            raw_amount = cell(values, "Amount")
            if not name or raw_phone in (None, "") or raw_amount in (None, ""):
                raise SpreadsheetValidationError(
                    f"Missing required fields for student: {name or f'row {row_number}'}", row=row_number
                )

            phone = normalize_phone(raw_phone, default_country_code)
            if not PHONE_PATTERN.match(phone):
                raise SpreadsheetValidationError(
                    f"Invalid phone format for {name}: {phone or raw_phone}", row=row_number
                )

            try:
                amount = parse_amount(raw_amount)
            except InvalidOperation as e:
                raise SpreadsheetValidationError(
                    f"Invalid amount for {name}: {raw_amount}", row=row_number
                ) from e

            try:
                due_date = parse_due_date(cell(values, "DueDate"))
            except (ValueError, OverflowError) as e:
                raise SpreadsheetValidationError(f"Invalid due date for {name}: {e}", row=row_number) from e

            students.append(
                Recipient(
                    id=None,
                    owner_id=owner_id,
                    name=name,
                    phone=phone,
                    amount=amount,
                    due_date=due_date,
                )
            )
    finally:
        workbook.close()

    logger.info("Parsed student spreadsheet", owner_id=owner_id, student_count=len(students))
    return students


def save_upload(content: bytes, owner_id: str) -> Path:
    """Keep the last uploaded sheet per owner for reference."""
    target = Path(settings.UPLOADS_DIR) / owner_id / UPLOAD_FILENAME
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(content)
    return target
