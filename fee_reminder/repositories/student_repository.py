"""
Persistence layer for students.

The campaign runner and the reminder job read recipients in bulk and then
update one row at a time right after each send, so a crash mid-campaign
leaves already-notified students marked and the rest retryable.
"""

from datetime import date, datetime

from fee_reminder.db.helpers import (
    execute_query,
    execute_transaction,
    fetch_all,
    with_db_retry,
)
from fee_reminder.infrastructure.observability.logging import get_logger
from fee_reminder.models.domain.student_domain import Recipient

logger = get_logger(__name__)


class StudentRepository:
    """Query helpers backing the dashboard, the campaign runner and the reminder job."""

    SELECT_COLUMNS = """
        id, owner_id, name, phone, amount, due_date,
        last_reminder_sent, reminder_date, is_sent
    """

    @classmethod
    def _row_to_recipient(cls, row: dict) -> Recipient:
        return Recipient(
            id=row["id"],
            owner_id=str(row["owner_id"]),
            name=row["name"],
            phone=row["phone"],
            amount=row["amount"],
            due_date=row.get("due_date"),
            last_reminder_sent=row.get("last_reminder_sent"),
            reminder_date=row.get("reminder_date"),
            is_sent=bool(row.get("is_sent")),
        )

    @classmethod
    @with_db_retry(max_retries=3, base_delay=0.1)
    async def list_recipients(cls, owner_id: str) -> list[Recipient]:
        """Every student of the owner, in insertion order."""
        query = f"""
            SELECT {cls.SELECT_COLUMNS}
            FROM students
            WHERE owner_id = %s
            ORDER BY id
        """
        rows = await fetch_all(query, (owner_id,))
        return [cls._row_to_recipient(row) for row in rows]

    @classmethod
    async def mark_sent(cls, recipient_id: int, sent_at: datetime) -> int:
        """Stamp last_reminder_sent on one student; siblings sharing a phone are left alone."""
        query = "UPDATE students SET last_reminder_sent = %s WHERE id = %s"
        return await execute_query(query, (sent_at, recipient_id))

    @classmethod
    @with_db_retry(max_retries=3, base_delay=0.1)
    async def list_due_and_unsent(cls, owner_id: str, today: date, lead_days: int) -> list[Recipient]:
        """
        Students whose reminder falls on ``today`` and has not gone out yet.

        A student is due when its due date plus ``lead_days`` is today, or when
        an explicit reminder date was scheduled for today.
        """
        query = f"""
            SELECT {cls.SELECT_COLUMNS}
            FROM students
            WHERE owner_id = %s
              AND is_sent = false
              AND (due_date + %s::int = %s::date OR reminder_date = %s::date)
            ORDER BY id
        """
        rows = await fetch_all(query, (owner_id, lead_days, today, today))
        return [cls._row_to_recipient(row) for row in rows]

    @classmethod
    async def mark_campaign_sent(cls, recipient_id: int) -> int:
        query = "UPDATE students SET is_sent = true WHERE id = %s"
        return await execute_query(query, (recipient_id,))

    @classmethod
    async def replace_all(cls, owner_id: str, recipients: list[Recipient]) -> int:
        """Atomically swap the owner's students for a freshly uploaded sheet."""
        insert_query = """
            INSERT INTO students (owner_id, name, phone, amount, due_date)
            VALUES (%s, %s, %s, %s, %s)
        """
        statements = [("DELETE FROM students WHERE owner_id = %s", (owner_id,))]
        statements.extend(
            (insert_query, (owner_id, r.name, r.phone, r.amount, r.due_date)) for r in recipients
        )

        await execute_transaction(statements)
        logger.info("Student list replaced", owner_id=owner_id, student_count=len(recipients))
        return len(recipients)

    @classmethod
    async def schedule_reminder(cls, owner_id: str, student_id: int, reminder_date: date) -> bool:
        query = """
            UPDATE students
            SET reminder_date = %s, is_sent = false
            WHERE id = %s AND owner_id = %s
        """
        affected = await execute_query(query, (reminder_date, student_id, owner_id))
        return affected > 0

    @classmethod
    @with_db_retry(max_retries=3, base_delay=0.1)
    async def list_owners_with_students(cls) -> list[str]:
        rows = await fetch_all("SELECT DISTINCT owner_id FROM students")
        return [str(row["owner_id"]) for row in rows]
