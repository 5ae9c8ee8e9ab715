"""
Daily reminder job.

Once a day (REMINDER_RUN_HOUR in REMINDER_TIMEZONE) every owner with a ready
WhatsApp session gets reminders sent to the students that are due today and
not yet reminded. A student is due when its due date is REMINDER_LEAD_DAYS
behind today, or when a reminder date was scheduled for today.

Runs inside the API process because it needs the live session registry.
"""

import asyncio
from datetime import UTC, date, datetime, timedelta
from zoneinfo import ZoneInfo

from fee_reminder.config import settings
from fee_reminder.db.helpers import DatabaseError
from fee_reminder.infrastructure.observability.logging import get_logger
from fee_reminder.services.campaign_service import CampaignRunner, campaign_runner
from fee_reminder.services.reminder_config import ReminderConfigError

logger = get_logger(__name__)


class ReminderJobError(Exception):
    """Custom exception for reminder job operations."""

    def __init__(self, message: str, operation: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class ReminderJobMetrics:
    """Counters for one job run."""

    def __init__(self):
        self.reset()

    def reset(self):
        self.start_time = datetime.now(UTC)
        self.owners_processed = 0
        self.owners_skipped = 0
        self.reminders_sent = 0
        self.reminders_failed = 0
        self.processing_errors = 0
        self.total_duration_seconds = 0.0
        self.errors: list[dict] = []

    def record_sent(self, owner_id: str, student_id: int | None):
        self.reminders_sent += 1
        logger.debug("Scheduled reminder sent", owner_id=owner_id, student_id=student_id, job_run="reminders")

    def record_failure(self, owner_id: str, student_id: int | None, error: str):
        self.reminders_failed += 1
        self.errors.append(
            {
                "owner_id": owner_id,
                "student_id": student_id,
                "error": error,
                "timestamp": datetime.now(UTC).isoformat(),
            }
        )

    def record_skipped(self, owner_id: str):
        self.owners_skipped += 1
        logger.info("Skipping owner without ready WhatsApp session", owner_id=owner_id, job_run="reminders")

    def record_processing_error(self, owner_id: str, error: str):
        self.processing_errors += 1
        self.errors.append(
            {
                "owner_id": owner_id,
                "error": error,
                "error_type": "processing",
                "timestamp": datetime.now(UTC).isoformat(),
            }
        )
        logger.error("Reminder job processing error", owner_id=owner_id, error=error, job_run="reminders")

    def finalize(self):
        self.total_duration_seconds = (datetime.now(UTC) - self.start_time).total_seconds()

    def to_dict(self) -> dict:
        return {
            "job_run": "reminders",
            "start_time": self.start_time.isoformat(),
            "total_duration_seconds": round(self.total_duration_seconds, 2),
            "owners_processed": self.owners_processed,
            "owners_skipped": self.owners_skipped,
            "reminders_sent": self.reminders_sent,
            "reminders_failed": self.reminders_failed,
            "processing_errors": self.processing_errors,
            "errors_count": len(self.errors),
        }


class ReminderJob:
    def __init__(self, runner: CampaignRunner, lead_days: int | None = None):
        self.runner = runner
        self.lead_days = settings.REMINDER_LEAD_DAYS if lead_days is None else lead_days
        self.is_running = False
        self.last_run_time: datetime | None = None
        self.job_metrics = ReminderJobMetrics()

    @property
    def store(self):
        return self.runner.store

    @property
    def registry(self):
        return self.runner.registry

    async def run_once(self, today: date | None = None) -> dict:
        """
        Send today's due reminders for every owner with a ready session.

        Raises:
            ReminderJobError: If the owner list cannot be loaded
        """
        if self.is_running:
            logger.warning("Reminder job already running, skipping this iteration")
            return {"skipped": True, "reason": "already_running"}

        today = today or today_in_reminder_timezone()
        try:
            self.is_running = True
            self.job_metrics.reset()
            logger.info("Starting reminder job", today=today.isoformat(), lead_days=self.lead_days)

            try:
                owner_ids = await self.store.list_owners_with_students()
            except DatabaseError as e:
                raise ReminderJobError(f"Failed to load owners: {e}", operation="list_owners") from e

            for owner_id in owner_ids:
                await self._process_owner(owner_id, today)

            self.job_metrics.finalize()
            self.last_run_time = datetime.now(UTC)
            metrics = self.job_metrics.to_dict()
            logger.info("Reminder job completed", **metrics)
            return metrics

        finally:
            self.is_running = False

    async def _process_owner(self, owner_id: str, today: date) -> None:
        if not self._has_ready_session(owner_id):
            self.job_metrics.record_skipped(owner_id)
            return

        try:
            # Waits for any interactive campaign of the same owner to finish
            async with self.runner.exclusive(owner_id, wait=True):
                session = self.registry.get(owner_id)
                if session is None or not session.is_ready:
                    self.job_metrics.record_skipped(owner_id)
                    return

                due = await self.store.list_due_and_unsent(owner_id, today, self.lead_days)
                if not due:
                    self.job_metrics.owners_processed += 1
                    return

                template = await asyncio.to_thread(self.runner.config_store.get_message_template)
                logger.info("Sending scheduled reminders", owner_id=owner_id, due_count=len(due))

                for recipient in due:
                    result = await self.runner.send_one(session, recipient, template)
                    if not result.ok:
                        self.job_metrics.record_failure(owner_id, recipient.id, result.error or "send failed")
                        continue
                    try:
                        await self.store.mark_campaign_sent(recipient.id)
                    except DatabaseError as e:
                        self.job_metrics.record_processing_error(
                            owner_id, f"Sent but not marked (student {recipient.id}): {e}"
                        )
                        continue
                    self.job_metrics.record_sent(owner_id, recipient.id)

                self.job_metrics.owners_processed += 1

        except (DatabaseError, ReminderConfigError) as e:
            self.job_metrics.record_processing_error(owner_id, str(e))

    def _has_ready_session(self, owner_id: str) -> bool:
        session = self.registry.get(owner_id)
        return session is not None and session.is_ready

    def get_job_status(self) -> dict:
        return {
            "job_name": "reminders",
            "is_running": self.is_running,
            "enabled": settings.REMINDER_SCHEDULER_ENABLED,
            "run_hour": settings.REMINDER_RUN_HOUR,
            "timezone": settings.REMINDER_TIMEZONE,
            "lead_days": self.lead_days,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "last_run_metrics": self.job_metrics.to_dict() if self.last_run_time else None,
        }


def _reminder_zone() -> ZoneInfo:
    return ZoneInfo(settings.REMINDER_TIMEZONE)


def today_in_reminder_timezone() -> date:
    return datetime.now(_reminder_zone()).date()


def seconds_until_next_run(now: datetime, run_hour: int) -> float:
    """Seconds from ``now`` (tz-aware) until the next ``run_hour``:00 in the same zone."""
    next_run = now.replace(hour=run_hour, minute=0, second=0, microsecond=0)
    if next_run <= now:
        next_run += timedelta(days=1)
    # Wall-clock arithmetic above; elapsed time must cross DST shifts in UTC
    return (next_run.astimezone(UTC) - now.astimezone(UTC)).total_seconds()


# Singleton instance for application use
reminder_job = ReminderJob(campaign_runner)


def get_reminder_job_status() -> dict:
    return reminder_job.get_job_status()


async def start_reminder_scheduler(job: ReminderJob = reminder_job):
    """Sleep until the configured hour, run the job, repeat. Cancel the task to stop."""
    logger.info(
        "Starting reminder scheduler",
        run_hour=settings.REMINDER_RUN_HOUR,
        timezone=settings.REMINDER_TIMEZONE,
    )

    while True:
        delay = seconds_until_next_run(datetime.now(_reminder_zone()), settings.REMINDER_RUN_HOUR)
        logger.debug("Reminder scheduler sleeping", seconds=round(delay))
        await asyncio.sleep(delay)

        try:
            metrics = await job.run_once()
            if not metrics.get("skipped", False):
                logger.info("Reminder job cycle completed", **metrics)
        except ReminderJobError as e:
            logger.error("Reminder job failed", error=str(e), operation=e.operation)
        except Exception as e:
            logger.error("Reminder job crashed", error=str(e), error_type=type(e).__name__)
