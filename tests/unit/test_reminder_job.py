from datetime import date, datetime
from zoneinfo import ZoneInfo

import pytest

from fee_reminder.db.helpers import DatabaseError
from fee_reminder.jobs.reminder_job import ReminderJob, ReminderJobError, seconds_until_next_run

TODAY = date(2024, 1, 12)


@pytest.mark.asyncio
async def test_only_unsent_due_recipients_are_sent_and_marked(
    runner, registry, student_store, user, recipient, connect_ready
):
    student_store.recipients = [
        recipient(1, "Due", "+919876543210", due_date=date(2024, 1, 10)),
        recipient(2, "AlreadySent", "+919876543211", due_date=date(2024, 1, 10), is_sent=True),
        recipient(3, "NotYet", "+919876543212", due_date=date(2024, 1, 11)),
        recipient(4, "Scheduled", "+919876543213", due_date=date(2024, 3, 1), reminder_date=TODAY),
    ]
    session = await connect_ready(registry, user)
    job = ReminderJob(runner, lead_days=2)

    metrics = await job.run_once(today=TODAY)

    assert [address for address, _ in session._backend.sent] == [
        "919876543210@c.us",
        "919876543213@c.us",
    ]
    assert student_store.campaign_marked == [1, 4]
    assert metrics["reminders_sent"] == 2
    assert metrics["reminders_failed"] == 0


@pytest.mark.asyncio
async def test_failed_send_is_not_marked_and_does_not_stop_others(
    runner, registry, backend_factory, student_store, user, recipient, connect_ready
):
    student_store.recipients = [
        recipient(1, "Fails", "+919876543210", due_date=date(2024, 1, 10)),
        recipient(2, "Works", "+919876543211", due_date=date(2024, 1, 10)),
    ]
    backend_factory.failing_addresses = {"919876543210@c.us"}
    await connect_ready(registry, user)

    metrics = await ReminderJob(runner, lead_days=2).run_once(today=TODAY)

    assert student_store.campaign_marked == [2]
    assert student_store.recipients[0].is_sent is False
    assert metrics["reminders_failed"] == 1


@pytest.mark.asyncio
async def test_scheduled_sends_do_not_use_push_channel(
    runner, registry, student_store, notifier, user, recipient, connect_ready
):
    student_store.recipients = [recipient(1, "Due", "+919876543210", due_date=date(2024, 1, 10))]
    await connect_ready(registry, user)

    await ReminderJob(runner, lead_days=2).run_once(today=TODAY)

    assert notifier.for_user(user.user_id, "messageStatus") == []


@pytest.mark.asyncio
async def test_owners_without_ready_session_are_skipped(
    runner, registry, student_store, user, other_user, recipient, connect_ready
):
    student_store.recipients = [
        recipient(1, "Mine", "+919876543210", due_date=date(2024, 1, 10)),
        recipient(2, "Theirs", "+919876543211", owner_id=other_user.user_id, due_date=date(2024, 1, 10)),
    ]
    await connect_ready(registry, user)

    metrics = await ReminderJob(runner, lead_days=2).run_once(today=TODAY)

    assert student_store.campaign_marked == [1]
    assert metrics["owners_skipped"] == 1
    assert metrics["owners_processed"] == 1


@pytest.mark.asyncio
async def test_owner_lookup_failure_raises_job_error(runner, student_store):
    async def broken():
        raise DatabaseError("connection refused", operation="fetch_all")

    student_store.list_owners_with_students = broken
    job = ReminderJob(runner)

    with pytest.raises(ReminderJobError):
        await job.run_once(today=TODAY)
    assert job.is_running is False


def test_seconds_until_next_run_later_today():
    now = datetime(2024, 1, 12, 22, 30, tzinfo=ZoneInfo("UTC"))
    assert seconds_until_next_run(now, 23) == 30 * 60


def test_seconds_until_next_run_rolls_to_tomorrow():
    now = datetime(2024, 1, 12, 0, 0, 1, tzinfo=ZoneInfo("UTC"))
    assert seconds_until_next_run(now, 0) == 24 * 3600 - 1


def test_seconds_until_next_run_across_dst_change():
    # 2024-03-10 New York springs forward at 02:00, so 00:00 -> 09:00 is 8 real hours
    now = datetime(2024, 3, 10, 0, 0, tzinfo=ZoneInfo("America/New_York"))
    assert seconds_until_next_run(now, 9) == 8 * 3600
