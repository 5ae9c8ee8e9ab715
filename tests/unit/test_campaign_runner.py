import asyncio
from datetime import date
from decimal import Decimal

import pytest

from fee_reminder.services.campaign_service import (
    format_amount,
    render_message,
    to_backend_address,
)
from fee_reminder.services.whatsapp.errors import CampaignInProgress, SendFailure, SessionNotReady


def test_phone_normalization_strips_every_non_digit():
    assert to_backend_address("+91 98765-43210", "c.us") == "919876543210@c.us"
    assert to_backend_address("(0044) 7700 900123", "c.us") == "00447700900123@c.us"


def test_phone_without_digits_is_rejected():
    with pytest.raises(ValueError):
        to_backend_address("n/a", "c.us")


def test_render_message_fills_known_placeholders(recipient):
    student = recipient(1, "Asha", "+919876543210", amount="500", due_date=date(2024, 1, 10))

    body = render_message("Hi {{name}}, pay {{amount}} by {{dueDate}}", student)

    assert body == "Hi Asha, pay 500 by 2024-01-10"


def test_render_message_leaves_unknown_placeholders_and_repeats(recipient):
    student = recipient(1, "Asha", "+919876543210")

    body = render_message("{{name}} {{foo}} {{name}}", student)

    assert body == "Asha {{foo}} Asha"


def test_format_amount():
    assert format_amount(Decimal("500.00")) == "500"
    assert format_amount(Decimal("499.50")) == "499.5"
    assert format_amount(None) == ""


@pytest.mark.asyncio
async def test_run_requires_ready_session(runner, registry, backend_factory, student_store, user, recipient):
    student_store.recipients = [recipient(1, "Asha", "+919876543210")]

    with pytest.raises(SessionNotReady):
        await runner.run(user)

    # Still pairing: not ready either
    session = await registry.connect(user)
    await session.init_task
    with pytest.raises(SessionNotReady):
        await runner.run(user)

    assert backend_factory.created[0].sent == []


@pytest.mark.asyncio
async def test_run_preserves_order_and_records_failures(
    runner, registry, backend_factory, student_store, notifier, user, recipient, connect_ready
):
    student_store.recipients = [
        recipient(1, "Asha", "+919876543210"),
        recipient(2, "Ravi", "+919876543211"),
        recipient(3, "Meena", "+919876543212"),
    ]
    backend_factory.failing_addresses = {"919876543211@c.us"}
    session = await connect_ready(registry, user)

    outcome = await runner.run(user)

    assert [r.recipient.id for r in outcome.results] == [1, 2, 3]
    assert [r.status.value for r in outcome.results] == ["sent", "failed", "sent"]
    assert [address for address, _ in session._backend.sent] == [
        "919876543210@c.us",
        "919876543212@c.us",
    ]
    assert outcome.summary()["sentCount"] == 2
    assert outcome.summary()["errors"][0]["student"] == "Ravi"
    assert outcome.summary()["message"] == "Sent 2 messages with 1 errors"

    message_events = [e[2] for e in notifier.for_user(user.user_id, "messageStatus")]
    assert [e["status"] for e in message_events] == ["sent", "failed", "sent"]
    assert "error" in message_events[1]


@pytest.mark.asyncio
async def test_timestamp_written_only_on_success(
    runner, registry, backend_factory, student_store, user, recipient, connect_ready
):
    student_store.recipients = [
        recipient(1, "Asha", "+919876543210"),
        recipient(2, "Ravi", "+919876543211"),
    ]
    backend_factory.failing_addresses = {"919876543211@c.us"}
    await connect_ready(registry, user)

    await runner.run(user)

    assert student_store.mark_sent_calls == [1]
    assert student_store.recipients[0].last_reminder_sent is not None
    assert student_store.recipients[1].last_reminder_sent is None


@pytest.mark.asyncio
async def test_sibling_sharing_phone_keeps_no_timestamp_when_its_send_fails(
    runner, registry, student_store, user, recipient, connect_ready
):
    student_store.recipients = [
        recipient(1, "Asha", "+919876543210"),
        recipient(2, "Ravi", "+919876543210"),
    ]
    session = await connect_ready(registry, user)
    original_send = session._backend.send_message
    calls = 0

    async def fail_second_send(address, body):
        nonlocal calls
        calls += 1
        if calls == 2:
            raise SendFailure("Could not deliver")
        await original_send(address, body)

    session._backend.send_message = fail_second_send

    outcome = await runner.run(user)

    assert [r.status.value for r in outcome.results] == ["sent", "failed"]
    assert student_store.mark_sent_calls == [1]
    assert student_store.recipients[0].last_reminder_sent is not None
    assert student_store.recipients[1].last_reminder_sent is None


@pytest.mark.asyncio
async def test_explicit_template_overrides_saved_one(
    runner, registry, student_store, user, recipient, connect_ready
):
    student_store.recipients = [recipient(1, "Asha", "+919876543210")]
    session = await connect_ready(registry, user)

    await runner.run(user, template="Dear {{name}}")

    assert session._backend.sent == [("919876543210@c.us", "Dear Asha")]


@pytest.mark.asyncio
async def test_only_owner_students_are_messaged(
    runner, registry, student_store, user, other_user, recipient, connect_ready
):
    student_store.recipients = [
        recipient(1, "Asha", "+919876543210"),
        recipient(2, "Other", "+919876543299", owner_id=other_user.user_id),
    ]
    session = await connect_ready(registry, user)

    outcome = await runner.run(user)

    assert [r.recipient.id for r in outcome.results] == [1]
    assert len(session._backend.sent) == 1


@pytest.mark.asyncio
async def test_second_interactive_campaign_fails_fast(runner, registry, student_store, user, recipient, connect_ready):
    student_store.recipients = [recipient(1, "Asha", "+919876543210")]
    await connect_ready(registry, user)

    async with runner.exclusive(user.user_id):
        assert runner.is_running(user.user_id)
        with pytest.raises(CampaignInProgress):
            await runner.run(user)

    outcome = await runner.run(user)
    assert outcome.sent_count == 1


@pytest.mark.asyncio
async def test_waiting_guard_runs_after_current_campaign(runner, user):
    order = []

    async def holder():
        async with runner.exclusive(user.user_id):
            order.append("interactive-start")
            await asyncio.sleep(0.01)
            order.append("interactive-end")

    async def scheduled():
        await asyncio.sleep(0)
        async with runner.exclusive(user.user_id, wait=True):
            order.append("scheduled")

    await asyncio.gather(holder(), scheduled())

    assert order == ["interactive-start", "interactive-end", "scheduled"]


@pytest.mark.asyncio
async def test_disconnect_mid_campaign_records_remaining_as_failed(
    runner, registry, student_store, user, recipient, connect_ready
):
    student_store.recipients = [
        recipient(1, "Asha", "+919876543210"),
        recipient(2, "Ravi", "+919876543211"),
    ]
    session = await connect_ready(registry, user)
    original_send = session._backend.send_message

    async def send_then_drop(address, body):
        await original_send(address, body)
        await session._backend.events.on_disconnected("logged out from phone")

    session._backend.send_message = send_then_drop

    outcome = await runner.run(user)

    assert [r.status.value for r in outcome.results] == ["sent", "failed"]
    assert outcome.results[1].error == "WhatsApp not connected"


@pytest.mark.asyncio
async def test_send_single_uses_callers_session(runner, registry, user, connect_ready):
    session = await connect_ready(registry, user)

    await runner.send_single(user, "+91 98765 43210", "Hello")

    assert session._backend.sent == [("919876543210@c.us", "Hello")]


@pytest.mark.asyncio
async def test_send_single_without_session(runner, user):
    with pytest.raises(SessionNotReady):
        await runner.send_single(user, "+919876543210", "Hello")
