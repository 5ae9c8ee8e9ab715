"""
Reminder campaigns.

A campaign sends one templated message per student, strictly in storage
order, through the owner's ready WhatsApp session. Each student's outcome
is recorded and persisted before the next send; a failed send never stops
the campaign. Only one campaign (or ad-hoc send) runs per user at a time.
"""

import asyncio
import contextlib
import re
from collections.abc import AsyncIterator, Callable
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from fee_reminder.config import settings
from fee_reminder.db.helpers import DatabaseError
from fee_reminder.infrastructure.observability.logging import get_logger
from fee_reminder.models.domain.student_domain import (
    CampaignOutcome,
    DeliveryResult,
    DeliveryStatus,
    Recipient,
)
from fee_reminder.models.domain.user_domain import UserIdentity
from fee_reminder.repositories.student_repository import StudentRepository
from fee_reminder.services.push_channel import MESSAGE_STATUS_EVENT, push_channel
from fee_reminder.services.reminder_config import ReminderConfigStore, reminder_config_store
from fee_reminder.services.whatsapp.errors import (
    CampaignInProgress,
    MessagingError,
    SendFailure,
    SessionNotReady,
)
from fee_reminder.services.whatsapp.registry import SessionRegistry, session_registry
from fee_reminder.services.whatsapp.session import AutomationSession, Notifier

logger = get_logger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\{\{(\w+)\}\}")
NON_DIGITS = re.compile(r"\D")


def to_backend_address(phone: str, suffix: str | None = None) -> str:
    """'+91 98765-43210' -> '919876543210@c.us'"""
    digits = NON_DIGITS.sub("", phone or "")
    if not digits:
        raise ValueError(f"Phone number has no digits: {phone!r}")
    return f"{digits}@{suffix or settings.WHATSAPP_ADDRESS_SUFFIX}"


def format_amount(amount: Any) -> str:
    if amount is None:
        return ""
    try:
        value = Decimal(str(amount))
    except InvalidOperation:
        return str(amount)
    if value == value.to_integral_value():
        return str(int(value))
    return format(value.normalize(), "f")


def render_message(template: str, recipient: Recipient) -> str:
    """Fill {{name}}, {{amount}} and {{dueDate}}; other placeholders stay as written."""
    values = {
        "name": recipient.name or "",
        "amount": format_amount(recipient.amount),
        "dueDate": recipient.due_date.isoformat() if recipient.due_date else "",
    }
    return PLACEHOLDER_PATTERN.sub(lambda match: values.get(match.group(1), match.group(0)), template)


class CampaignRunner:
    def __init__(
        self,
        registry: SessionRegistry,
        store=StudentRepository,
        config_store: ReminderConfigStore = reminder_config_store,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.registry = registry
        self.store = store
        self.config_store = config_store
        self.notifier = notifier
        self.clock = clock or (lambda: datetime.now(UTC))
        self._guards: dict[str, asyncio.Lock] = {}

    def _guard_for(self, user_id: str) -> asyncio.Lock:
        guard = self._guards.get(user_id)
        if guard is None:
            guard = self._guards[user_id] = asyncio.Lock()
        return guard

    def is_running(self, user_id: str) -> bool:
        guard = self._guards.get(user_id)
        return guard is not None and guard.locked()

    @contextlib.asynccontextmanager
    async def exclusive(self, user_id: str, wait: bool = False) -> AsyncIterator[None]:
        """Hold the user's campaign guard; fail fast unless ``wait`` is set."""
        guard = self._guard_for(user_id)
        if not wait and guard.locked():
            raise CampaignInProgress(
                "A reminder campaign is already running", user_id=user_id, operation="campaign"
            )
        async with guard:
            yield

    def ready_session(self, user_id: str) -> AutomationSession:
        session = self.registry.get(user_id)
        if session is None or not session.is_ready:
            raise SessionNotReady("WhatsApp not connected", user_id=user_id, operation="campaign")
        return session

    async def run(self, user: UserIdentity, template: str | None = None) -> CampaignOutcome:
        session = self.ready_session(user.user_id)

        async with self.exclusive(user.user_id):
            if template is None:
                template = await asyncio.to_thread(self.config_store.get_message_template)
            recipients = await self.store.list_recipients(user.user_id)
            logger.info("Starting reminder campaign", user_id=user.user_id, recipients=len(recipients))

            outcome = CampaignOutcome()
            for recipient in recipients:
                result = await self.send_one(session, recipient, template, notify=self.notifier)
                outcome.results.append(result)

        logger.info(
            "Reminder campaign finished",
            user_id=user.user_id,
            sent=outcome.sent_count,
            failed=len(outcome.errors),
        )
        return outcome

    async def send_one(
        self,
        session: AutomationSession,
        recipient: Recipient,
        template: str,
        notify: Notifier | None = None,
    ) -> DeliveryResult:
        """Send to one student and stamp last_reminder_sent only if the send succeeded."""
        try:
            address = to_backend_address(recipient.phone)
            await session.send(address, render_message(template, recipient))
        except (MessagingError, ValueError) as e:
            logger.error(
                "Failed to send reminder",
                user_id=session.user_id,
                student_id=recipient.id,
                student=recipient.name,
                error=str(e),
            )
            result = DeliveryResult(recipient, DeliveryStatus.FAILED, str(e))
        else:
            try:
                await self.store.mark_sent(recipient.id, self.clock())
            except DatabaseError as e:
                logger.error(
                    "Reminder sent but timestamp not saved",
                    user_id=session.user_id,
                    student_id=recipient.id,
                    error=str(e),
                )
            result = DeliveryResult(recipient, DeliveryStatus.SENT)

        if notify is not None:
            payload: dict[str, Any] = {"id": recipient.id, "status": result.status.value}
            if result.error:
                payload["error"] = result.error
            await notify(session.user_id, MESSAGE_STATUS_EVENT, payload)

        return result

    async def send_single(self, user: UserIdentity, phone: str, message: str) -> None:
        """Ad-hoc message from the dashboard through the caller's own session."""
        session = self.ready_session(user.user_id)
        try:
            address = to_backend_address(phone)
        except ValueError as e:
            raise SendFailure(str(e), user_id=user.user_id, operation="send_single", recoverable=False) from e

        async with self.exclusive(user.user_id):
            await session.send(address, message)
        logger.info("Ad-hoc message sent", user_id=user.user_id)


campaign_runner = CampaignRunner(session_registry, notifier=push_channel.emit)
