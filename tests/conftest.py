import asyncio
from datetime import date, timedelta
from decimal import Decimal

import pytest

from fee_reminder.auth.verify import auth_dependency
from fee_reminder.models.domain.student_domain import Recipient
from fee_reminder.models.domain.user_domain import UserIdentity
from fee_reminder.services.campaign_service import CampaignRunner
from fee_reminder.services.whatsapp.backend import MessagingBackend
from fee_reminder.services.whatsapp.errors import SendFailure
from fee_reminder.services.whatsapp.registry import SessionRegistry

USER_ID = "0b6a3f3e-1d3c-4c5e-9c59-1f0f4d1f2a01"
OTHER_USER_ID = "7d1e2b4c-5a6f-4e8d-9b0a-3c2d1e0f9a88"


@pytest.fixture
def auth_override():
    def _override():
        return {"sub": USER_ID, "username": "admin"}

    return _override


@pytest.fixture
def apply_auth_override(auth_override):
    def _apply(app):
        app.dependency_overrides[auth_dependency] = auth_override

    return _apply


@pytest.fixture
def user():
    return UserIdentity(user_id=USER_ID, username="admin")


@pytest.fixture
def other_user():
    return UserIdentity(user_id=OTHER_USER_ID, username="bursar")


class FakeBackend(MessagingBackend):
    def __init__(self, credential_dir, events, factory):
        super().__init__(credential_dir, events)
        self.factory = factory
        self.sent: list[tuple[str, str]] = []
        self.destroy_calls = 0
        self.destroy_error: Exception | None = None
        self.stopped = False
        self.launched_while_others_running = any(not b.stopped for b in factory.created)

    async def initialize(self):
        if self.factory.init_gate is not None:
            await self.factory.init_gate.wait()
        if self.factory.init_error is not None:
            raise self.factory.init_error

    async def send_message(self, address, body):
        if address in self.factory.failing_addresses:
            raise SendFailure(f"Could not deliver to {address}")
        self.sent.append((address, body))

    async def destroy(self):
        self.destroy_calls += 1
        if self.factory.destroy_gate is not None:
            await self.factory.destroy_gate.wait()
        self.stopped = True
        if self.destroy_error is not None:
            raise self.destroy_error
        if self.factory.destroy_errors:
            raise self.factory.destroy_errors.pop(0)


class FakeBackendFactory:
    """Stands in for the Playwright client; keeps every backend it builds."""

    def __init__(self):
        self.created: list[FakeBackend] = []
        self.init_gate: asyncio.Event | None = None
        self.init_error: Exception | None = None
        self.destroy_errors: list[Exception] = []
        self.destroy_gate: asyncio.Event | None = None
        self.failing_addresses: set[str] = set()

    def __call__(self, credential_dir, events):
        backend = FakeBackend(credential_dir, events, self)
        self.created.append(backend)
        return backend


class FakeNotifier:
    def __init__(self):
        self.events: list[tuple[str, str, dict]] = []

    async def __call__(self, user_id, event, data):
        self.events.append((user_id, event, data))
        return 1

    def for_user(self, user_id, event=None):
        return [e for e in self.events if e[0] == user_id and (event is None or e[1] == event)]


class FakeStudentStore:
    """In-memory counterpart of StudentRepository."""

    def __init__(self, recipients=None):
        self.recipients: list[Recipient] = list(recipients or [])
        self.mark_sent_calls: list[int] = []
        self.campaign_marked: list[int] = []

    async def list_recipients(self, owner_id):
        return [r for r in self.recipients if r.owner_id == owner_id]

    async def mark_sent(self, recipient_id, sent_at):
        self.mark_sent_calls.append(recipient_id)
        count = 0
        for r in self.recipients:
            if r.id == recipient_id:
                r.last_reminder_sent = sent_at
                count += 1
        return count

    async def list_due_and_unsent(self, owner_id, today, lead_days):
        return [
            r
            for r in self.recipients
            if r.owner_id == owner_id
            and not r.is_sent
            and (
                (r.due_date is not None and r.due_date + timedelta(days=lead_days) == today)
                or r.reminder_date == today
            )
        ]

    async def mark_campaign_sent(self, recipient_id):
        self.campaign_marked.append(recipient_id)
        for r in self.recipients:
            if r.id == recipient_id:
                r.is_sent = True
        return 1

    async def list_owners_with_students(self):
        return list(dict.fromkeys(r.owner_id for r in self.recipients))


class FakeConfigStore:
    def __init__(self, template="Hi {{name}}, pay {{amount}} by {{dueDate}}"):
        self.template = template

    def get_message_template(self):
        return self.template


def make_recipient(recipient_id, name, phone, owner_id=USER_ID, amount="500", due_date=None, **kwargs):
    return Recipient(
        id=recipient_id,
        owner_id=owner_id,
        name=name,
        phone=phone,
        amount=Decimal(amount),
        due_date=due_date or date(2024, 1, 10),
        **kwargs,
    )


@pytest.fixture
def backend_factory():
    return FakeBackendFactory()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def registry(backend_factory, notifier, tmp_path):
    return SessionRegistry(backend_factory, notifier, tmp_path / "whatsapp-auth")


@pytest.fixture
def student_store():
    return FakeStudentStore()


@pytest.fixture
def config_store():
    return FakeConfigStore()


@pytest.fixture
def runner(registry, student_store, config_store, notifier):
    return CampaignRunner(registry, store=student_store, config_store=config_store, notifier=notifier)


@pytest.fixture
def connect_ready():
    """Connect a user and drive the fake backend through pairing."""

    async def _connect(registry, user):
        session = await registry.connect(user)
        await session.init_task
        await session._backend.events.on_pairing_code("2@pairing-code")
        await session._backend.events.on_ready()
        return session

    return _connect


@pytest.fixture
def recipient():
    return make_recipient
