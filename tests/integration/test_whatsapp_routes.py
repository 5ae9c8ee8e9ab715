from datetime import date
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from fee_reminder.main import app
from fee_reminder.models.domain.student_domain import (
    CampaignOutcome,
    DeliveryResult,
    DeliveryStatus,
    Recipient,
)
from fee_reminder.routes.whatsapp import get_campaign_runner, get_push_channel, get_session_registry
from fee_reminder.services.whatsapp.errors import CampaignInProgress, SendFailure, SessionNotReady

client = TestClient(app)


class StubRunner:
    def __init__(self, outcome=None, error=None):
        self.outcome = outcome
        self.error = error
        self.calls = []

    async def run(self, user, template=None):
        self.calls.append((user.user_id, template))
        if self.error:
            raise self.error
        return self.outcome

    async def send_single(self, user, phone, message):
        self.calls.append((user.user_id, phone, message))
        if self.error:
            raise self.error

    def is_running(self, user_id):
        return False


class StubRegistry:
    def __init__(self, count):
        self.count = count

    async def disconnect_all(self):
        return self.count

    def get(self, user_id):
        return None


class StubChannel:
    def __init__(self):
        self.broadcasts = []

    async def broadcast(self, event, data):
        self.broadcasts.append((event, data))
        return 1


@pytest.fixture(autouse=True)
def authenticated(apply_auth_override):
    apply_auth_override(app)
    yield
    app.dependency_overrides.clear()


def _student(recipient_id, name):
    return Recipient(
        id=recipient_id,
        owner_id="owner",
        name=name,
        phone="+919876543210",
        amount=Decimal("500"),
        due_date=date(2024, 1, 10),
    )


def test_send_reminders_returns_summary():
    outcome = CampaignOutcome(
        results=[
            DeliveryResult(_student(1, "Asha"), DeliveryStatus.SENT),
            DeliveryResult(_student(2, "Ravi"), DeliveryStatus.FAILED, "timeout"),
        ]
    )
    runner = StubRunner(outcome=outcome)
    app.dependency_overrides[get_campaign_runner] = lambda: runner

    response = client.post("/api/send-reminders")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["sentCount"] == 1
    assert body["errors"] == [{"student": "Ravi", "phone": "+919876543210", "error": "timeout"}]
    assert runner.calls[0][1] is None


def test_send_reminders_with_template_override():
    runner = StubRunner(outcome=CampaignOutcome())
    app.dependency_overrides[get_campaign_runner] = lambda: runner

    client.post("/api/send-reminders", json={"messageTemplate": "Hi {{name}}"})

    assert runner.calls[0][1] == "Hi {{name}}"


def test_send_reminders_without_session():
    app.dependency_overrides[get_campaign_runner] = lambda: StubRunner(error=SessionNotReady("WhatsApp not connected"))

    response = client.post("/api/send-reminders")

    assert response.status_code == 400
    assert response.json()["detail"] == "WhatsApp not connected"


def test_send_reminders_while_campaign_running():
    app.dependency_overrides[get_campaign_runner] = lambda: StubRunner(error=CampaignInProgress("busy"))

    response = client.post("/api/send-reminders")

    assert response.status_code == 409


def test_disconnect_whatsapp_broadcasts_status():
    channel = StubChannel()
    app.dependency_overrides[get_session_registry] = lambda: StubRegistry(count=2)
    app.dependency_overrides[get_push_channel] = lambda: channel

    response = client.post("/api/disconnect-whatsapp")

    assert response.status_code == 200
    assert channel.broadcasts == [("whatsappStatus", {"ready": False})]


def test_disconnect_whatsapp_when_nothing_connected():
    app.dependency_overrides[get_session_registry] = lambda: StubRegistry(count=0)
    app.dependency_overrides[get_push_channel] = lambda: StubChannel()

    response = client.post("/api/disconnect-whatsapp")

    assert response.status_code == 400
    assert response.json()["detail"] == "WhatsApp is not connected"


def test_send_message_success_and_failures():
    runner = StubRunner()
    app.dependency_overrides[get_campaign_runner] = lambda: runner

    ok = client.post("/api/send-message", json={"phoneNumber": "+919876543210", "message": "Hi"})
    assert ok.status_code == 200
    assert runner.calls[0][1:] == ("+919876543210", "Hi")

    app.dependency_overrides[get_campaign_runner] = lambda: StubRunner(error=SessionNotReady("x"))
    assert client.post("/api/send-message", json={"phoneNumber": "1", "message": "Hi"}).status_code == 400

    app.dependency_overrides[get_campaign_runner] = lambda: StubRunner(error=SendFailure("timeout"))
    assert client.post("/api/send-message", json={"phoneNumber": "1", "message": "Hi"}).status_code == 502


def test_whatsapp_status_without_session():
    app.dependency_overrides[get_session_registry] = lambda: StubRegistry(count=0)
    app.dependency_overrides[get_campaign_runner] = lambda: StubRunner()

    response = client.get("/api/whatsapp/status")

    assert response.status_code == 200
    assert response.json() == {"ready": False, "state": None, "campaign_running": False}
