"""
Process-wide registry of automation sessions, at most one per user.

The registry is the only owner of session lifecycle: it creates sessions,
starts their initialization, and removes them on disconnect, on backend
loss and at shutdown. All mutations for one user go through that user's
lock; different users never contend.
"""

import asyncio
from pathlib import Path

from fee_reminder.config import settings
from fee_reminder.infrastructure.observability.logging import get_logger
from fee_reminder.models.domain.user_domain import UserIdentity
from fee_reminder.services.push_channel import QR_CODE_EVENT, STATUS_EVENT, push_channel
from fee_reminder.services.whatsapp.backend import BackendFactory
from fee_reminder.services.whatsapp.errors import TeardownFailure
from fee_reminder.services.whatsapp.session import AutomationSession, Notifier
from fee_reminder.services.whatsapp.web_client import WhatsAppWebClient

logger = get_logger(__name__)


class SessionRegistry:
    def __init__(self, backend_factory: BackendFactory, notifier: Notifier, credential_root: Path):
        self.backend_factory = backend_factory
        self.notifier = notifier
        self.credential_root = Path(credential_root)
        self._sessions: dict[str, AutomationSession] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    def credential_dir_for(self, user_id: str) -> Path:
        if not user_id or Path(user_id).name != user_id or user_id in (".", ".."):
            raise ValueError(f"Invalid user id for credential path: {user_id!r}")
        return self.credential_root / user_id

    async def connect(self, user: UserIdentity) -> AutomationSession:
        """
        Ensure the user has a session and that its current state is pushed.

        Repeated or concurrent calls never launch a second backend: a ready
        session answers "Already connected", a pairing session re-sends its
        last QR code.
        """
        created = False
        async with self._lock_for(user.user_id):
            session = self._sessions.get(user.user_id)
            if session is None or session.is_terminated:
                session = AutomationSession(
                    owner=user,
                    credential_dir=self.credential_dir_for(user.user_id),
                    backend_factory=self.backend_factory,
                    notify=self.notifier,
                    on_terminated=self._remove_if_current,
                )
                self._sessions[user.user_id] = session
                session.init_task = asyncio.create_task(
                    session.start(), name=f"whatsapp-init-{user.user_id}"
                )
                created = True

        if created:
            logger.info("WhatsApp session created", user_id=user.user_id)
        elif session.is_ready:
            await self.notifier(user.user_id, STATUS_EVENT, {"ready": True, "message": "Already connected"})
        elif session.last_qr_data_url:
            await self.notifier(user.user_id, QR_CODE_EVENT, {"qrCodeDataURL": session.last_qr_data_url})
        else:
            logger.debug("Connect while session is initializing", user_id=user.user_id)

        return session

    async def disconnect(self, user_id: str) -> bool:
        """
        Tear down the user's session. The entry is removed even when teardown fails.

        Teardown runs under the user's lock so a reconnect cannot launch a new
        browser on the same profile until the old one has stopped.
        """
        async with self._lock_for(user_id):
            session = self._sessions.pop(user_id, None)
            if session is None:
                return False

            try:
                await session.destroy()
            except TeardownFailure as e:
                logger.error("WhatsApp session teardown failed", user_id=user_id, error=str(e))

        await self.notifier(user_id, STATUS_EVENT, {"ready": False, "message": "Disconnected"})
        return True

    def get(self, user_id: str) -> AutomationSession | None:
        return self._sessions.get(user_id)

    async def disconnect_all(self) -> int:
        """Tear down every session, continuing past failures. Returns how many were registered."""
        sessions = list(self._sessions.values())
        self._sessions.clear()

        for session in sessions:
            try:
                await session.destroy()
            except Exception as e:
                logger.error("WhatsApp session teardown failed", user_id=session.user_id, error=str(e))

        if sessions:
            logger.info("All WhatsApp sessions disconnected", count=len(sessions))
        return len(sessions)

    def ready_user_ids(self) -> list[str]:
        return [user_id for user_id, session in self._sessions.items() if session.is_ready]

    def __len__(self) -> int:
        return len(self._sessions)

    async def _remove_if_current(self, session: AutomationSession) -> None:
        async with self._lock_for(session.user_id):
            if self._sessions.get(session.user_id) is session:
                del self._sessions[session.user_id]
                logger.info(
                    "WhatsApp session removed",
                    user_id=session.user_id,
                    state=session.state.value,
                )


session_registry = SessionRegistry(
    backend_factory=WhatsAppWebClient,
    notifier=push_channel.emit,
    credential_root=settings.credential_root(),
)
