"""
Automation session: one user's WhatsApp connection and its lifecycle.

States:
    Initializing     backend launching on the user's credential directory
    AwaitingPairing  a pairing code has been pushed, waiting for the phone
    Ready            paired; messages can be sent
    Disconnected     the backend dropped a ready connection
    Destroyed        torn down on request (terminal)

Each backend callback maps to exactly one handler. A callback that arrives
in a state without a matching transition is logged and ignored.
"""

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from enum import Enum
from pathlib import Path
from typing import Any

from fee_reminder.infrastructure.observability.logging import get_logger
from fee_reminder.models.domain.user_domain import UserIdentity
from fee_reminder.services.push_channel import QR_CODE_EVENT, STATUS_EVENT
from fee_reminder.services.whatsapp.backend import BackendEvents, BackendFactory
from fee_reminder.services.whatsapp.errors import (
    SendFailure,
    SessionInitFailure,
    SessionNotReady,
    TeardownFailure,
)
from fee_reminder.services.whatsapp.qr import pairing_code_to_data_url

logger = get_logger(__name__)

Notifier = Callable[[str, str, dict[str, Any]], Awaitable[Any]]
TerminationHook = Callable[["AutomationSession"], Awaitable[None]]


class SessionState(str, Enum):
    INITIALIZING = "Initializing"
    AWAITING_PAIRING = "AwaitingPairing"
    READY = "Ready"
    DISCONNECTED = "Disconnected"
    DESTROYED = "Destroyed"


PAIRING_STATES = frozenset({SessionState.INITIALIZING, SessionState.AWAITING_PAIRING})
TERMINAL_STATES = frozenset({SessionState.DISCONNECTED, SessionState.DESTROYED})


class AutomationSession:
    def __init__(
        self,
        owner: UserIdentity,
        credential_dir: Path,
        backend_factory: BackendFactory,
        notify: Notifier,
        on_terminated: TerminationHook,
    ):
        self.owner = owner
        self.credential_dir = credential_dir
        self.state = SessionState.INITIALIZING
        self.last_qr_data_url: str | None = None
        self.init_task: asyncio.Task | None = None
        self.init_error: SessionInitFailure | None = None

        self._notify = notify
        self._on_terminated = on_terminated
        self._backend_released = False
        self._backend = backend_factory(
            credential_dir,
            BackendEvents(
                on_pairing_code=self._handle_pairing_code,
                on_ready=self._handle_ready,
                on_disconnected=self._handle_disconnected,
            ),
        )

    @property
    def user_id(self) -> str:
        return self.owner.user_id

    @property
    def is_ready(self) -> bool:
        return self.state is SessionState.READY

    @property
    def is_terminated(self) -> bool:
        return self.state in TERMINAL_STATES

    async def start(self) -> None:
        """Launch the backend. Failures are reported on the push channel, never raised."""
        logger.info("Initializing WhatsApp session", user_id=self.user_id)
        try:
            await self._backend.initialize()
        except Exception as e:
            await self._fail_initialization(str(e))

    async def _handle_pairing_code(self, code: str) -> None:
        if self.state not in PAIRING_STATES:
            self._ignore("pairing_code")
            return

        self.state = SessionState.AWAITING_PAIRING
        self.last_qr_data_url = pairing_code_to_data_url(code)
        logger.info("Pairing code received", user_id=self.user_id)
        await self._emit(QR_CODE_EVENT, {"qrCodeDataURL": self.last_qr_data_url})

    async def _handle_ready(self) -> None:
        if self.state not in PAIRING_STATES:
            self._ignore("ready")
            return

        self.state = SessionState.READY
        self.last_qr_data_url = None
        logger.info("WhatsApp session ready", user_id=self.user_id)
        await self._emit(STATUS_EVENT, {"ready": True})

    async def _handle_disconnected(self, reason: str) -> None:
        if self.state in PAIRING_STATES:
            await self._fail_initialization(f"disconnected before pairing: {reason}")
            return
        if self.state is not SessionState.READY:
            self._ignore("disconnected")
            return

        self.state = SessionState.DISCONNECTED
        logger.warning("WhatsApp session disconnected", user_id=self.user_id, reason=reason)
        await self._on_terminated(self)
        await self._emit(STATUS_EVENT, {"ready": False, "message": "WhatsApp disconnected"})
        await self._release_quietly()

    async def _fail_initialization(self, reason: str) -> None:
        if self.is_terminated:
            return

        self.state = SessionState.DESTROYED
        self.init_error = SessionInitFailure(reason, user_id=self.user_id, operation="initialize")
        logger.error("WhatsApp session initialization failed", user_id=self.user_id, error=reason)
        await self._on_terminated(self)
        await self._emit(STATUS_EVENT, {"ready": False, "error": "Connection failed"})
        await self._release_quietly()

    async def send(self, address: str, body: str) -> None:
        if not self.is_ready:
            raise SessionNotReady(
                "WhatsApp not connected", user_id=self.user_id, operation="send", recoverable=True
            )
        try:
            await self._backend.send_message(address, body)
        except SendFailure:
            raise
        except Exception as e:
            raise SendFailure(str(e), user_id=self.user_id, operation="send") from e

    async def destroy(self) -> None:
        """Tear the session down for good. Raises TeardownFailure if the backend fails to stop."""
        self.state = SessionState.DESTROYED
        self.last_qr_data_url = None

        task = self.init_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        try:
            await self._release_backend()
        except Exception as e:
            raise TeardownFailure(
                f"Failed to stop WhatsApp client: {e}",
                user_id=self.user_id,
                operation="destroy",
                recoverable=False,
            ) from e
        logger.info("WhatsApp session destroyed", user_id=self.user_id)

    async def _release_backend(self) -> None:
        if self._backend_released:
            return
        self._backend_released = True
        await self._backend.destroy()

    async def _release_quietly(self) -> None:
        try:
            await self._release_backend()
        except Exception as e:
            logger.error("Failed to release WhatsApp client", user_id=self.user_id, error=str(e))

    async def _emit(self, event: str, data: dict[str, Any]) -> None:
        try:
            await self._notify(self.user_id, event, data)
        except Exception as e:
            logger.warning("Push notification failed", user_id=self.user_id, push_event=event, error=str(e))

    def _ignore(self, event: str) -> None:
        logger.warning(
            "Ignoring backend event with no transition",
            user_id=self.user_id,
            push_event=event,
            state=self.state.value,
        )
