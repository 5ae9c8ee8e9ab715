"""
Contract between an automation session and the browser client behind it.

A backend is launched against a per-user credential directory and reports
what happens to the account through three callbacks: a pairing code was
shown, pairing succeeded, the connection was lost. Sessions translate those
callbacks into state transitions.
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

PairingCodeHandler = Callable[[str], Awaitable[None]]
ReadyHandler = Callable[[], Awaitable[None]]
DisconnectedHandler = Callable[[str], Awaitable[None]]


@dataclass(slots=True)
class BackendEvents:
    on_pairing_code: PairingCodeHandler
    on_ready: ReadyHandler
    on_disconnected: DisconnectedHandler


class MessagingBackend(ABC):
    """One live messaging account driven by browser automation."""

    def __init__(self, credential_dir: Path, events: BackendEvents):
        self.credential_dir = credential_dir
        self.events = events

    @abstractmethod
    async def initialize(self) -> None:
        """Launch the client. Pairing progress is reported through ``events``."""

    @abstractmethod
    async def send_message(self, address: str, body: str) -> None:
        """Deliver ``body`` to ``address`` (``<digits>@<suffix>``); raise on failure."""

    @abstractmethod
    async def destroy(self) -> None:
        """Stop the client and release the browser process."""


BackendFactory = Callable[[Path, BackendEvents], MessagingBackend]
