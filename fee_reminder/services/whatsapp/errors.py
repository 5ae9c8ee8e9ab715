"""Error taxonomy for the WhatsApp session lifecycle and reminder campaigns."""


class MessagingError(Exception):
    """Base exception for messaging operations."""

    def __init__(
        self,
        message: str,
        user_id: str | None = None,
        operation: str | None = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.user_id = user_id
        self.operation = operation
        self.recoverable = recoverable


class SessionNotReady(MessagingError):
    """No paired, ready session exists for the user."""


class SessionInitFailure(MessagingError):
    """The automation backend failed to launch or lost the browser before pairing."""


class SendFailure(MessagingError):
    """A single message could not be delivered."""


class TeardownFailure(MessagingError):
    """Destroying an automation backend raised."""


class CampaignInProgress(MessagingError):
    """Another campaign is already running against the user's session."""
