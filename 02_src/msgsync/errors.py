"""Exception types raised across the messaging core."""


class MsgSyncError(Exception):
    """Base class for messaging core errors."""


class MessageValidationError(MsgSyncError, ValueError):
    """A draft was rejected before it reached the outbound queue."""


class ConflictNotFoundError(MsgSyncError, KeyError):
    """No manual conflict is recorded for the given message id."""

    def __str__(self) -> str:
        return f"Conflict not found: {self.args[0]}" if self.args else "Conflict not found"


class InvalidRealtimeEventError(MsgSyncError, ValueError):
    """A real-time event could not be parsed into a known event shape."""


class TransportError(MsgSyncError):
    """The messaging backend answered with something that is not an API envelope."""

    def __init__(self, message: str, code: str | int | None = None):
        super().__init__(message)
        self.code = code
