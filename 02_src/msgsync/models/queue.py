"""Outbound queue data models."""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from .messages import MessageDraft


class Priority(str, Enum):
    """Dispatch priority of a queued message."""

    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @property
    def order(self) -> int:
        return {"high": 0, "normal": 1, "low": 2}[self.value]


class MessagingErrorType(str, Enum):
    """Classification of a failed send attempt."""

    NETWORK = "network"
    AUTHENTICATION = "authentication"
    PERMISSION = "permission"
    RATE_LIMIT = "rate-limit"
    SUBSCRIPTION_REQUIRED = "subscription-required"
    USER_BLOCKED = "user-blocked"
    MESSAGE_TOO_LONG = "message-too-long"
    UNKNOWN = "unknown"


NON_RECOVERABLE_ERRORS = frozenset(
    {
        MessagingErrorType.AUTHENTICATION,
        MessagingErrorType.PERMISSION,
        MessagingErrorType.SUBSCRIPTION_REQUIRED,
        MessagingErrorType.USER_BLOCKED,
        MessagingErrorType.MESSAGE_TOO_LONG,
    }
)


@dataclass
class MessagingError:
    """Structured failure attached to a queued message."""

    type: MessagingErrorType
    message: str
    recoverable: bool
    code: str | int | None = None

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "message": self.message,
            "recoverable": self.recoverable,
            "code": self.code,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MessagingError":
        return cls(
            type=MessagingErrorType(data.get("type", "unknown")),
            message=data.get("message", ""),
            recoverable=bool(data.get("recoverable", True)),
            code=data.get("code"),
        )


@dataclass
class QueuedMessage:
    """An outbound draft together with its retry metadata."""

    id: str
    draft: MessageDraft
    attempts: int
    max_attempts: int
    last_attempt_at: int  # epoch ms, 0 if never attempted
    next_retry_at: int  # epoch ms
    priority: Priority
    created_at: int  # epoch ms
    last_error: MessagingError | None = None

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "draft": self.draft.to_dict(),
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "last_attempt_at": self.last_attempt_at,
            "next_retry_at": self.next_retry_at,
            "priority": self.priority.value,
            "created_at": self.created_at,
            "last_error": self.last_error.to_dict() if self.last_error else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QueuedMessage":
        error = data.get("last_error")
        return cls(
            id=data["id"],
            draft=MessageDraft.from_dict(data["draft"]),
            attempts=int(data.get("attempts", 0)),
            max_attempts=int(data["max_attempts"]),
            last_attempt_at=int(data.get("last_attempt_at", 0)),
            next_retry_at=int(data.get("next_retry_at", 0)),
            priority=Priority(data.get("priority", Priority.NORMAL.value)),
            created_at=int(data["created_at"]),
            last_error=MessagingError.from_dict(error) if error else None,
        )


@dataclass
class QueueStats:
    """Read projection over the queue."""

    total_queued: int
    pending: int
    failed: int
    processing: int
    last_processed: int
    success_rate: float  # successful / processed, 0.0 when nothing processed
