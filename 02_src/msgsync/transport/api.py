"""Messaging backend interface."""

from dataclasses import dataclass
from typing import Generic, Literal, Protocol, TypeVar

from ..models import Conversation, Message, MessageDraft, UnreadCount

T = TypeVar("T")


@dataclass
class ApiError:
    """Application-level error returned by the backend."""

    message: str
    code: str | int | None = None


@dataclass
class ApiResponse(Generic[T]):
    """Result envelope of every backend call."""

    success: bool
    data: T | None = None
    error: ApiError | None = None

    @classmethod
    def ok(cls, data: T | None = None) -> "ApiResponse[T]":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, message: str, code: str | int | None = None) -> "ApiResponse[T]":
        return cls(success=False, error=ApiError(message=message, code=code))


class IMessagingAPI(Protocol):
    """Transport to the messaging backend. Timeouts are the transport's concern."""

    async def send_message(self, draft: MessageDraft) -> ApiResponse[Message]:
        """Send a draft; returns the canonical message on success."""
        ...

    async def get_messages(
        self,
        conversation_id: str,
        limit: int | None = None,
        before: int | None = None,
        after: int | None = None,
    ) -> ApiResponse[list[Message]]:
        """Fetch a window of messages for a conversation."""
        ...

    async def get_conversations(self) -> ApiResponse[list[Conversation]]:
        """List the user's conversations."""
        ...

    async def mark_conversation_as_read(self, conversation_id: str) -> ApiResponse[None]:
        """Mark every message in a conversation as read."""
        ...

    async def send_typing_indicator(
        self, conversation_id: str, action: Literal["start", "stop"]
    ) -> ApiResponse[None]:
        """Broadcast a typing indicator."""
        ...

    async def send_delivery_receipt(
        self, message_id: str, status: str
    ) -> ApiResponse[None]:
        """Acknowledge delivery or read of a message."""
        ...

    async def get_unread_counts(self) -> ApiResponse[list[UnreadCount]]:
        """Per-conversation unread counters."""
        ...
