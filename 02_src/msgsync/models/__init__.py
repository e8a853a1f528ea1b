"""Core data models for the messaging core."""

from .events import Event, EventType
from .messages import (
    Conversation,
    ImageBody,
    Message,
    MessageBody,
    MessageDraft,
    MessageStatus,
    TextBody,
    UnreadCount,
    VoiceBody,
)
from .queue import (
    NON_RECOVERABLE_ERRORS,
    MessagingError,
    MessagingErrorType,
    Priority,
    QueuedMessage,
    QueueStats,
)
from .sync import (
    ConflictRecord,
    ConversationSyncState,
    SyncError,
    SyncErrorType,
    SyncStats,
    SyncStatus,
)

__all__ = [
    # Messages
    "Message",
    "MessageDraft",
    "MessageBody",
    "MessageStatus",
    "TextBody",
    "VoiceBody",
    "ImageBody",
    "Conversation",
    "UnreadCount",
    # Queue
    "QueuedMessage",
    "QueueStats",
    "Priority",
    "MessagingError",
    "MessagingErrorType",
    "NON_RECOVERABLE_ERRORS",
    # Sync
    "ConversationSyncState",
    "ConflictRecord",
    "SyncError",
    "SyncErrorType",
    "SyncStats",
    "SyncStatus",
    # Events
    "Event",
    "EventType",
]
