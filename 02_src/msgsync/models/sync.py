"""Synchronization state models."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .messages import Message


class SyncStatus(str, Enum):
    """Per-conversation sync status."""

    SYNCED = "synced"
    SYNCING = "syncing"
    ERROR = "error"
    CONFLICT = "conflict"


class SyncErrorType(str, Enum):
    """Category of a recorded sync error."""

    NETWORK = "network"
    CONFLICT = "conflict"
    VALIDATION = "validation"
    PERMISSION = "permission"


@dataclass
class ConversationSyncState:
    """Sync bookkeeping for one conversation."""

    conversation_id: str
    last_message_timestamp: int = 0  # watermark
    last_read_timestamp: int = 0
    unread_count: int = 0
    sync_status: SyncStatus = SyncStatus.SYNCED
    last_sync_attempt: int = 0

    def to_dict(self) -> dict:
        return {
            "conversation_id": self.conversation_id,
            "last_message_timestamp": self.last_message_timestamp,
            "last_read_timestamp": self.last_read_timestamp,
            "unread_count": self.unread_count,
            "sync_status": self.sync_status.value,
            "last_sync_attempt": self.last_sync_attempt,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ConversationSyncState":
        return cls(
            conversation_id=data["conversation_id"],
            last_message_timestamp=int(data.get("last_message_timestamp", 0)),
            last_read_timestamp=int(data.get("last_read_timestamp", 0)),
            unread_count=int(data.get("unread_count", 0)),
            sync_status=SyncStatus(data.get("sync_status", "synced")),
            last_sync_attempt=int(data.get("last_sync_attempt", 0)),
        )


@dataclass
class SyncError:
    """A recorded, non-fatal synchronization failure."""

    id: str
    type: SyncErrorType
    message: str
    timestamp: int
    retry_count: int = 0
    data: dict[str, Any] | None = None


@dataclass
class ConflictRecord:
    """A message whose cached and server copies disagree."""

    conversation_id: str
    local: Message
    server: Message
    detected_at: int

    @property
    def message_id(self) -> str:
        return self.server.id

    def to_dict(self) -> dict:
        return {
            "conversation_id": self.conversation_id,
            "local": self.local.to_dict(),
            "server": self.server.to_dict(),
            "detected_at": self.detected_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ConflictRecord":
        return cls(
            conversation_id=data["conversation_id"],
            local=Message.from_dict(data["local"]),
            server=Message.from_dict(data["server"]),
            detected_at=int(data.get("detected_at", 0)),
        )


@dataclass
class SyncStats:
    """Aggregate view over all conversation sync states."""

    total_conversations: int
    synced_conversations: int
    syncing_conversations: int
    error_conversations: int
    conflicted_messages: int
    last_sync_timestamp: int
    sync_in_progress: bool
    errors: int = 0
    conversations: list[str] = field(default_factory=list)
