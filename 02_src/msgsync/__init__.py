"""Offline-first messaging core."""

from .app import Application, IApplication
from .cache import MessageCache
from .config import Settings
from .event_bus import EventBus, IEventBus
from .models import (
    ConflictRecord,
    ConversationSyncState,
    Message,
    MessageDraft,
    MessageStatus,
    Priority,
    QueuedMessage,
)
from .queue import IOfflineMessageQueue, OfflineMessageQueue, QueueOptions
from .storage import IPersistentStore, Storage
from .sync import MessageSyncManager, SyncOptions
from .transport import HttpMessagingAPI, IMessagingAPI, IRealtimeChannel, RealtimeChannel

__all__ = [
    # Application
    "Application",
    "IApplication",
    "Settings",
    # Models
    "Message",
    "MessageDraft",
    "MessageStatus",
    "Priority",
    "QueuedMessage",
    "ConversationSyncState",
    "ConflictRecord",
    # Components
    "IPersistentStore",
    "Storage",
    "IEventBus",
    "EventBus",
    "MessageCache",
    "IOfflineMessageQueue",
    "OfflineMessageQueue",
    "QueueOptions",
    "MessageSyncManager",
    "SyncOptions",
    "IMessagingAPI",
    "HttpMessagingAPI",
    "IRealtimeChannel",
    "RealtimeChannel",
]
