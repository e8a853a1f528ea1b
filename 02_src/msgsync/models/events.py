"""Event models exchanged through component EventBuses."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class EventType(str, Enum):
    """Names of the notifications emitted by the messaging core."""

    # OfflineMessageQueue
    MESSAGE_QUEUED = "message_queued"
    MESSAGE_DEQUEUED = "message_dequeued"
    MESSAGE_PROCESSING = "message_processing"
    MESSAGE_SENT = "message_sent"
    MESSAGE_FAILED = "message_failed"
    MESSAGE_RETRY_SCHEDULED = "message_retry_scheduled"
    MESSAGE_RETRY_MANUAL = "message_retry_manual"
    CONNECTION_STATUS_CHANGED = "connection_status_changed"
    PROCESSING_STARTED = "processing_started"
    PROCESSING_COMPLETED = "processing_completed"
    QUEUE_CLEARED = "queue_cleared"

    # RealtimeChannel
    REALTIME_MESSAGE = "message"
    DELIVERY_RECEIPT = "delivery_receipt"
    READ_RECEIPT = "read_receipt"
    TYPING = "typing"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"

    # MessageSyncManager
    SYNC_STARTED = "sync_started"
    SYNC_COMPLETED = "sync_completed"
    SYNC_FAILED = "sync_failed"
    SYNC_ERROR = "sync_error"
    CONVERSATION_SYNCED = "conversation_synced"
    CONFLICT_DETECTED = "conflict_detected"
    CONFLICT_RESOLVED = "conflict_resolved"
    MESSAGE_RECEIVED = "message_received"
    MESSAGE_STATUS_UPDATED = "message_status_updated"
    TYPING_INDICATOR = "typing_indicator"
    REALTIME_CONNECTED = "realtime_connected"
    REALTIME_DISCONNECTED = "realtime_disconnected"
    QUEUE_PROCESSING_STARTED = "queue_processing_started"
    QUEUE_PROCESSING_COMPLETED = "queue_processing_completed"


@dataclass
class Event:
    """A notification published on an EventBus."""

    type: EventType
    payload: dict[str, Any]
    source: str  # component that published
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
