"""Transport module: messaging backend client and real-time channel."""

from .api import ApiError, ApiResponse, IMessagingAPI
from .http_api import HttpMessagingAPI
from .normalize import (
    parse_conversation,
    parse_message,
    parse_realtime_event,
    parse_unread_count,
)
from .realtime import IRealtimeChannel, RealtimeChannel

__all__ = [
    "ApiError",
    "ApiResponse",
    "IMessagingAPI",
    "HttpMessagingAPI",
    "IRealtimeChannel",
    "RealtimeChannel",
    "parse_conversation",
    "parse_message",
    "parse_realtime_event",
    "parse_unread_count",
]
