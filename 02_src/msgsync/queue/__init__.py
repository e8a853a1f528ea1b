"""OfflineMessageQueue module."""

from .classify import classify_error, classify_exception, is_recoverable
from .offline_queue import IOfflineMessageQueue, OfflineMessageQueue, QueueOptions
from .validation import validate_draft

__all__ = [
    "IOfflineMessageQueue",
    "OfflineMessageQueue",
    "QueueOptions",
    "classify_error",
    "classify_exception",
    "is_recoverable",
    "validate_draft",
]
