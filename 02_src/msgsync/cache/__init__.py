"""MessageCache module."""

from .message_cache import CacheEntry, MessageCache

__all__ = ["CacheEntry", "MessageCache"]
