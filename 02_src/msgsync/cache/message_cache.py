"""Bounded in-memory message cache with LRU and TTL eviction."""

import asyncio
from collections import OrderedDict
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable

from ..clock import Clock, now_ms
from ..logging_config import get_logger
from ..models import Message

logger = get_logger(__name__)

PRELOAD_BATCH_SIZE = 3


@dataclass
class CacheEntry:
    """Messages of one conversation plus recency bookkeeping."""

    messages: list[Message]
    last_touched: int
    access_count: int = 0


def _normalize(messages: Iterable[Message], cap: int) -> list[Message]:
    """Dedup by id (last occurrence wins), sort by created_at, keep the newest ``cap``."""
    by_id: dict[str, Message] = {}
    for message in messages:
        by_id[message.id] = message
    ordered = sorted(by_id.values(), key=lambda m: m.created_at)
    if cap and len(ordered) > cap:
        ordered = ordered[-cap:]
    return ordered


class MessageCache:
    """Conversation-keyed message cache.

    Any read or write marks a conversation most-recently-used. Inserting a new
    conversation at capacity evicts the least-recently-used one in its
    entirety; conversations untouched for longer than ``max_age`` ms are
    dropped lazily on access and by a periodic sweep. Every operation is
    synchronous and never raises: misses return ``None``/``False``.
    """

    def __init__(
        self,
        max_conversations: int = 100,
        max_messages_per_conversation: int = 500,
        max_age: int = 30 * 60 * 1000,
        cleanup_interval: int = 5 * 60 * 1000,
        clock: Clock = now_ms,
    ):
        self._max_conversations = max_conversations
        self._max_messages = max_messages_per_conversation
        self._max_age = max_age
        self._cleanup_interval = cleanup_interval
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._cleanup_task: asyncio.Task | None = None

    # Lifecycle

    def start(self) -> None:
        """Start the periodic TTL sweep on the running event loop."""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.get_running_loop().create_task(
                self._cleanup_loop()
            )

    def destroy(self) -> None:
        """Stop the sweep and drop every entry."""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            self._cleanup_task = None
        self.clear()

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self._cleanup_interval / 1000)
            try:
                self.cleanup()
            except Exception as e:
                logger.error("MessageCache cleanup failed: %s", e, exc_info=True)

    # Internal helpers

    def _is_expired(self, entry: CacheEntry, now: int) -> bool:
        return now - entry.last_touched > self._max_age

    def _live_entry(self, conversation_id: str) -> CacheEntry | None:
        """Return the entry if present and fresh, dropping it if expired."""
        entry = self._entries.get(conversation_id)
        if entry is None:
            return None
        if self._is_expired(entry, self._clock()):
            del self._entries[conversation_id]
            return None
        return entry

    def _touch(self, conversation_id: str, entry: CacheEntry) -> None:
        entry.last_touched = self._clock()
        entry.access_count += 1
        self._entries.move_to_end(conversation_id)

    def _store(self, conversation_id: str, messages: list[Message]) -> None:
        entry = self._live_entry(conversation_id)
        if entry is None:
            while len(self._entries) >= self._max_conversations > 0:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("MessageCache: evicted LRU conversation %s", evicted)
            entry = CacheEntry(messages=messages, last_touched=self._clock())
            self._entries[conversation_id] = entry
        else:
            entry.messages = messages
        self._touch(conversation_id, entry)

    # Public API

    def get(self, conversation_id: str) -> list[Message] | None:
        """Ordered copy of a conversation's messages, or None on a miss."""
        entry = self._live_entry(conversation_id)
        if entry is None:
            return None
        self._touch(conversation_id, entry)
        return list(entry.messages)

    def set(self, conversation_id: str, messages: Iterable[Message]) -> None:
        """Replace a conversation's messages."""
        self._store(conversation_id, _normalize(messages, self._max_messages))

    def add_messages(
        self,
        conversation_id: str,
        messages: Iterable[Message],
        overwrite: bool = False,
    ) -> None:
        """Merge messages into a conversation.

        With ``overwrite`` an incoming copy replaces a cached message with the
        same id; otherwise the cached copy is kept.
        """
        incoming = list(messages)
        entry = self._live_entry(conversation_id)
        if entry is None:
            self.set(conversation_id, incoming)
            return

        if overwrite:
            merged = [*entry.messages, *incoming]
        else:
            known = {m.id for m in entry.messages}
            merged = [*entry.messages, *(m for m in incoming if m.id not in known)]
        self._store(conversation_id, _normalize(merged, self._max_messages))

    def update_message(self, conversation_id: str, message_id: str, **changes) -> bool:
        """Patch fields of one cached message. Re-sorts only if created_at changes."""
        entry = self._live_entry(conversation_id)
        if entry is None:
            return False

        for index, message in enumerate(entry.messages):
            if message.id == message_id:
                break
        else:
            return False

        try:
            updated = message.with_changes(**changes)
        except TypeError:
            logger.warning("MessageCache: invalid update fields %s", sorted(changes))
            return False

        messages = list(entry.messages)
        messages[index] = updated
        if updated.created_at != message.created_at or updated.id != message.id:
            messages = _normalize(messages, self._max_messages)
        entry.messages = messages
        self._touch(conversation_id, entry)
        return True

    def remove_message(self, conversation_id: str, message_id: str) -> bool:
        """Remove one message from a conversation."""
        entry = self._live_entry(conversation_id)
        if entry is None:
            return False

        remaining = [m for m in entry.messages if m.id != message_id]
        if len(remaining) == len(entry.messages):
            return False

        entry.messages = remaining
        self._touch(conversation_id, entry)
        return True

    def has(self, conversation_id: str) -> bool:
        """Whether a fresh entry exists. Does not affect recency."""
        return self._live_entry(conversation_id) is not None

    def delete(self, conversation_id: str) -> bool:
        """Drop one conversation."""
        return self._entries.pop(conversation_id, None) is not None

    def clear(self) -> None:
        """Drop every conversation."""
        self._entries.clear()

    def get_range(self, conversation_id: str, start: int, end: int) -> list[Message] | None:
        messages = self.get(conversation_id)
        return None if messages is None else messages[start:end]

    def get_recent(self, conversation_id: str, count: int) -> list[Message] | None:
        messages = self.get(conversation_id)
        if messages is None:
            return None
        return messages[-count:] if count > 0 else []

    def search_messages(self, conversation_id: str, query: str) -> list[Message] | None:
        """Case-insensitive substring search over message text."""
        messages = self.get(conversation_id)
        if messages is None:
            return None
        needle = query.lower()
        return [m for m in messages if needle in m.text.lower()]

    def cleanup(self) -> int:
        """Evict every expired conversation. Returns how many were evicted."""
        now = self._clock()
        expired = [
            conversation_id
            for conversation_id, entry in self._entries.items()
            if self._is_expired(entry, now)
        ]
        for conversation_id in expired:
            del self._entries[conversation_id]

        if expired:
            logger.info("MessageCache: cleaned up %d expired entries", len(expired))
        return len(expired)

    def get_stats(self) -> dict:
        total_messages = sum(len(e.messages) for e in self._entries.values())
        accesses = [e.access_count for e in self._entries.values()]
        return {
            "size": len(self._entries),
            "max_size": self._max_conversations,
            "total_messages": total_messages,
            "conversations": list(self._entries.keys()),
            "average_access_count": sum(accesses) / len(accesses) if accesses else 0.0,
        }

    async def preload_conversations(
        self,
        conversation_ids: Iterable[str],
        loader: Callable[[str], Awaitable[list[Message]]],
    ) -> None:
        """Load conversations that are not cached, a few at a time."""
        to_load = [cid for cid in conversation_ids if not self.has(cid)]
        if not to_load:
            return

        logger.info("MessageCache: preloading %d conversations", len(to_load))

        async def load(conversation_id: str) -> None:
            try:
                self.set(conversation_id, await loader(conversation_id))
            except Exception as e:
                logger.warning(
                    "MessageCache: failed to preload conversation %s: %s",
                    conversation_id,
                    e,
                )

        for i in range(0, len(to_load), PRELOAD_BATCH_SIZE):
            batch = to_load[i : i + PRELOAD_BATCH_SIZE]
            await asyncio.gather(*(load(cid) for cid in batch))
