"""Tests for MessageCache."""

import asyncio

import pytest

from msgsync.cache import MessageCache
from msgsync.models import MessageStatus


class TestCacheReadWrite:
    """Tests for set/get/add_messages."""

    def test_miss_returns_none(self, cache):
        assert cache.get("nope") is None
        assert cache.get_recent("nope", 5) is None
        assert cache.search_messages("nope", "x") is None

    def test_set_sorts_and_dedups(self, cache, make_message):
        """Last occurrence of an id wins and the result is ordered by created_at."""
        cache.set(
            "conv1",
            [
                make_message("b", created_at=20),
                make_message("a", created_at=10, text="old"),
                make_message("a", created_at=10, text="new"),
            ],
        )

        messages = cache.get("conv1")
        assert [m.id for m in messages] == ["a", "b"]
        assert messages[0].text == "new"

    def test_add_messages_keeps_cached_copy_by_default(self, cache, make_message):
        cache.set("conv1", [make_message("a", created_at=10, text="cached")])
        cache.add_messages(
            "conv1",
            [make_message("a", created_at=10, text="incoming"), make_message("b", created_at=5)],
        )

        messages = cache.get("conv1")
        assert [m.id for m in messages] == ["b", "a"]
        assert messages[1].text == "cached"

    def test_add_messages_with_overwrite(self, cache, make_message):
        cache.set("conv1", [make_message("a", text="cached")])
        cache.add_messages("conv1", [make_message("a", text="incoming")], overwrite=True)

        assert cache.get("conv1")[0].text == "incoming"

    def test_add_messages_creates_entry(self, cache, make_message):
        cache.add_messages("conv9", [make_message("a", conversation_id="conv9")])
        assert cache.has("conv9")

    def test_per_conversation_cap_keeps_newest(self, clock, make_message):
        cache = MessageCache(max_messages_per_conversation=3, clock=clock)
        cache.set("conv1", [make_message(f"m{i}", created_at=i) for i in range(5)])

        assert [m.id for m in cache.get("conv1")] == ["m2", "m3", "m4"]

    def test_get_returns_copy(self, cache, make_message):
        cache.set("conv1", [make_message("a")])
        cache.get("conv1").clear()
        assert len(cache.get("conv1")) == 1


class TestCacheUpdates:
    """Tests for in-place updates."""

    def test_update_message(self, cache, make_message):
        cache.set("conv1", [make_message("a")])

        assert cache.update_message("conv1", "a", status=MessageStatus.READ, read_at=99)
        message = cache.get("conv1")[0]
        assert message.status is MessageStatus.READ
        assert message.read_at == 99

    def test_update_unknown_message_returns_false(self, cache, make_message):
        cache.set("conv1", [make_message("a")])
        assert not cache.update_message("conv1", "zzz", status=MessageStatus.READ)
        assert not cache.update_message("other", "a", status=MessageStatus.READ)

    def test_update_with_invalid_field_returns_false(self, cache, make_message):
        cache.set("conv1", [make_message("a")])
        assert not cache.update_message("conv1", "a", colour="blue")

    def test_update_created_at_resorts(self, cache, make_message):
        cache.set("conv1", [make_message("a", created_at=1), make_message("b", created_at=2)])
        cache.update_message("conv1", "a", created_at=3)

        assert [m.id for m in cache.get("conv1")] == ["b", "a"]

    def test_remove_message(self, cache, make_message):
        cache.set("conv1", [make_message("a"), make_message("b", created_at=1)])

        assert cache.remove_message("conv1", "a")
        assert not cache.remove_message("conv1", "a")
        assert [m.id for m in cache.get("conv1")] == ["b"]


class TestCacheQueries:
    """Tests for range, recent and search helpers."""

    def test_get_recent_and_range(self, cache, make_message):
        cache.set("conv1", [make_message(f"m{i}", created_at=i) for i in range(5)])

        assert [m.id for m in cache.get_recent("conv1", 2)] == ["m3", "m4"]
        assert [m.id for m in cache.get_range("conv1", 1, 3)] == ["m1", "m2"]
        assert cache.get_recent("conv1", 0) == []

    def test_search_is_case_insensitive(self, cache, make_message):
        cache.set(
            "conv1",
            [make_message("a", text="Hello World", created_at=1), make_message("b", text="bye")],
        )

        assert [m.id for m in cache.search_messages("conv1", "hello")] == ["a"]


class TestCacheEviction:
    """Tests for LRU and TTL eviction."""

    def test_lru_evicts_least_recently_used(self, clock, make_message):
        """Reading a conversation protects it from eviction."""
        cache = MessageCache(max_conversations=2, clock=clock)
        cache.set("a", [make_message("1", conversation_id="a")])
        cache.set("b", [make_message("2", conversation_id="b")])

        cache.get("a")
        cache.set("c", [make_message("3", conversation_id="c")])

        assert cache.has("a")
        assert not cache.has("b")
        assert cache.has("c")

    def test_updating_existing_entry_does_not_evict(self, clock, make_message):
        cache = MessageCache(max_conversations=2, clock=clock)
        cache.set("a", [make_message("1", conversation_id="a")])
        cache.set("b", [make_message("2", conversation_id="b")])
        cache.set("a", [make_message("3", conversation_id="a")])

        assert cache.get_stats()["size"] == 2
        assert cache.has("b")

    def test_expired_entry_is_a_miss(self, clock, make_message):
        cache = MessageCache(max_age=1000, clock=clock)
        cache.set("a", [make_message("1", conversation_id="a")])

        clock.advance(1001)

        assert cache.get("a") is None
        assert cache.get_stats()["size"] == 0

    def test_access_refreshes_ttl(self, clock, make_message):
        cache = MessageCache(max_age=1000, clock=clock)
        cache.set("a", [make_message("1", conversation_id="a")])

        clock.advance(800)
        cache.get("a")
        clock.advance(800)

        assert cache.get("a") is not None

    def test_cleanup_sweeps_expired(self, clock, make_message):
        cache = MessageCache(max_age=1000, clock=clock)
        cache.set("a", [make_message("1", conversation_id="a")])
        clock.advance(500)
        cache.set("b", [make_message("2", conversation_id="b")])
        clock.advance(600)

        assert cache.cleanup() == 1
        assert cache.get_stats()["conversations"] == ["b"]

    @pytest.mark.asyncio
    async def test_periodic_sweep_runs(self, clock, make_message):
        cache = MessageCache(max_age=10, cleanup_interval=10, clock=clock)
        cache.set("a", [make_message("1", conversation_id="a")])
        clock.advance(100)

        cache.start()
        try:
            await asyncio.sleep(0.05)
            assert cache.get_stats()["size"] == 0
        finally:
            cache.destroy()


class TestCacheStatsAndPreload:
    """Tests for stats and preloading."""

    def test_stats(self, cache, make_message):
        cache.set("a", [make_message("1", conversation_id="a"), make_message("2", created_at=1)])
        cache.get("a")

        stats = cache.get_stats()
        assert stats["size"] == 1
        assert stats["total_messages"] == 2
        assert stats["average_access_count"] == 2

    @pytest.mark.asyncio
    async def test_preload_skips_cached_and_tolerates_failures(self, cache, make_message):
        cache.set("cached", [])
        loaded = []

        async def loader(conversation_id):
            loaded.append(conversation_id)
            if conversation_id == "bad":
                raise ConnectionError("offline")
            return [make_message(f"{conversation_id}_1", conversation_id=conversation_id)]

        await cache.preload_conversations(["cached", "x", "bad", "y", "z"], loader)

        assert sorted(loaded) == ["bad", "x", "y", "z"]
        assert cache.has("x") and cache.has("z")
        assert not cache.has("bad")
