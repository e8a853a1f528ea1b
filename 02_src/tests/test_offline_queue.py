"""Tests for OfflineMessageQueue."""

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from msgsync.errors import MessageValidationError
from msgsync.models import EventType, MessagingErrorType, Priority, TextBody
from msgsync.queue import OfflineMessageQueue, QueueOptions
from msgsync.transport import ApiResponse


def record_events(queue, *event_types):
    """Collect (type, payload) pairs emitted by the queue."""
    events = []

    async def handler(event):
        events.append((event.type, event.payload))

    for event_type in event_types:
        queue.events.subscribe(event_type, handler)
    return events


class TestEnqueue:
    """Tests for enqueue/dequeue."""

    @pytest.mark.asyncio
    async def test_enqueue_persists_before_returning(self, queue, storage, make_draft):
        queue_id = await queue.enqueue(make_draft("first"))

        snapshot = json.loads(await storage.get_item("offline_message_queue"))
        assert [entry["id"] for entry in snapshot["queue"]] == [queue_id]
        assert snapshot["queue"][0]["draft"]["body"]["text"] == "first"
        assert queue_id.startswith("queue_")

    @pytest.mark.asyncio
    async def test_enqueue_emits_queued_with_draft(self, queue, make_draft):
        events = record_events(queue, EventType.MESSAGE_QUEUED)
        draft = make_draft()

        queue_id = await queue.enqueue(draft, Priority.HIGH)

        assert len(events) == 1
        payload = events[0][1]
        assert payload["id"] == queue_id
        assert payload["priority"] == "high"
        assert payload["draft"] is draft

    @pytest.mark.asyncio
    async def test_invalid_draft_is_rejected(self, queue, storage, make_draft):
        with pytest.raises(MessageValidationError):
            await queue.enqueue(make_draft("   "))

        assert queue.get_queued_messages() == []
        assert await storage.get_item("offline_message_queue") is None

    @pytest.mark.asyncio
    async def test_dequeue_is_idempotent(self, queue, make_draft):
        queue_id = await queue.enqueue(make_draft())

        assert await queue.dequeue(queue_id)
        assert not await queue.dequeue(queue_id)
        assert queue.get_stats().total_queued == 0

    @pytest.mark.asyncio
    async def test_offline_enqueue_does_not_send(self, queue, api, make_draft):
        await queue.enqueue(make_draft())
        await queue.wait_until_idle()

        assert api.sent == []
        assert queue.get_stats().pending == 1


class TestProcessing:
    """Tests for dispatch."""

    @pytest.mark.asyncio
    async def test_going_online_sends_everything(self, queue, api, make_draft):
        events = record_events(queue, EventType.MESSAGE_SENT, EventType.MESSAGE_DEQUEUED)
        await queue.enqueue(make_draft("one"))
        await queue.enqueue(make_draft("two"))

        await queue.set_online_status(True)
        await queue.wait_until_idle()

        assert [d.text for d in api.sent] == ["one", "two"]
        assert queue.get_queued_messages() == []
        sent = [payload for event_type, payload in events if event_type is EventType.MESSAGE_SENT]
        assert {p["message"].text for p in sent} == {"one", "two"}
        assert all(p["message"].id.startswith("srv_") for p in sent)

    @pytest.mark.asyncio
    async def test_enqueue_while_online_sends_immediately(self, queue, api, make_draft):
        await queue.set_online_status(True)
        await queue.enqueue(make_draft("now"))
        await queue.wait_until_idle()

        assert [d.text for d in api.sent] == ["now"]

    @pytest.mark.asyncio
    async def test_priority_then_fifo_dispatch(self, queue, api, clock, make_draft):
        """High goes before normal before low; equal priority keeps enqueue order."""
        await queue.enqueue(make_draft("low"), Priority.LOW)
        clock.advance(1)
        await queue.enqueue(make_draft("normal-1"), Priority.NORMAL)
        clock.advance(1)
        await queue.enqueue(make_draft("high"), Priority.HIGH)
        clock.advance(1)
        await queue.enqueue(make_draft("normal-2"), "normal")

        await queue.set_online_status(True)
        await queue.wait_until_idle()

        assert [d.text for d in api.sent] == ["high", "normal-1", "normal-2", "low"]

    @pytest.mark.asyncio
    async def test_batch_size_limits_one_pass(self, api, storage, clock, make_draft):
        queue = OfflineMessageQueue(api, storage, QueueOptions(batch_size=2), clock=clock)
        await queue.initialize()
        try:
            for i in range(3):
                await queue.enqueue(make_draft(f"m{i}"))
            queue._is_online = True

            await queue.process_queue()

            assert len(api.sent) == 2
            assert queue.get_stats().total_queued == 1
        finally:
            queue.destroy()
            await queue.wait_until_idle()

    @pytest.mark.asyncio
    async def test_process_queue_noop_when_offline(self, queue, api, make_draft):
        await queue.enqueue(make_draft())
        await queue.process_queue()
        assert api.sent == []

    @pytest.mark.asyncio
    async def test_firing_timer_cancels_the_other(self, queue, make_draft):
        """Only one wake-up runs when the retry and batch timers are both armed."""
        await queue.enqueue(make_draft())
        queue._arm_retry_timer()
        queue._arm_batch_timer()
        retry_timer, batch_timer = queue._retry_timer, queue._batch_timer

        queue._start_processing()

        assert retry_timer.cancelled()
        assert batch_timer.cancelled()
        assert queue._retry_timer is None
        assert queue._batch_timer is None
        await queue.wait_until_idle()


class TestRetries:
    """Tests for backoff, exhaustion and classification."""

    @pytest.mark.asyncio
    async def test_backoff_doubles_and_is_capped(self, api, storage, clock, make_draft):
        queue = OfflineMessageQueue(
            api,
            storage,
            QueueOptions(max_retries=10, base_retry_delay=1000, max_retry_delay=5000),
            clock=clock,
        )
        await queue.initialize()
        api.send_default = ApiResponse.fail("unavailable", 503)
        events = record_events(queue, EventType.MESSAGE_RETRY_SCHEDULED)
        try:
            queue_id = await queue.enqueue(make_draft())
            queue._is_online = True

            retry_times = []
            for _ in range(5):
                await queue.process_queue()
                entry = queue.get_queued_messages()[0]
                retry_times.append(entry.next_retry_at)
                clock.advance(entry.next_retry_at - clock())

            delays = [payload["delay"] for _, payload in events]
            assert delays == [1000, 2000, 4000, 5000, 5000]
            assert retry_times == sorted(retry_times)
            assert queue.get_queued_messages()[0].id == queue_id
            assert queue.get_queued_messages()[0].last_error.type is MessagingErrorType.NETWORK
        finally:
            queue.destroy()
            await queue.wait_until_idle()

    @pytest.mark.asyncio
    async def test_entry_not_retried_before_next_retry_at(self, queue, api, clock, make_draft):
        api.send_default = ApiResponse.fail("unavailable", "NETWORK_ERROR")
        await queue.enqueue(make_draft())
        await queue.set_online_status(True)
        await queue.wait_until_idle()
        assert len(api.sent) == 1

        clock.advance(999)
        await queue.process_queue()
        assert len(api.sent) == 1

        clock.advance(1)
        await queue.process_queue()
        assert len(api.sent) == 2

    @pytest.mark.asyncio
    async def test_exhaustion_moves_to_failed(self, queue, api, clock, make_draft):
        """After max attempts the entry leaves the queue and message_failed fires once."""
        events = record_events(queue, EventType.MESSAGE_FAILED)
        api.send_default = ApiResponse.fail("unavailable", 503)
        await queue.enqueue(make_draft())
        queue._is_online = True

        for _ in range(5):
            await queue.process_queue()
            clock.advance(60_000)

        assert len(api.sent) == 3
        assert queue.get_queued_messages() == []
        failed = queue.get_failed_messages()
        assert len(failed) == 1
        assert failed[0].attempts == 3
        assert len(events) == 1
        assert events[0][1]["attempts"] == 3

        stats = queue.get_stats()
        assert stats.failed == 1
        assert stats.success_rate == 0.0

    @pytest.mark.asyncio
    async def test_non_recoverable_fails_after_one_attempt(self, queue, api, make_draft):
        events = record_events(queue, EventType.MESSAGE_FAILED, EventType.MESSAGE_RETRY_SCHEDULED)
        api.send_default = ApiResponse.fail("blocked", "USER_BLOCKED")

        await queue.enqueue(make_draft())
        await queue.set_online_status(True)
        await queue.wait_until_idle()

        assert len(api.sent) == 1
        assert [event_type for event_type, _ in events] == [EventType.MESSAGE_FAILED]
        error = events[0][1]["error"]
        assert error.type is MessagingErrorType.USER_BLOCKED
        assert not error.recoverable

    @pytest.mark.asyncio
    async def test_transport_exception_is_network_and_retried(self, queue, api, make_draft):
        events = record_events(queue, EventType.MESSAGE_RETRY_SCHEDULED)
        api.send_results = [httpx.ConnectError("refused")]

        await queue.enqueue(make_draft())
        await queue.set_online_status(True)
        await queue.wait_until_idle()

        assert len(events) == 1
        assert events[0][1]["error"].type is MessagingErrorType.NETWORK
        assert queue.get_stats().total_queued == 1

    @pytest.mark.asyncio
    async def test_retry_after_failure_then_success(self, queue, api, clock, make_draft):
        api.send_results = [ApiResponse.fail("slow down", 429)]
        sent = record_events(queue, EventType.MESSAGE_SENT)

        await queue.enqueue(make_draft())
        await queue.set_online_status(True)
        await queue.wait_until_idle()
        assert sent == []

        clock.advance(1000)
        await queue.process_queue()

        assert len(sent) == 1
        assert sent[0][1]["attempts"] == 2
        assert queue.get_stats().success_rate == 1.0


class TestManualRecovery:
    """Tests for retry_message and clearing."""

    @pytest.mark.asyncio
    async def test_retry_failed_message(self, queue, api, make_draft):
        api.send_results = [ApiResponse.fail("denied", 403)]
        events = record_events(queue, EventType.MESSAGE_RETRY_MANUAL, EventType.MESSAGE_SENT)

        queue_id = await queue.enqueue(make_draft())
        await queue.set_online_status(True)
        await queue.wait_until_idle()
        assert queue.get_stats().failed == 1

        assert await queue.retry_message(queue_id)
        await queue.wait_until_idle()

        assert [event_type for event_type, _ in events] == [
            EventType.MESSAGE_RETRY_MANUAL,
            EventType.MESSAGE_SENT,
        ]
        assert queue.get_failed_messages() == []
        assert queue.get_queued_messages() == []

    @pytest.mark.asyncio
    async def test_retry_unknown_id(self, queue):
        assert not await queue.retry_message("queue_missing")

    @pytest.mark.asyncio
    async def test_clear_failed_and_clear_all(self, queue, api, make_draft):
        api.send_results = [ApiResponse.fail("denied", "PERMISSION_DENIED")]
        events = record_events(queue, EventType.QUEUE_CLEARED)

        await queue.enqueue(make_draft("fails"))
        await queue.set_online_status(True)
        await queue.wait_until_idle()
        await queue.set_online_status(False)
        await queue.enqueue(make_draft("waits"))

        assert await queue.clear_failed_messages() == 1
        assert await queue.clear_failed_messages() == 0

        await queue.clear_all()
        assert queue.get_queued_messages() == []
        assert len(events) == 1


class TestPersistence:
    """Tests for snapshot load/save."""

    @pytest.mark.asyncio
    async def test_restart_restores_queue_and_failed(self, api, storage, clock, make_draft):
        first = OfflineMessageQueue(api, storage, clock=clock)
        await first.initialize()
        api.send_results = [ApiResponse.fail("too long", "MESSAGE_TOO_LONG")]
        failed_id = await first.enqueue(make_draft("rejected"))
        await first.set_online_status(True)
        await first.wait_until_idle()
        await first.set_online_status(False)
        pending_id = await first.enqueue(make_draft("pending"), Priority.LOW)
        first.destroy()

        second = OfflineMessageQueue(api, storage, clock=clock)
        await second.initialize()
        try:
            queued = second.get_queued_messages()
            assert [e.id for e in queued] == [pending_id]
            assert queued[0].priority is Priority.LOW
            assert isinstance(queued[0].draft.body, TextBody)

            failed = second.get_failed_messages()
            assert [e.id for e in failed] == [failed_id]
            assert failed[0].last_error.type is MessagingErrorType.MESSAGE_TOO_LONG
            assert second.get_stats().last_processed == clock()
        finally:
            second.destroy()

    @pytest.mark.asyncio
    async def test_corrupt_snapshot_yields_empty_queue(self, api, storage, clock):
        await storage.set_item("offline_message_queue", "{not json")

        queue = OfflineMessageQueue(api, storage, clock=clock)
        await queue.initialize()

        assert queue.get_queued_messages() == []
        assert queue.get_stats().total_queued == 0
        queue.destroy()

    @pytest.mark.asyncio
    async def test_unreadable_entries_are_dropped(self, api, storage, clock, make_draft):
        good = OfflineMessageQueue(api, storage, clock=clock)
        await good.initialize()
        queue_id = await good.enqueue(make_draft())
        good.destroy()

        snapshot = json.loads(await storage.get_item("offline_message_queue"))
        snapshot["queue"].append({"id": "broken"})
        await storage.set_item("offline_message_queue", json.dumps(snapshot))

        queue = OfflineMessageQueue(api, storage, clock=clock)
        await queue.initialize()
        assert [e.id for e in queue.get_queued_messages()] == [queue_id]
        queue.destroy()

    @pytest.mark.asyncio
    async def test_store_write_failure_does_not_raise(self, api, clock, make_draft):
        store = AsyncMock()
        store.get_item.return_value = None
        store.set_item.side_effect = OSError("disk full")

        queue = OfflineMessageQueue(api, store, clock=clock)
        await queue.initialize()
        queue_id = await queue.enqueue(make_draft())

        assert queue.get_queued_messages()[0].id == queue_id
        queue.destroy()


class TestPassthroughs:
    """Tests for typing indicator and delivery receipt passthroughs."""

    @pytest.mark.asyncio
    async def test_typing_and_receipts(self, queue, api):
        await queue.send_typing_indicator("conv1", "start")
        await queue.send_delivery_receipt("m1", "read")

        assert api.typing == [("conv1", "start")]
        assert api.receipts == [("m1", "read")]

    @pytest.mark.asyncio
    async def test_passthrough_errors_propagate(self, queue, api):
        api.send_typing_indicator = AsyncMock(side_effect=httpx.ReadTimeout("slow"))
        with pytest.raises(httpx.ReadTimeout):
            await queue.send_typing_indicator("conv1", "stop")
