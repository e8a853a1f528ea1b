"""Durable, priority-ordered retry queue for outbound messages."""

import asyncio
import json
import uuid
from dataclasses import dataclass, replace
from typing import Any, Coroutine, Literal, Protocol

from ..clock import Clock, now_ms
from ..event_bus import EventBus
from ..logging_config import get_logger
from ..models import (
    EventType,
    Message,
    MessageDraft,
    MessageStatus,
    MessagingError,
    Priority,
    QueuedMessage,
    QueueStats,
)
from ..storage import IPersistentStore
from ..transport import ApiResponse, IMessagingAPI
from .classify import classify_error, classify_exception
from .validation import validate_draft

logger = get_logger(__name__)


@dataclass
class QueueOptions:
    """Tuning knobs for OfflineMessageQueue. Delays are in milliseconds."""

    max_retries: int = 3
    base_retry_delay: int = 1000
    max_retry_delay: int = 30_000
    storage_key: str = "offline_message_queue"
    batch_size: int = 5
    batch_interval: int = 100  # pause before the next batch when more are due


class IOfflineMessageQueue(Protocol):
    """Outbound queue surface used by the sync manager and the HTTP layer."""

    events: EventBus

    async def enqueue(self, draft: MessageDraft, priority: Priority | str = Priority.NORMAL) -> str:
        """Persist a draft for delivery and return its queue id."""
        ...

    async def set_online_status(self, online: bool) -> None:
        """Record connectivity; coming online triggers processing."""
        ...

    async def retry_message(self, queue_id: str) -> bool:
        """Reset one entry for immediate redelivery."""
        ...

    def get_stats(self) -> QueueStats:
        """Counters over the current queue."""
        ...


class OfflineMessageQueue:
    """Offline message queue with automatic retry and persistence.

    Entries move pending -> processing -> sent (removed), back to pending
    with exponential backoff, or into the failed projection once attempts
    are exhausted or the failure is not recoverable. Every mutation writes
    the full snapshot to the store before it completes.
    """

    def __init__(
        self,
        api: IMessagingAPI,
        store: IPersistentStore,
        options: QueueOptions | None = None,
        clock: Clock = now_ms,
    ):
        self._api = api
        self._store = store
        self._options = options or QueueOptions()
        self._clock = clock
        self.events = EventBus("offline_queue")

        self._queue: dict[str, QueuedMessage] = {}
        self._failed: dict[str, QueuedMessage] = {}
        self._processing: set[str] = set()
        self._is_online = False
        self._is_processing = False
        self._destroyed = False

        self._retry_timer: asyncio.TimerHandle | None = None
        self._batch_timer: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task] = set()
        self._save_lock = asyncio.Lock()

        self._stats = {
            "total_processed": 0,
            "total_successful": 0,
            "total_failed": 0,
            "last_processed_at": 0,
        }

    @property
    def is_online(self) -> bool:
        return self._is_online

    @property
    def is_processing(self) -> bool:
        return self._is_processing

    # Lifecycle

    async def initialize(self) -> None:
        """Load the persisted queue. A missing or corrupt snapshot yields an empty queue."""
        await self._load_from_storage()
        logger.info(
            "Offline queue initialized: %d pending, %d failed",
            len(self._queue),
            len(self._failed),
        )

    def destroy(self) -> None:
        """Cancel timers and detach listeners. In-flight sends finish without side effects."""
        self._destroyed = True
        self._cancel_timers()
        self.events.clear()
        self._queue.clear()
        self._failed.clear()
        self._processing.clear()

    async def wait_until_idle(self) -> None:
        """Wait for every background processing run to finish."""
        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    # Queue operations

    async def enqueue(
        self, draft: MessageDraft, priority: Priority | str = Priority.NORMAL
    ) -> str:
        """Validate and persist a draft, then trigger delivery if online.

        Raises MessageValidationError before anything is queued.
        """
        validate_draft(draft)
        priority = Priority(priority)

        now = self._clock()
        entry = QueuedMessage(
            id=f"queue_{now}_{uuid.uuid4().hex[:9]}",
            draft=draft,
            attempts=0,
            max_attempts=self._options.max_retries,
            last_attempt_at=0,
            next_retry_at=now,
            priority=priority,
            created_at=now,
        )
        self._queue[entry.id] = entry

        await self._save_to_storage()

        await self.events.emit(
            EventType.MESSAGE_QUEUED,
            {
                "id": entry.id,
                "priority": priority.value,
                "queue_size": len(self._queue),
                "draft": draft,
                "created_at": entry.created_at,
            },
        )

        if self._is_online and not self._is_processing:
            self._spawn(self.process_queue())

        return entry.id

    async def dequeue(self, queue_id: str) -> bool:
        """Remove an entry (pending or failed). Idempotent."""
        removed = (
            self._queue.pop(queue_id, None) or self._failed.pop(queue_id, None)
        ) is not None
        self._processing.discard(queue_id)

        if removed:
            await self._save_to_storage()
            await self.events.emit(
                EventType.MESSAGE_DEQUEUED,
                {"id": queue_id, "queue_size": len(self._queue)},
            )

        return removed

    async def set_online_status(self, online: bool) -> None:
        """Record connectivity. A false -> true transition starts processing."""
        was_online = self._is_online
        self._is_online = online

        await self.events.emit(
            EventType.CONNECTION_STATUS_CHANGED,
            {"online": online, "previous_status": was_online},
        )

        if not online:
            self._cancel_timers()
        elif not was_online and self._queue:
            self._spawn(self.process_queue())

    async def process_queue(self) -> None:
        """Dispatch one batch of due entries, highest priority first."""
        if self._destroyed or self._is_processing or not self._is_online or not self._queue:
            return

        self._is_processing = True
        dispatched = False
        try:
            await self.events.emit(
                EventType.PROCESSING_STARTED, {"queue_size": len(self._queue)}
            )

            ready = self._get_ready_messages()
            if not ready:
                self._arm_retry_timer()
                return

            batch = ready[: self._options.batch_size]
            results = await asyncio.gather(
                *(self._process_message(entry) for entry in batch),
                return_exceptions=True,
            )
            for entry, result in zip(batch, results):
                if isinstance(result, Exception):
                    logger.error(
                        "Unexpected error processing %s: %s", entry.id, result, exc_info=result
                    )
            dispatched = True
        finally:
            self._is_processing = False
            if not self._destroyed:
                await self.events.emit(
                    EventType.PROCESSING_COMPLETED, {"queue_size": len(self._queue)}
                )

        if dispatched and not self._destroyed and self._is_online and self._queue:
            if self._get_ready_messages():
                self._arm_batch_timer()
            else:
                self._arm_retry_timer()

    async def _process_message(self, entry: QueuedMessage) -> None:
        """One delivery attempt. Never raises for transport failures."""
        if entry.id in self._processing:
            return

        self._processing.add(entry.id)
        entry.attempts += 1
        entry.last_attempt_at = self._clock()

        try:
            await self.events.emit(
                EventType.MESSAGE_PROCESSING,
                {
                    "id": entry.id,
                    "attempt": entry.attempts,
                    "max_attempts": entry.max_attempts,
                },
            )

            try:
                response = await self._api.send_message(entry.draft)
            except Exception as e:
                error = classify_exception(e)
                logger.warning(
                    "Send attempt %d for %s raised: %s", entry.attempts, entry.id, e
                )
            else:
                if response.success:
                    if not self._destroyed:
                        await self._handle_success(entry, response)
                    return
                error = classify_error(response.error)
                logger.warning(
                    "Send attempt %d for %s rejected: %s (%s)",
                    entry.attempts,
                    entry.id,
                    error.message,
                    error.type.value,
                )

            if not self._destroyed and entry.id in self._queue:
                await self._handle_failure(entry, error)
        finally:
            self._processing.discard(entry.id)

    async def _handle_success(self, entry: QueuedMessage, response: ApiResponse[Message]) -> None:
        message = response.data or Message(
            id=entry.id,
            conversation_id=entry.draft.conversation_id,
            sender_id=entry.draft.sender_id,
            recipient_id=entry.draft.recipient_id,
            body=entry.draft.body,
            created_at=entry.created_at,
            status=MessageStatus.SENT,
        )

        self._stats["total_processed"] += 1
        self._stats["total_successful"] += 1
        self._stats["last_processed_at"] = self._clock()

        await self.dequeue(entry.id)

        logger.info("Message %s sent after %d attempt(s)", entry.id, entry.attempts)
        await self.events.emit(
            EventType.MESSAGE_SENT,
            {
                "id": entry.id,
                "message": message,
                "attempts": entry.attempts,
                "draft": entry.draft,
            },
        )

    async def _handle_failure(self, entry: QueuedMessage, error: MessagingError) -> None:
        entry.last_error = error

        if not error.recoverable or entry.exhausted:
            self._queue.pop(entry.id, None)
            self._failed[entry.id] = entry

            self._stats["total_processed"] += 1
            self._stats["total_failed"] += 1
            self._stats["last_processed_at"] = self._clock()

            await self._save_to_storage()

            logger.error(
                "Message %s failed permanently after %d attempt(s): %s",
                entry.id,
                entry.attempts,
                error.type.value,
            )
            await self.events.emit(
                EventType.MESSAGE_FAILED,
                {
                    "id": entry.id,
                    "error": error,
                    "attempts": entry.attempts,
                    "draft": entry.draft,
                },
            )
            return

        delay = self.retry_delay(entry.attempts)
        entry.next_retry_at = max(entry.next_retry_at, self._clock() + delay)
        await self._save_to_storage()

        await self.events.emit(
            EventType.MESSAGE_RETRY_SCHEDULED,
            {
                "id": entry.id,
                "attempt": entry.attempts,
                "next_retry": entry.next_retry_at,
                "delay": delay,
                "error": error,
            },
        )

    def retry_delay(self, attempts: int) -> int:
        """Backoff after the given number of attempts: base * 2^(attempts-1), capped."""
        exponent = max(attempts - 1, 0)
        return min(self._options.base_retry_delay * 2**exponent, self._options.max_retry_delay)

    def _get_ready_messages(self) -> list[QueuedMessage]:
        now = self._clock()
        ready = [
            entry
            for entry in self._queue.values()
            if entry.id not in self._processing
            and entry.next_retry_at <= now
            and entry.attempts < entry.max_attempts
        ]
        ready.sort(key=lambda entry: (entry.priority.order, entry.created_at))
        return ready

    # Timers and background tasks

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Queue background task failed", exc_info=task.exception())

    def _start_processing(self) -> None:
        # One of the two timers fired; drop the other so it cannot start a second run
        self._cancel_timers()
        if not self._destroyed:
            self._spawn(self.process_queue())

    def _arm_batch_timer(self) -> None:
        if self._batch_timer is None:
            self._batch_timer = asyncio.get_running_loop().call_later(
                self._options.batch_interval / 1000, self._start_processing
            )

    def _arm_retry_timer(self) -> None:
        """Wake up when the earliest pending entry becomes due."""
        if self._retry_timer is not None:
            self._retry_timer.cancel()
            self._retry_timer = None

        candidates = [e.next_retry_at for e in self._queue.values() if not e.exhausted]
        if not candidates:
            return

        delay = max(0, min(candidates) - self._clock()) / 1000
        self._retry_timer = asyncio.get_running_loop().call_later(
            delay, self._start_processing
        )

    def _cancel_timers(self) -> None:
        for timer in (self._retry_timer, self._batch_timer):
            if timer is not None:
                timer.cancel()
        self._retry_timer = None
        self._batch_timer = None

    # Persistence

    async def _load_from_storage(self) -> None:
        try:
            stored = await self._store.get_item(self._options.storage_key)
            if not stored:
                return

            data = json.loads(stored)
            queue = self._parse_entries(data.get("queue"))
            failed = self._parse_entries(data.get("failed"))
            self._queue = {entry.id: entry for entry in queue}
            self._failed = {entry.id: entry for entry in failed}

            if isinstance(data.get("stats"), dict):
                self._stats.update(
                    {k: v for k, v in data["stats"].items() if k in self._stats}
                )
        except Exception as e:
            logger.error("Failed to load queue from storage: %s", e, exc_info=True)
            self._queue.clear()
            self._failed.clear()

    @staticmethod
    def _parse_entries(items: Any) -> list[QueuedMessage]:
        if not isinstance(items, list):
            return []

        entries = []
        for item in items:
            try:
                entries.append(QueuedMessage.from_dict(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Dropping unreadable queue entry: %s", e)
        return entries

    async def _save_to_storage(self) -> None:
        if self._destroyed:
            return

        async with self._save_lock:
            try:
                snapshot = json.dumps(
                    {
                        "queue": [entry.to_dict() for entry in self._queue.values()],
                        "failed": [entry.to_dict() for entry in self._failed.values()],
                        "stats": self._stats,
                        "timestamp": self._clock(),
                    }
                )
                await self._store.set_item(self._options.storage_key, snapshot)
            except Exception as e:
                logger.error("Failed to save queue to storage: %s", e, exc_info=True)

    # Read projections

    def get_queued_messages(self) -> list[QueuedMessage]:
        return [replace(entry) for entry in self._queue.values()]

    def get_failed_messages(self) -> list[QueuedMessage]:
        return [replace(entry) for entry in self._failed.values()]

    def get_stats(self) -> QueueStats:
        processed = self._stats["total_processed"]
        return QueueStats(
            total_queued=len(self._queue),
            pending=sum(1 for entry_id in self._queue if entry_id not in self._processing),
            failed=len(self._failed),
            processing=len(self._processing),
            last_processed=self._stats["last_processed_at"],
            success_rate=self._stats["total_successful"] / processed if processed else 0.0,
        )

    # Manual recovery

    async def retry_message(self, queue_id: str) -> bool:
        """Reset attempts and make the entry due now. Works on failed entries too."""
        entry = self._queue.get(queue_id) or self._failed.pop(queue_id, None)
        if entry is None:
            return False

        entry.attempts = 0
        entry.next_retry_at = self._clock()
        entry.last_error = None
        self._queue[entry.id] = entry

        await self._save_to_storage()

        await self.events.emit(
            EventType.MESSAGE_RETRY_MANUAL, {"id": entry.id, "draft": entry.draft}
        )

        if self._is_online:
            self._spawn(self.process_queue())

        return True

    async def clear_failed_messages(self) -> int:
        count = len(self._failed)
        if count:
            self._failed.clear()
            await self._save_to_storage()
        return count

    async def clear_all(self) -> None:
        self._queue.clear()
        self._failed.clear()
        self._processing.clear()
        self._cancel_timers()

        await self._save_to_storage()

        await self.events.emit(EventType.QUEUE_CLEARED, {})

    # Transport passthroughs

    async def send_typing_indicator(
        self, conversation_id: str, action: Literal["start", "stop"]
    ) -> ApiResponse[None]:
        try:
            return await self._api.send_typing_indicator(conversation_id, action)
        except Exception as e:
            logger.warning("Failed to send typing indicator: %s", e)
            raise

    async def send_delivery_receipt(self, message_id: str, status: str) -> ApiResponse[None]:
        try:
            return await self._api.send_delivery_receipt(message_id, status)
        except Exception as e:
            logger.warning("Failed to send delivery receipt: %s", e)
            raise
