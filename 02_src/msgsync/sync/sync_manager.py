"""Reconciliation of the local cache with the server and the real-time stream."""

import asyncio
import json
import uuid
from dataclasses import dataclass, replace
from typing import Any, Coroutine, Literal

from ..cache import MessageCache
from ..clock import Clock, now_ms
from ..config import CONFLICT_POLICIES
from ..errors import ConflictNotFoundError, TransportError
from ..event_bus import EventBus, EventHandler
from ..logging_config import get_logger
from ..models import (
    ConflictRecord,
    ConversationSyncState,
    Event,
    EventType,
    Message,
    MessageDraft,
    MessageStatus,
    MessagingError,
    MessagingErrorType,
    SyncError,
    SyncErrorType,
    SyncStats,
    SyncStatus,
)
from ..queue import IOfflineMessageQueue, classify_exception
from ..queue.classify import classify_code
from ..storage import IPersistentStore
from ..transport import IMessagingAPI, IRealtimeChannel

logger = get_logger(__name__)

MAX_SYNC_ERRORS = 100

Resolution = Literal["keep_local", "keep_server"]


@dataclass
class SyncOptions:
    """Tuning knobs for MessageSyncManager. Durations are in milliseconds."""

    batch_size: int = 50
    max_retries: int = 3
    retry_delay: int = 1000
    conflict_resolution: str = "server"
    enable_realtime: bool = True
    sync_interval: int = 30_000  # 0 disables the periodic sync
    storage_key: str = "message_sync_state"

    def __post_init__(self) -> None:
        if self.conflict_resolution not in CONFLICT_POLICIES:
            raise ValueError(
                f"conflict_resolution must be one of {sorted(CONFLICT_POLICIES)}, "
                f"got {self.conflict_resolution!r}"
            )


def _furthest_status(base: Message, other: Message) -> Message:
    """Return ``base`` with the status and read_at of ``other`` when those are further along.

    A status never moves backward, and FAILED is never taken from or given up to a copy.
    """
    if base.status is MessageStatus.FAILED or other.status is MessageStatus.FAILED:
        return base
    if base.status.can_advance_to(other.status):
        read_at = other.read_at if other.read_at is not None else base.read_at
        return base.with_changes(status=other.status, read_at=read_at)
    if other.status is base.status and base.read_at is None and other.read_at is not None:
        return base.with_changes(read_at=other.read_at)
    return base


def _sync_error_type(error_type: MessagingErrorType) -> SyncErrorType:
    if error_type in (MessagingErrorType.AUTHENTICATION, MessagingErrorType.PERMISSION):
        return SyncErrorType.PERMISSION
    if error_type is MessagingErrorType.MESSAGE_TOO_LONG:
        return SyncErrorType.VALIDATION
    return SyncErrorType.NETWORK


class MessageSyncManager:
    """Keeps the message cache consistent with the server.

    Three inputs feed the cache: pull syncs against the messaging API,
    pushed real-time events, and outbound queue events that drive
    optimistic placeholders. Per-conversation state (watermark, unread
    count, status), the last full-sync time and unresolved manual conflicts
    are persisted to the store.
    """

    def __init__(
        self,
        api: IMessagingAPI,
        cache: MessageCache,
        store: IPersistentStore,
        options: SyncOptions | None = None,
        clock: Clock = now_ms,
    ):
        self._api = api
        self._cache = cache
        self._store = store
        self._options = options or SyncOptions()
        self._clock = clock
        self.events = EventBus("sync_manager")

        self._user_id: str | None = None
        self._realtime: IRealtimeChannel | None = None
        self._queue: IOfflineMessageQueue | None = None

        self._states: dict[str, ConversationSyncState] = {}
        self._conflicts: list[ConflictRecord] = []
        self._errors: list[SyncError] = []
        # (message id, text) pairs already pushed under the client policy
        self._pushed: set[tuple[str, str]] = set()
        self._last_sync_timestamp = 0
        self._sync_in_progress = False
        self._destroyed = False

        self._subscriptions: list[tuple[EventBus, EventType, EventHandler]] = []
        self._periodic_task: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()
        self._save_lock = asyncio.Lock()

    @property
    def user_id(self) -> str | None:
        return self._user_id

    @property
    def sync_in_progress(self) -> bool:
        return self._sync_in_progress

    # Lifecycle

    async def initialize(
        self,
        user_id: str,
        realtime: IRealtimeChannel | None = None,
        offline_queue: IOfflineMessageQueue | None = None,
    ) -> None:
        """Attach to the event sources, restore persisted state, start periodic sync."""
        self._user_id = user_id

        if realtime is not None and self._options.enable_realtime:
            self._realtime = realtime
            self._listen(realtime.events, EventType.REALTIME_MESSAGE, self._on_realtime_message)
            self._listen(realtime.events, EventType.DELIVERY_RECEIPT, self._on_delivery_receipt)
            self._listen(realtime.events, EventType.READ_RECEIPT, self._on_read_receipt)
            self._listen(realtime.events, EventType.TYPING, self._on_typing)
            self._listen(realtime.events, EventType.CONNECTED, self._on_realtime_connected)
            self._listen(realtime.events, EventType.DISCONNECTED, self._on_realtime_disconnected)

        if offline_queue is not None:
            self._queue = offline_queue
            self._listen(offline_queue.events, EventType.MESSAGE_QUEUED, self._on_message_queued)
            self._listen(offline_queue.events, EventType.MESSAGE_SENT, self._on_message_sent)
            self._listen(offline_queue.events, EventType.MESSAGE_FAILED, self._on_message_failed)
            self._listen(offline_queue.events, EventType.MESSAGE_RETRY_MANUAL, self._on_message_retry)
            self._listen(
                offline_queue.events, EventType.CONNECTION_STATUS_CHANGED, self._on_connection_changed
            )
            self._listen(offline_queue.events, EventType.PROCESSING_STARTED, self._on_processing_started)
            self._listen(
                offline_queue.events, EventType.PROCESSING_COMPLETED, self._on_processing_completed
            )

        await self._load_sync_state()

        if self._options.sync_interval > 0:
            self._periodic_task = asyncio.get_running_loop().create_task(self._periodic_sync())

        logger.info(
            "Sync manager initialized for %s: %d conversations, %d conflicts",
            user_id,
            len(self._states),
            len(self._conflicts),
        )

    def destroy(self) -> None:
        """Stop periodic sync and detach from every event source."""
        self._destroyed = True
        if self._periodic_task is not None:
            self._periodic_task.cancel()
            self._periodic_task = None

        for bus, event_type, handler in self._subscriptions:
            bus.unsubscribe(event_type, handler)
        self._subscriptions.clear()
        self.events.clear()

    async def wait_until_idle(self) -> None:
        """Wait for every background sync started by an event handler."""
        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    def _listen(self, bus: EventBus, event_type: EventType, handler: EventHandler) -> None:
        bus.subscribe(event_type, handler)
        self._subscriptions.append((bus, event_type, handler))

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Sync background task failed", exc_info=task.exception())

    async def _periodic_sync(self) -> None:
        while not self._destroyed:
            await asyncio.sleep(self._options.sync_interval / 1000)
            if not self._sync_in_progress:
                await self.sync_all_conversations()

    # Full sync

    async def sync_all_conversations(self) -> None:
        """Sync every conversation the server lists. Only one run at a time."""
        if self._sync_in_progress or self._destroyed:
            return

        self._sync_in_progress = True
        try:
            await self.events.emit(EventType.SYNC_STARTED, {})

            try:
                response = await self._api.get_conversations()
                if not response.success:
                    error = response.error
                    raise TransportError(
                        error.message if error else "Failed to get conversations list",
                        error.code if error else None,
                    )
            except Exception as e:
                logger.error("Global sync failed: %s", e)
                await self._add_sync_error(
                    self._error_type_for(e), f"Global sync failed: {e}"
                )
                await self.events.emit(EventType.SYNC_FAILED, {"error": str(e)})
                return

            failed = 0
            conversations = response.data or []
            for conversation in conversations:
                if self._destroyed:
                    return
                try:
                    await self.sync_conversation(conversation.id)
                except Exception as e:
                    # Already recorded by sync_conversation
                    failed += 1
                    logger.warning("Skipping conversation %s: %s", conversation.id, e)

            self._last_sync_timestamp = self._clock()
            await self._save_sync_state()

            logger.info(
                "Synced %d conversations (%d failed)", len(conversations) - failed, failed
            )
            await self.events.emit(
                EventType.SYNC_COMPLETED,
                {
                    "conversations": len(conversations),
                    "failed": failed,
                    "timestamp": self._last_sync_timestamp,
                },
            )
        finally:
            self._sync_in_progress = False

    # Conversation sync

    async def sync_conversation(self, conversation_id: str) -> None:
        """Fetch the newest window of a conversation and merge it into the cache.

        Raises whatever the fetch raised after recording it as a SyncError.
        """
        state = self._state(conversation_id)
        if state.sync_status is SyncStatus.SYNCING:
            return

        previous_status = state.sync_status
        state.sync_status = SyncStatus.SYNCING
        state.last_sync_attempt = self._clock()

        try:
            cached = self._cache.get(conversation_id)
            known = cached or []
            watermark = (
                max(m.created_at for m in known) if known else state.last_message_timestamp
            )

            response = await self._api.get_messages(
                conversation_id, limit=self._options.batch_size
            )
            if not response.success:
                error = response.error
                raise TransportError(
                    error.message if error else "Failed to fetch messages",
                    error.code if error else None,
                )
            if self._destroyed:
                return

            fetched = response.data or []
            cached_by_id = {m.id: m for m in known}

            conflicts: list[ConflictRecord] = []
            new_messages: list[Message] = []
            forwarded: list[Message] = []
            for server_message in fetched:
                local = cached_by_id.get(server_message.id)
                if local is None:
                    if cached is None or server_message.created_at > watermark:
                        new_messages.append(server_message)
                elif local.text != server_message.text:
                    if (local.id, local.text) in self._pushed:
                        continue
                    conflicts.append(
                        ConflictRecord(
                            conversation_id=conversation_id,
                            local=local,
                            server=server_message,
                            detected_at=self._clock(),
                        )
                    )
                else:
                    # Same content: status and read_at only ever move forward
                    merged = _furthest_status(local, server_message)
                    if merged != local:
                        forwarded.append(merged)

            winners = await self._resolve_conflicts(conversation_id, conflicts)
            if self._destroyed:
                return

            # Re-read: real-time events may have landed during the fetch
            current = self._cache.get(conversation_id) or []
            current_by_id = {m.id: m for m in current}
            incoming = [
                _furthest_status(m, current_by_id[m.id]) if m.id in current_by_id else m
                for m in (*new_messages, *forwarded, *winners)
            ]
            self._cache.set(conversation_id, [*current, *incoming])

            if new_messages:
                state.last_message_timestamp = max(
                    state.last_message_timestamp,
                    max(m.created_at for m in new_messages),
                )

            await self._sync_unread_count(conversation_id)

            has_manual = any(c.conversation_id == conversation_id for c in self._conflicts)
            if self._options.conflict_resolution == "manual" and has_manual:
                state.sync_status = SyncStatus.CONFLICT
            else:
                state.sync_status = SyncStatus.SYNCED

            if not self._sync_in_progress:
                await self._save_sync_state()

            await self.events.emit(
                EventType.CONVERSATION_SYNCED,
                {
                    "conversation_id": conversation_id,
                    "new_messages": len(new_messages),
                    "conflicts": len(conflicts),
                },
            )
        except Exception as e:
            if self._destroyed:
                raise
            state.sync_status = SyncStatus.ERROR
            logger.error("Conversation sync failed for %s: %s", conversation_id, e)
            await self._add_sync_error(
                self._error_type_for(e),
                f"Conversation sync failed: {e}",
                {"conversation_id": conversation_id, "previous_status": previous_status.value},
            )
            raise

    async def force_sync_conversation(self, conversation_id: str) -> None:
        """Sync a conversation even if it was left in the syncing state."""
        state = self._state(conversation_id)
        state.sync_status = SyncStatus.SYNCED
        state.last_sync_attempt = 0
        await self.sync_conversation(conversation_id)

    async def _resolve_conflicts(
        self, conversation_id: str, conflicts: list[ConflictRecord]
    ) -> list[Message]:
        """Apply the conflict policy. Returns the copies that belong in the cache."""
        policy = self._options.conflict_resolution
        pending = {c.message_id: c for c in self._conflicts}
        winners: list[Message] = []

        for conflict in conflicts:
            if policy == "server":
                winners.append(_furthest_status(conflict.server, conflict.local))
                continue

            winners.append(_furthest_status(conflict.local, conflict.server))

            if conflict.message_id in pending:
                # Already awaiting manual resolution: refresh the copies only
                self._record_conflict(
                    replace(conflict, detected_at=pending[conflict.message_id].detected_at)
                )
                continue

            if policy == "client":
                try:
                    await self._push_message(conflict.local)
                except Exception as e:
                    logger.error(
                        "Failed to push conflicted message %s: %s", conflict.message_id, e
                    )
                    self._record_conflict(conflict)
                continue

            self._record_conflict(conflict)
            await self.events.emit(
                EventType.CONFLICT_DETECTED,
                {
                    "conversation_id": conversation_id,
                    "message_id": conflict.message_id,
                    "local": conflict.local,
                    "server": conflict.server,
                },
            )

        return winners

    def _record_conflict(self, conflict: ConflictRecord) -> None:
        self._conflicts = [
            c for c in self._conflicts if c.message_id != conflict.message_id
        ]
        self._conflicts.append(conflict)

    async def _push_message(self, message: Message) -> None:
        response = await self._api.send_message(message.to_draft())
        if not response.success:
            error = response.error
            raise TransportError(
                error.message if error else "Failed to push message to server",
                error.code if error else None,
            )
        self._pushed.add((message.id, message.text))

    async def _sync_unread_count(self, conversation_id: str) -> None:
        try:
            response = await self._api.get_unread_counts()
        except Exception as e:
            logger.warning("Failed to sync read status for %s: %s", conversation_id, e)
            return

        if not response.success or not response.data:
            return
        for count in response.data:
            if count.conversation_id == conversation_id:
                self._state(conversation_id).unread_count = count.unread_count
                return

    # Conflicts

    async def resolve_conflict(self, message_id: str, resolution: Resolution) -> None:
        """Settle a manual conflict.

        ``keep_local`` pushes the local copy to the server; the conflict stays
        recorded if that push fails. ``keep_server`` writes the server copy
        into the cache. Raises ConflictNotFoundError for an unknown id.
        """
        if resolution not in ("keep_local", "keep_server"):
            raise ValueError(f"Unknown resolution: {resolution!r}")

        conflict = next((c for c in self._conflicts if c.message_id == message_id), None)
        if conflict is None:
            raise ConflictNotFoundError(message_id)

        if resolution == "keep_local":
            await self._push_message(conflict.local)
        else:
            self._cache.add_messages(conflict.conversation_id, [conflict.server], overwrite=True)

        self._conflicts.remove(conflict)

        state = self._states.get(conflict.conversation_id)
        remaining = any(c.conversation_id == conflict.conversation_id for c in self._conflicts)
        if state is not None and state.sync_status is SyncStatus.CONFLICT and not remaining:
            state.sync_status = SyncStatus.SYNCED

        await self._save_sync_state()

        await self.events.emit(
            EventType.CONFLICT_RESOLVED,
            {
                "message_id": message_id,
                "conversation_id": conflict.conversation_id,
                "resolution": resolution,
            },
        )

    def get_conflicts(self) -> list[ConflictRecord]:
        return list(self._conflicts)

    # Read state

    async def mark_conversation_as_read(self, conversation_id: str) -> None:
        """Mark a conversation read on the server, then locally."""
        response = await self._api.mark_conversation_as_read(conversation_id)
        if not response.success:
            error = response.error
            raise TransportError(
                error.message if error else "Failed to mark conversation as read",
                error.code if error else None,
            )

        now = self._clock()
        for message in self._cache.get(conversation_id) or []:
            if message.recipient_id == self._user_id and message.status.can_advance_to(
                MessageStatus.READ
            ):
                self._cache.update_message(
                    conversation_id, message.id, status=MessageStatus.READ, read_at=now
                )

        state = self._state(conversation_id)
        state.unread_count = 0
        state.last_read_timestamp = max(state.last_read_timestamp, now)
        await self._save_sync_state()

    # Real-time handlers

    async def _on_realtime_message(self, event: Event) -> None:
        message: Message = event.payload["message"]
        self._cache.add_messages(message.conversation_id, [message])

        state = self._state(message.conversation_id)
        state.last_message_timestamp = max(state.last_message_timestamp, message.created_at)

        await self.events.emit(EventType.MESSAGE_RECEIVED, {"message": message})

    async def _on_delivery_receipt(self, event: Event) -> None:
        payload = event.payload
        try:
            status = MessageStatus(payload["status"])
        except ValueError:
            logger.warning("Ignoring receipt with unknown status %r", payload["status"])
            return

        if status is MessageStatus.FAILED:
            return

        if self._advance_status(payload["conversation_id"], payload["message_id"], status):
            await self.events.emit(
                EventType.MESSAGE_STATUS_UPDATED,
                {
                    "message_id": payload["message_id"],
                    "conversation_id": payload["conversation_id"],
                    "status": status.value,
                },
            )

    async def _on_read_receipt(self, event: Event) -> None:
        payload = event.payload
        conversation_id = payload["conversation_id"]
        timestamp = payload["timestamp"]

        updated = self._advance_status(
            conversation_id, payload["message_id"], MessageStatus.READ, read_at=timestamp
        )

        state = self._state(conversation_id)
        state.last_read_timestamp = max(state.last_read_timestamp, timestamp)

        if updated:
            await self.events.emit(
                EventType.MESSAGE_STATUS_UPDATED,
                {
                    "message_id": payload["message_id"],
                    "conversation_id": conversation_id,
                    "status": MessageStatus.READ.value,
                    "read_at": timestamp,
                },
            )

    def _advance_status(
        self, conversation_id: str, message_id: str, status: MessageStatus, **changes
    ) -> bool:
        """Patch a cached message only if the status moves forward."""
        messages = self._cache.get(conversation_id) or []
        current = next((m for m in messages if m.id == message_id), None)
        if current is None or current.status is MessageStatus.FAILED:
            return False
        if not current.status.can_advance_to(status):
            return False
        return self._cache.update_message(conversation_id, message_id, status=status, **changes)

    async def _on_typing(self, event: Event) -> None:
        await self.events.emit(EventType.TYPING_INDICATOR, dict(event.payload))

    async def _on_realtime_connected(self, event: Event) -> None:
        await self.events.emit(EventType.REALTIME_CONNECTED, {})
        self._spawn(self.sync_all_conversations())

    async def _on_realtime_disconnected(self, event: Event) -> None:
        await self.events.emit(EventType.REALTIME_DISCONNECTED, {})

    # Queue handlers

    async def _on_message_queued(self, event: Event) -> None:
        draft: MessageDraft = event.payload["draft"]
        placeholder = Message(
            id=event.payload["id"],
            conversation_id=draft.conversation_id,
            sender_id=draft.sender_id,
            recipient_id=draft.recipient_id,
            body=draft.body,
            created_at=event.payload["created_at"],
            status=MessageStatus.PENDING,
        )
        self._cache.add_messages(draft.conversation_id, [placeholder])

    async def _on_message_sent(self, event: Event) -> None:
        draft: MessageDraft = event.payload["draft"]
        message: Message = event.payload["message"]

        self._cache.remove_message(draft.conversation_id, event.payload["id"])
        self._cache.add_messages(message.conversation_id, [message], overwrite=True)

        state = self._state(message.conversation_id)
        state.last_message_timestamp = max(state.last_message_timestamp, message.created_at)

    async def _on_message_failed(self, event: Event) -> None:
        draft: MessageDraft = event.payload["draft"]
        error: MessagingError = event.payload["error"]

        self._cache.update_message(
            draft.conversation_id, event.payload["id"], status=MessageStatus.FAILED
        )
        await self._add_sync_error(
            _sync_error_type(error.type),
            f"Queued message failed: {error.message}",
            {
                "queue_id": event.payload["id"],
                "conversation_id": draft.conversation_id,
                "error": error.to_dict(),
            },
        )

    async def _on_message_retry(self, event: Event) -> None:
        draft: MessageDraft = event.payload["draft"]
        self._cache.update_message(
            draft.conversation_id, event.payload["id"], status=MessageStatus.PENDING
        )

    async def _on_connection_changed(self, event: Event) -> None:
        if event.payload["online"] and not event.payload.get("previous_status"):
            self._spawn(self.sync_all_conversations())

    async def _on_processing_started(self, event: Event) -> None:
        await self.events.emit(EventType.QUEUE_PROCESSING_STARTED, dict(event.payload))

    async def _on_processing_completed(self, event: Event) -> None:
        await self.events.emit(EventType.QUEUE_PROCESSING_COMPLETED, dict(event.payload))
        self._spawn(self.sync_all_conversations())

    # State bookkeeping

    def _state(self, conversation_id: str) -> ConversationSyncState:
        state = self._states.get(conversation_id)
        if state is None:
            state = ConversationSyncState(conversation_id=conversation_id)
            self._states[conversation_id] = state
        return state

    def _error_type_for(self, exc: BaseException) -> SyncErrorType:
        code = getattr(exc, "code", None)
        if code is None:
            return _sync_error_type(classify_exception(exc).type)
        return _sync_error_type(classify_code(code))

    async def _add_sync_error(
        self, error_type: SyncErrorType, message: str, data: dict[str, Any] | None = None
    ) -> None:
        now = self._clock()
        error = SyncError(
            id=f"{now}_{uuid.uuid4().hex[:9]}",
            type=error_type,
            message=message,
            timestamp=now,
            data=data,
        )
        self._errors.append(error)
        del self._errors[:-MAX_SYNC_ERRORS]

        await self.events.emit(EventType.SYNC_ERROR, {"error": error})

    def get_sync_errors(self) -> list[SyncError]:
        return list(self._errors)

    def clear_sync_errors(self) -> None:
        self._errors.clear()

    def get_conversation_sync_state(self, conversation_id: str) -> ConversationSyncState | None:
        state = self._states.get(conversation_id)
        return replace(state) if state is not None else None

    def get_sync_stats(self) -> SyncStats:
        states = list(self._states.values())
        return SyncStats(
            total_conversations=len(states),
            synced_conversations=sum(1 for s in states if s.sync_status is SyncStatus.SYNCED),
            syncing_conversations=sum(1 for s in states if s.sync_status is SyncStatus.SYNCING),
            error_conversations=sum(1 for s in states if s.sync_status is SyncStatus.ERROR),
            conflicted_messages=len(self._conflicts),
            last_sync_timestamp=self._last_sync_timestamp,
            sync_in_progress=self._sync_in_progress,
            errors=len(self._errors),
            conversations=list(self._states.keys()),
        )

    # Persistence

    async def _load_sync_state(self) -> None:
        try:
            stored = await self._store.get_item(self._options.storage_key)
            if not stored:
                return

            data = json.loads(stored)
            for item in data.get("conversations") or []:
                state = ConversationSyncState.from_dict(item)
                # A sync interrupted by shutdown never completed
                if state.sync_status is SyncStatus.SYNCING:
                    state.sync_status = SyncStatus.ERROR
                self._states[state.conversation_id] = state

            self._last_sync_timestamp = int(data.get("last_sync_timestamp") or 0)
            self._conflicts = [
                ConflictRecord.from_dict(item) for item in data.get("conflicts") or []
            ]
        except Exception as e:
            logger.error("Failed to load sync state: %s", e, exc_info=True)
            self._states.clear()
            self._conflicts.clear()

    async def _save_sync_state(self) -> None:
        if self._destroyed:
            return

        async with self._save_lock:
            try:
                snapshot = json.dumps(
                    {
                        "conversations": [s.to_dict() for s in self._states.values()],
                        "last_sync_timestamp": self._last_sync_timestamp,
                        "conflicts": [c.to_dict() for c in self._conflicts],
                        "timestamp": self._clock(),
                    }
                )
                await self._store.set_item(self._options.storage_key, snapshot)
            except Exception as e:
                logger.error("Failed to save sync state: %s", e, exc_info=True)
