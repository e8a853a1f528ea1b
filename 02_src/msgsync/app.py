"""Application bootstrap and lifecycle management."""

import asyncio
from typing import Protocol

from .cache import MessageCache
from .clock import Clock, now_ms
from .config import Settings
from .logging_config import get_logger
from .queue import OfflineMessageQueue, QueueOptions
from .storage import IPersistentStore, Storage
from .sync import MessageSyncManager, SyncOptions
from .transport import HttpMessagingAPI, IMessagingAPI, RealtimeChannel

logger = get_logger(__name__)


class IApplication(Protocol):
    """Bootstrap and lifecycle."""

    async def start(self) -> None:
        """Initialize components in dependency order."""
        ...

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        ...

    async def reset(self) -> None:
        """Drop every queued message, cached message and sync record."""
        ...

    async def set_online(self, online: bool) -> None:
        """Propagate connectivity to the queue and the real-time channel."""
        ...

    @property
    def cache(self) -> MessageCache: ...

    @property
    def queue(self) -> OfflineMessageQueue: ...

    @property
    def realtime(self) -> RealtimeChannel: ...

    @property
    def sync_manager(self) -> MessageSyncManager: ...


class Application:
    """Main application bootstrap.

    ``api`` and ``store`` may be injected (tests, embedding); otherwise an
    HttpMessagingAPI and an SQLite Storage are built from settings and owned
    by the application.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        api: IMessagingAPI | None = None,
        store: IPersistentStore | None = None,
        clock: Clock = now_ms,
    ):
        self._settings = settings or Settings.from_env()
        self._clock = clock
        self._injected_api = api
        self._injected_store = store

        # Components (will be initialized in start())
        self._storage: Storage | None = None
        self._store: IPersistentStore | None = None
        self._api: IMessagingAPI | None = None
        self._cache: MessageCache | None = None
        self._queue: OfflineMessageQueue | None = None
        self._realtime: RealtimeChannel | None = None
        self._sync: MessageSyncManager | None = None

    async def start(self) -> None:
        """Initialize components in dependency order."""
        logger.info("Starting application")
        settings = self._settings

        # 1. Storage (no dependencies)
        if self._injected_store is not None:
            self._store = self._injected_store
        else:
            self._storage = Storage(settings.database_url)
            await self._storage.init()
            self._store = self._storage
        logger.info("Storage initialized")

        # 2. MessageCache (no dependencies)
        self._cache = MessageCache(
            max_conversations=settings.cache_max_conversations,
            max_messages_per_conversation=settings.cache_max_messages,
            max_age=settings.cache_max_age_ms,
            cleanup_interval=settings.cache_cleanup_interval_ms,
            clock=self._clock,
        )
        self._cache.start()

        # 3. Messaging transport
        self._api = self._injected_api or HttpMessagingAPI(
            base_url=settings.messaging_api_url,
            token=settings.messaging_api_token,
            timeout=settings.messaging_api_timeout,
        )

        # 4. Real-time channel
        self._realtime = RealtimeChannel()

        # 5. OfflineMessageQueue and MessageSyncManager (depend on all of the above)
        await self._start_core()
        logger.info("All components initialized successfully")

    async def _start_core(self) -> None:
        settings = self._settings

        self._queue = OfflineMessageQueue(
            self._api,
            self._store,
            QueueOptions(
                max_retries=settings.queue_max_retries,
                base_retry_delay=settings.queue_base_retry_delay_ms,
                max_retry_delay=settings.queue_max_retry_delay_ms,
                batch_size=settings.queue_batch_size,
            ),
            clock=self._clock,
        )
        await self._queue.initialize()

        self._sync = MessageSyncManager(
            self._api,
            self._cache,
            self._store,
            SyncOptions(
                batch_size=settings.sync_batch_size,
                conflict_resolution=settings.sync_conflict_resolution,
                sync_interval=settings.sync_interval_ms,
            ),
            clock=self._clock,
        )
        await self._sync.initialize(settings.sync_user_id, self._realtime, self._queue)

    async def _stop_core(self) -> None:
        if self._sync:
            self._sync.destroy()
        if self._queue:
            self._queue.destroy()
        # Let in-flight sends and syncs settle before their collaborators close
        await asyncio.gather(
            *(c.wait_until_idle() for c in (self._sync, self._queue) if c is not None)
        )

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        await self._stop_core()
        if self._realtime:
            await self._realtime.disconnect()
        if self._api is not None and self._injected_api is None:
            await self._api.close()
        if self._cache:
            self._cache.destroy()
        if self._storage:
            await self._storage.close()
            logger.info("Storage closed")

    async def reset(self) -> None:
        """Drop every queued message, cached message and sync record."""
        # 1. Pause active processes
        await self._stop_core()

        # 2. Clear persisted state and memory
        if self._store is not None:
            for key in (QueueOptions.storage_key, SyncOptions.storage_key):
                await self._store.remove_item(key)
        if self._cache:
            self._cache.clear()
        logger.info("Storage cleared")

        # 3. Restart queue and sync manager from empty state
        await self._start_core()
        if self._realtime and self._realtime.is_connected:
            await self._queue.set_online_status(True)
        logger.info("Reset complete")

    async def set_online(self, online: bool) -> None:
        """Propagate connectivity to the queue and the real-time channel."""
        await self.queue.set_online_status(online)
        if online:
            await self.realtime.connect()
        else:
            await self.realtime.disconnect()

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def store(self) -> IPersistentStore:
        """Get persistent store instance."""
        if not self._store:
            raise RuntimeError("Application not started")
        return self._store

    @property
    def cache(self) -> MessageCache:
        """Get message cache instance."""
        if not self._cache:
            raise RuntimeError("Application not started")
        return self._cache

    @property
    def queue(self) -> OfflineMessageQueue:
        """Get offline queue instance."""
        if not self._queue:
            raise RuntimeError("Application not started")
        return self._queue

    @property
    def realtime(self) -> RealtimeChannel:
        """Get real-time channel instance."""
        if not self._realtime:
            raise RuntimeError("Application not started")
        return self._realtime

    @property
    def sync_manager(self) -> MessageSyncManager:
        """Get sync manager instance."""
        if not self._sync:
            raise RuntimeError("Application not started")
        return self._sync
