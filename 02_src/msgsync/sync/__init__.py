"""Sync module: server and real-time reconciliation of the message cache."""

from .sync_manager import MessageSyncManager, SyncOptions

__all__ = ["MessageSyncManager", "SyncOptions"]
