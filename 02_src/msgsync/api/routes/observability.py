"""Observability API routes."""

from dataclasses import asdict
from typing import Any

from pydantic import BaseModel
from fastapi import APIRouter

from ...app import IApplication


class QueueStatsResponse(BaseModel):
    """Response model for queue statistics."""

    total_queued: int
    pending: int
    failed: int
    processing: int
    last_processed: int
    success_rate: float


class SyncStatsResponse(BaseModel):
    """Response model for sync statistics."""

    total_conversations: int
    synced_conversations: int
    syncing_conversations: int
    error_conversations: int
    conflicted_messages: int
    last_sync_timestamp: int
    sync_in_progress: bool
    errors: int
    conversations: list[str]


class SyncErrorResponse(BaseModel):
    """Response model for a recorded sync error."""

    id: str
    type: str
    message: str
    timestamp: int
    retry_count: int
    data: dict[str, Any] | None = None


class CacheStatsResponse(BaseModel):
    """Response model for cache statistics."""

    size: int
    max_size: int
    total_messages: int
    conversations: list[str]
    average_access_count: float


def create_observability_router(app: IApplication) -> APIRouter:
    """Create observability router."""
    router = APIRouter(prefix="/api", tags=["observability"])

    @router.get("/queue/stats", response_model=QueueStatsResponse)
    async def get_queue_stats() -> dict:
        return asdict(app.queue.get_stats())

    @router.get("/queue/messages")
    async def get_queued_messages() -> list[dict]:
        """Pending entries with their retry metadata."""
        return [entry.to_dict() for entry in app.queue.get_queued_messages()]

    @router.get("/queue/failed")
    async def get_failed_messages() -> list[dict]:
        """Entries that exhausted their attempts or failed permanently."""
        return [entry.to_dict() for entry in app.queue.get_failed_messages()]

    @router.get("/sync/stats", response_model=SyncStatsResponse)
    async def get_sync_stats() -> dict:
        return asdict(app.sync_manager.get_sync_stats())

    @router.get("/sync/errors", response_model=list[SyncErrorResponse])
    async def get_sync_errors() -> list[dict]:
        return [
            {**asdict(error), "type": error.type.value}
            for error in app.sync_manager.get_sync_errors()
        ]

    @router.get("/sync/conflicts")
    async def get_conflicts() -> list[dict]:
        """Unresolved manual conflicts, local and server copies side by side."""
        return [conflict.to_dict() for conflict in app.sync_manager.get_conflicts()]

    @router.get("/cache/stats", response_model=CacheStatsResponse)
    async def get_cache_stats() -> dict:
        return app.cache.get_stats()

    return router
