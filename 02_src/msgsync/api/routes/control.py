"""Control API routes."""

from dataclasses import asdict
from typing import Literal

from pydantic import BaseModel
from fastapi import APIRouter, HTTPException

from ...app import IApplication
from ...errors import ConflictNotFoundError


class StatusResponse(BaseModel):
    """Response model for status."""

    status: str


class OnlineRequest(BaseModel):
    """Request model for toggling connectivity."""

    online: bool


class ClearedResponse(BaseModel):
    """Response model for clearing failed messages."""

    cleared: int


class ResolveConflictRequest(BaseModel):
    """Request model for resolving a manual conflict."""

    resolution: Literal["keep_local", "keep_server"]


def create_control_router(app: IApplication) -> APIRouter:
    """Create control router."""
    router = APIRouter(prefix="/api", tags=["control"])

    @router.post("/control/online", response_model=StatusResponse)
    async def set_online(request: OnlineRequest) -> dict:
        """Switch the core online or offline."""
        try:
            await app.set_online(request.online)
            return {"status": "online" if request.online else "offline"}
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @router.post("/control/reset", response_model=StatusResponse)
    async def reset_system() -> dict:
        """Drop queued, cached and sync data."""
        try:
            await app.reset()
            return {"status": "ok"}
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @router.post("/queue/{queue_id}/retry", response_model=StatusResponse)
    async def retry_message(queue_id: str) -> dict:
        """Reset a queued or failed message for immediate redelivery."""
        if not await app.queue.retry_message(queue_id):
            raise HTTPException(status_code=404, detail=f"Queued message not found: {queue_id}")
        return {"status": "ok"}

    @router.delete("/queue/failed", response_model=ClearedResponse)
    async def clear_failed() -> dict:
        return {"cleared": await app.queue.clear_failed_messages()}

    @router.post("/sync")
    async def sync_all() -> dict:
        """Run a full sync and return the resulting stats."""
        try:
            await app.sync_manager.sync_all_conversations()
            return asdict(app.sync_manager.get_sync_stats())
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @router.post("/sync/{conversation_id}", response_model=StatusResponse)
    async def sync_conversation(conversation_id: str) -> dict:
        try:
            await app.sync_manager.force_sync_conversation(conversation_id)
            return {"status": "ok"}
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @router.post("/sync/conflicts/{message_id}", response_model=StatusResponse)
    async def resolve_conflict(message_id: str, request: ResolveConflictRequest) -> dict:
        try:
            await app.sync_manager.resolve_conflict(message_id, request.resolution)
            return {"status": "ok"}
        except ConflictNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    return router
