"""Messaging API routes."""

from typing import Any, Literal

from pydantic import BaseModel
from fastapi import APIRouter, HTTPException, Query

from ...app import IApplication
from ...errors import InvalidRealtimeEventError, MessageValidationError
from ...models import ImageBody, MessageBody, MessageDraft, TextBody, VoiceBody


class MessageRequest(BaseModel):
    """Request model for sending a message."""

    conversation_id: str
    sender_id: str
    recipient_id: str
    type: Literal["text", "voice", "image"] = "text"
    text: str = ""
    priority: Literal["high", "normal", "low"] = "normal"

    # voice
    audio_storage_id: str | None = None
    duration: float | None = None
    waveform: list[float] | None = None

    # image
    storage_id: str | None = None
    file_url: str | None = None
    file_size: int | None = None
    mime_type: str | None = None

    def body(self) -> MessageBody:
        if self.type == "voice":
            return VoiceBody(
                audio_storage_id=self.audio_storage_id or "",
                duration=self.duration or 0,
                waveform=tuple(self.waveform or ()),
                text=self.text,
            )
        if self.type == "image":
            return ImageBody(
                storage_id=self.storage_id,
                file_url=self.file_url,
                file_size=self.file_size,
                mime_type=self.mime_type,
                text=self.text,
            )
        return TextBody(text=self.text)


class QueuedResponse(BaseModel):
    """Response model for an enqueued message."""

    queue_id: str
    status: str


class MessageResponse(BaseModel):
    """Response model for a cached message."""

    id: str
    conversation_id: str
    sender_id: str
    recipient_id: str
    body: dict[str, Any]
    created_at: int
    status: str
    read_at: int | None = None


class StatusResponse(BaseModel):
    """Response model for status."""

    status: str


class RealtimeEventResponse(BaseModel):
    """Response model for a pushed real-time event."""

    status: str
    event_type: str


def create_messaging_router(app: IApplication) -> APIRouter:
    """Create messaging router."""
    router = APIRouter(prefix="/api", tags=["messaging"])

    @router.post("/messages", response_model=QueuedResponse, status_code=202)
    async def send_message(request: MessageRequest) -> dict:
        """Queue a message for delivery."""
        draft = MessageDraft(
            conversation_id=request.conversation_id,
            sender_id=request.sender_id,
            recipient_id=request.recipient_id,
            body=request.body(),
        )
        try:
            queue_id = await app.queue.enqueue(draft, request.priority)
            return {"queue_id": queue_id, "status": "queued"}
        except MessageValidationError as e:
            raise HTTPException(status_code=422, detail=str(e))
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @router.get(
        "/conversations/{conversation_id}/messages",
        response_model=list[MessageResponse],
    )
    async def get_messages(
        conversation_id: str,
        limit: int | None = Query(None, ge=1, le=1000),
        q: str | None = Query(None, description="Case-insensitive text search"),
    ) -> list[dict]:
        """Get cached messages of a conversation, oldest first."""
        if q:
            messages = app.cache.search_messages(conversation_id, q)
        elif limit:
            messages = app.cache.get_recent(conversation_id, limit)
        else:
            messages = app.cache.get(conversation_id)

        if messages is None:
            raise HTTPException(status_code=404, detail="Conversation not cached")
        return [m.to_dict() for m in messages]

    @router.post("/conversations/{conversation_id}/read", response_model=StatusResponse)
    async def mark_read(conversation_id: str) -> dict:
        """Mark a conversation as read."""
        try:
            await app.sync_manager.mark_conversation_as_read(conversation_id)
            return {"status": "ok"}
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @router.post("/realtime/events", response_model=RealtimeEventResponse)
    async def push_realtime_event(event: dict[str, Any]) -> dict:
        """Feed one raw real-time event into the channel."""
        try:
            event_type = await app.realtime.push(event)
            return {"status": "ok", "event_type": event_type.value}
        except InvalidRealtimeEventError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    return router
