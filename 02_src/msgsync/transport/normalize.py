"""Boundary parsers: loose backend JSON in, canonical models out.

The backend and the real-time stream have shipped several payload shapes
over time (``_id`` vs ``id``, ``content`` vs ``text``, ``timestamp`` vs
``createdAt``, ``fromUserId`` vs ``senderId``). Every one of them is
accepted here and nothing untyped is passed further in.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from ..errors import InvalidRealtimeEventError
from ..models import (
    Conversation,
    ImageBody,
    Message,
    MessageBody,
    MessageStatus,
    TextBody,
    UnreadCount,
    VoiceBody,
)


class _WireModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class WireMessage(_WireModel):
    """A message as the backend or the real-time stream sends it."""

    id: str = Field(validation_alias=AliasChoices("_id", "id", "messageId"))
    conversation_id: str = Field(
        validation_alias=AliasChoices("conversationId", "conversation_id")
    )
    sender_id: str = Field(
        default="",
        validation_alias=AliasChoices("fromUserId", "senderId", "sender_id"),
    )
    recipient_id: str = Field(
        default="",
        validation_alias=AliasChoices("toUserId", "recipientId", "recipient_id"),
    )
    text: str | None = Field(default=None, validation_alias=AliasChoices("text", "content"))
    type: Literal["text", "voice", "image"] = "text"
    created_at: float = Field(
        default=0,
        validation_alias=AliasChoices(
            "createdAt", "created_at", "timestamp", "_creationTime"
        ),
    )
    status: MessageStatus | None = None
    read_at: float | None = Field(default=None, validation_alias=AliasChoices("readAt", "read_at"))

    # Voice
    audio_storage_id: str | None = Field(
        default=None, validation_alias=AliasChoices("audioStorageId", "voiceUrl")
    )
    duration: float | None = Field(
        default=None, validation_alias=AliasChoices("duration", "voiceDuration")
    )
    waveform: list[float] | None = Field(
        default=None, validation_alias=AliasChoices("voiceWaveform", "waveform")
    )

    # Image / file
    storage_id: str | None = Field(default=None, validation_alias=AliasChoices("storageId"))
    file_url: str | None = Field(default=None, validation_alias=AliasChoices("fileUrl", "imageUrl"))
    file_size: int | None = Field(default=None, validation_alias=AliasChoices("fileSize"))
    mime_type: str | None = Field(default=None, validation_alias=AliasChoices("mimeType"))

    def body(self) -> MessageBody:
        text = self.text or ""
        if self.type == "voice":
            return VoiceBody(
                audio_storage_id=self.audio_storage_id or "",
                duration=self.duration or 0,
                waveform=tuple(self.waveform or ()),
                text=text,
            )
        if self.type == "image":
            return ImageBody(
                storage_id=self.storage_id,
                file_url=self.file_url,
                file_size=self.file_size,
                mime_type=self.mime_type,
                text=text,
            )
        return TextBody(text=text)

    def to_message(self, default_status: MessageStatus = MessageStatus.SENT) -> Message:
        return Message(
            id=self.id,
            conversation_id=self.conversation_id,
            sender_id=self.sender_id,
            recipient_id=self.recipient_id,
            body=self.body(),
            created_at=int(self.created_at),
            status=self.status or default_status,
            read_at=int(self.read_at) if self.read_at is not None else None,
        )


class WireConversation(_WireModel):
    id: str = Field(validation_alias=AliasChoices("conversationId", "_id", "id"))
    participant_ids: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("participantIds", "participants", "participant_ids"),
    )
    last_message_at: float | None = Field(
        default=None, validation_alias=AliasChoices("lastMessageAt", "last_message_at")
    )


class WireUnreadCount(_WireModel):
    conversation_id: str = Field(
        validation_alias=AliasChoices("conversationId", "conversation_id")
    )
    unread_count: int = Field(
        default=0, validation_alias=AliasChoices("unreadCount", "unread_count", "count")
    )


# Real-time events: tagged on "type"


class DeliveryReceiptPayload(_WireModel):
    message_id: str = Field(validation_alias=AliasChoices("messageId", "message_id"))
    conversation_id: str = Field(
        validation_alias=AliasChoices("conversationId", "conversation_id")
    )
    status: MessageStatus = MessageStatus.DELIVERED


class ReadReceiptPayload(_WireModel):
    message_id: str = Field(validation_alias=AliasChoices("messageId", "message_id"))
    conversation_id: str = Field(
        validation_alias=AliasChoices("conversationId", "conversation_id")
    )
    timestamp: float = Field(validation_alias=AliasChoices("timestamp", "readAt", "read_at"))


class TypingPayload(_WireModel):
    conversation_id: str = Field(
        validation_alias=AliasChoices("conversationId", "conversation_id")
    )
    user_id: str = Field(default="", validation_alias=AliasChoices("userId", "user_id"))
    action: Literal["start", "stop"] = "start"


class ConnectionPayload(_WireModel):
    connected: bool


class MessageEvent(_WireModel):
    type: Literal["message"]
    payload: WireMessage


class DeliveryReceiptEvent(_WireModel):
    type: Literal["delivery_receipt"]
    payload: DeliveryReceiptPayload


class ReadReceiptEvent(_WireModel):
    type: Literal["read_receipt"]
    payload: ReadReceiptPayload


class TypingEvent(_WireModel):
    type: Literal["typing"]
    payload: TypingPayload


class ConnectionEvent(_WireModel):
    type: Literal["connection"]
    payload: ConnectionPayload


RealtimeEvent = Annotated[
    Union[MessageEvent, DeliveryReceiptEvent, ReadReceiptEvent, TypingEvent, ConnectionEvent],
    Field(discriminator="type"),
]

_realtime_adapter: TypeAdapter[RealtimeEvent] = TypeAdapter(RealtimeEvent)


def parse_message(raw: Any, default_status: MessageStatus = MessageStatus.SENT) -> Message:
    """Parse one backend message. Raises pydantic.ValidationError."""
    return WireMessage.model_validate(raw).to_message(default_status)


def parse_conversation(raw: Any) -> Conversation:
    """Parse one backend conversation. Raises pydantic.ValidationError."""
    wire = WireConversation.model_validate(raw)
    return Conversation(
        id=wire.id,
        participant_ids=wire.participant_ids,
        last_message_at=int(wire.last_message_at) if wire.last_message_at else None,
    )


def parse_unread_count(raw: Any) -> UnreadCount:
    """Parse one unread counter. Raises pydantic.ValidationError."""
    wire = WireUnreadCount.model_validate(raw)
    return UnreadCount(conversation_id=wire.conversation_id, unread_count=wire.unread_count)


def unwrap_list(payload: Any, *keys: str) -> list:
    """Pull a list out of a payload that may be a bare list or a wrapper dict."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in keys:
            value = payload.get(key)
            if isinstance(value, list):
                return value
            if isinstance(value, dict):
                nested = unwrap_list(value, *keys)
                if nested:
                    return nested
    return []


def parse_realtime_event(raw: Any) -> RealtimeEvent:
    """Parse a raw ``{type, payload}`` dict into a typed real-time event."""
    try:
        return _realtime_adapter.validate_python(raw)
    except ValidationError as e:
        event_type = raw.get("type") if isinstance(raw, dict) else None
        raise InvalidRealtimeEventError(
            f"Invalid real-time event {event_type!r}: {e.error_count()} validation error(s)"
        ) from e
