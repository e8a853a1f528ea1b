"""Message-related data models."""

from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Literal, Union


class MessageStatus(str, Enum):
    """Delivery status of a message. Moves forward only, or to FAILED."""

    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    def can_advance_to(self, new: "MessageStatus") -> bool:
        """Whether a transition from this status to ``new`` is allowed."""
        if new is MessageStatus.FAILED:
            return self is not MessageStatus.FAILED
        if self is MessageStatus.FAILED:
            # Only an explicit retry brings a failed message back
            return new is MessageStatus.PENDING
        return new.rank > self.rank


_STATUS_RANK = {
    MessageStatus.PENDING: 0,
    MessageStatus.SENT: 1,
    MessageStatus.DELIVERED: 2,
    MessageStatus.READ: 3,
    MessageStatus.FAILED: -1,
}


@dataclass(frozen=True)
class TextBody:
    """Plain text payload."""

    text: str
    kind: Literal["text"] = "text"


@dataclass(frozen=True)
class VoiceBody:
    """Voice note metadata. Audio bytes live in external storage."""

    audio_storage_id: str
    duration: float  # seconds
    waveform: tuple[float, ...] = ()
    text: str = ""
    kind: Literal["voice"] = "voice"


@dataclass(frozen=True)
class ImageBody:
    """Image metadata. Image bytes live in external storage."""

    storage_id: str | None = None
    file_url: str | None = None
    file_size: int | None = None
    mime_type: str | None = None
    text: str = ""
    kind: Literal["image"] = "image"


MessageBody = Union[TextBody, VoiceBody, ImageBody]


def body_to_dict(body: MessageBody) -> dict:
    data = asdict(body)
    if isinstance(body, VoiceBody):
        data["waveform"] = list(body.waveform)
    return data


def body_from_dict(data: dict) -> MessageBody:
    kind = data.get("kind", "text")
    fields = {k: v for k, v in data.items() if k != "kind"}
    if kind == "voice":
        fields["waveform"] = tuple(fields.get("waveform") or ())
        return VoiceBody(**fields)
    if kind == "image":
        return ImageBody(**fields)
    return TextBody(text=fields.get("text", ""))


@dataclass
class MessageDraft:
    """An outbound message before the server has assigned it an id."""

    conversation_id: str
    sender_id: str
    recipient_id: str
    body: MessageBody

    @property
    def text(self) -> str:
        return self.body.text

    def to_dict(self) -> dict:
        return {
            "conversation_id": self.conversation_id,
            "sender_id": self.sender_id,
            "recipient_id": self.recipient_id,
            "body": body_to_dict(self.body),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MessageDraft":
        return cls(
            conversation_id=data["conversation_id"],
            sender_id=data["sender_id"],
            recipient_id=data["recipient_id"],
            body=body_from_dict(data.get("body") or {}),
        )


@dataclass(frozen=True)
class Message:
    """A single message in a conversation."""

    id: str
    conversation_id: str
    sender_id: str
    recipient_id: str
    body: MessageBody
    created_at: int  # epoch ms, logical send time
    status: MessageStatus = MessageStatus.SENT
    read_at: int | None = None

    @property
    def text(self) -> str:
        return self.body.text

    def with_changes(self, **changes) -> "Message":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

    def to_draft(self) -> MessageDraft:
        return MessageDraft(
            conversation_id=self.conversation_id,
            sender_id=self.sender_id,
            recipient_id=self.recipient_id,
            body=self.body,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "sender_id": self.sender_id,
            "recipient_id": self.recipient_id,
            "body": body_to_dict(self.body),
            "created_at": self.created_at,
            "status": self.status.value,
            "read_at": self.read_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        return cls(
            id=data["id"],
            conversation_id=data["conversation_id"],
            sender_id=data["sender_id"],
            recipient_id=data["recipient_id"],
            body=body_from_dict(data.get("body") or {}),
            created_at=int(data.get("created_at") or 0),
            status=MessageStatus(data.get("status", MessageStatus.SENT.value)),
            read_at=data.get("read_at"),
        )


@dataclass
class Conversation:
    """A conversation as listed by the backend."""

    id: str
    participant_ids: list[str] = field(default_factory=list)
    last_message_at: int | None = None


@dataclass
class UnreadCount:
    """Server-side unread counter for one conversation."""

    conversation_id: str
    unread_count: int
