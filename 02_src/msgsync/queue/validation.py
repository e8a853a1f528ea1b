"""Draft validation applied before a message is queued."""

from ..errors import MessageValidationError
from ..models import ImageBody, MessageDraft, TextBody, VoiceBody

MAX_TEXT_LENGTH = 1000
MAX_VOICE_DURATION = 300  # seconds
MAX_IMAGE_SIZE = 10 * 1024 * 1024  # 10 MB


def validate_draft(draft: MessageDraft) -> None:
    """Raise MessageValidationError if the draft cannot be sent."""
    for name in ("conversation_id", "sender_id", "recipient_id"):
        if not str(getattr(draft, name) or "").strip():
            raise MessageValidationError(f"{name} is required")

    body = draft.body
    if isinstance(body, TextBody):
        if not body.text or not body.text.strip():
            raise MessageValidationError("Message cannot be empty")
        if len(body.text) > MAX_TEXT_LENGTH:
            raise MessageValidationError(
                f"Message too long (max {MAX_TEXT_LENGTH} characters)"
            )
    elif isinstance(body, VoiceBody):
        if not body.audio_storage_id:
            raise MessageValidationError("Voice message requires audio storage ID")
        if body.duration <= 0:
            raise MessageValidationError("Voice message requires valid duration")
        if body.duration > MAX_VOICE_DURATION:
            raise MessageValidationError("Voice message too long (max 5 minutes)")
    elif isinstance(body, ImageBody):
        if not body.storage_id and not body.file_url:
            raise MessageValidationError("Image message requires a storage ID or URL")
        if body.file_size is not None and body.file_size > MAX_IMAGE_SIZE:
            raise MessageValidationError("Image file too large (max 10MB)")
    else:
        raise MessageValidationError(f"Unsupported message body: {type(body).__name__}")
