"""MessagingAPI implementation over HTTP (httpx)."""

from typing import Any, Callable, Literal, TypeVar

import httpx
from pydantic import ValidationError

from ..errors import TransportError
from ..logging_config import get_logger
from ..models import Conversation, Message, MessageDraft, UnreadCount, VoiceBody, ImageBody
from .api import ApiResponse
from .normalize import parse_conversation, parse_message, parse_unread_count, unwrap_list

logger = get_logger(__name__)

T = TypeVar("T")


def draft_to_wire(draft: MessageDraft) -> dict[str, Any]:
    """Serialize a draft into the backend's send payload."""
    body = draft.body
    payload: dict[str, Any] = {
        "conversationId": draft.conversation_id,
        "fromUserId": draft.sender_id,
        "toUserId": draft.recipient_id,
        "type": body.kind,
    }
    if body.text:
        payload["text"] = body.text
    if isinstance(body, VoiceBody):
        payload["audioStorageId"] = body.audio_storage_id
        payload["duration"] = body.duration
        if body.waveform:
            payload["voiceWaveform"] = list(body.waveform)
    elif isinstance(body, ImageBody):
        for key, value in (
            ("storageId", body.storage_id),
            ("fileUrl", body.file_url),
            ("fileSize", body.file_size),
            ("mimeType", body.mime_type),
        ):
            if value is not None:
                payload[key] = value
    return payload


class HttpMessagingAPI:
    """Messaging backend client speaking the ``{success, data, error}`` envelope."""

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = client or httpx.AsyncClient(
            base_url=base_url, headers=headers, timeout=timeout
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> ApiResponse[Any]:
        """Perform a request and unwrap the envelope.

        Connection errors and timeouts propagate as httpx exceptions.
        """
        response = await self._client.request(method, path, **kwargs)

        try:
            body = response.json() if response.content else None
        except ValueError:
            body = None

        error = body.get("error") if isinstance(body, dict) else None
        if response.is_error:
            if isinstance(error, dict):
                return ApiResponse.fail(
                    error.get("message") or response.reason_phrase,
                    code=error.get("code") or response.status_code,
                )
            return ApiResponse.fail(
                f"HTTP {response.status_code}: {response.reason_phrase}",
                code=response.status_code,
            )

        if body is None:
            if response.content:
                raise TransportError(
                    f"Undecodable response from {method} {path}",
                    code=response.status_code,
                )
            return ApiResponse.ok(None)

        if isinstance(body, dict) and "success" in body:
            if not body["success"]:
                error = error if isinstance(error, dict) else {}
                return ApiResponse.fail(
                    error.get("message") or "Unknown API error",
                    code=error.get("code"),
                )
            return ApiResponse.ok(body.get("data"))

        return ApiResponse.ok(body)

    def _parse_list(
        self, response: ApiResponse[Any], parse: Callable[[Any], T], *keys: str
    ) -> ApiResponse[list[T]]:
        if not response.success:
            return ApiResponse(success=False, error=response.error)

        items = []
        for raw in unwrap_list(response.data, *keys):
            try:
                items.append(parse(raw))
            except ValidationError as e:
                logger.warning("Skipping malformed item: %s", e)
        return ApiResponse.ok(items)

    async def send_message(self, draft: MessageDraft) -> ApiResponse[Message]:
        response = await self._request("POST", "/messages", json=draft_to_wire(draft))
        if not response.success:
            return ApiResponse(success=False, error=response.error)

        try:
            return ApiResponse.ok(parse_message(response.data))
        except ValidationError as e:
            return ApiResponse.fail(f"Malformed message in send response: {e}")

    async def get_messages(
        self,
        conversation_id: str,
        limit: int | None = None,
        before: int | None = None,
        after: int | None = None,
    ) -> ApiResponse[list[Message]]:
        params = {
            key: value
            for key, value in (("limit", limit), ("before", before), ("after", after))
            if value is not None
        }
        response = await self._request(
            "GET", f"/conversations/{conversation_id}/messages", params=params
        )
        return self._parse_list(response, parse_message, "messages", "items", "data")

    async def get_conversations(self) -> ApiResponse[list[Conversation]]:
        response = await self._request("GET", "/conversations")
        return self._parse_list(
            response, parse_conversation, "conversations", "data", "items", "results"
        )

    async def mark_conversation_as_read(self, conversation_id: str) -> ApiResponse[None]:
        return await self._request("POST", f"/conversations/{conversation_id}/read")

    async def send_typing_indicator(
        self, conversation_id: str, action: Literal["start", "stop"]
    ) -> ApiResponse[None]:
        return await self._request(
            "POST", f"/conversations/{conversation_id}/typing", json={"action": action}
        )

    async def send_delivery_receipt(self, message_id: str, status: str) -> ApiResponse[None]:
        return await self._request(
            "POST", f"/messages/{message_id}/receipts", json={"status": status}
        )

    async def get_unread_counts(self) -> ApiResponse[list[UnreadCount]]:
        response = await self._request("GET", "/unread-counts")
        return self._parse_list(response, parse_unread_count, "counts", "data", "items")
