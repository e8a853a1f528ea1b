"""Real-time channel: typed event stream fed by raw push events."""

from typing import Any, Protocol

from ..event_bus import EventBus
from ..logging_config import get_logger
from ..models import EventType, MessageStatus
from .normalize import (
    ConnectionEvent,
    DeliveryReceiptEvent,
    MessageEvent,
    ReadReceiptEvent,
    TypingEvent,
    parse_realtime_event,
)

logger = get_logger(__name__)


class IRealtimeChannel(Protocol):
    """Push stream of message, receipt, typing and connection events."""

    events: EventBus

    @property
    def is_connected(self) -> bool:
        """Whether the channel is currently connected."""
        ...

    async def connect(self) -> None:
        """Open the channel; publishes ``connected``."""
        ...

    async def disconnect(self) -> None:
        """Close the channel; publishes ``disconnected``."""
        ...


class RealtimeChannel:
    """In-process real-time channel.

    Whatever carries the push stream (socket, webhook, test) hands raw
    ``{"type": ..., "payload": ...}`` dicts to :meth:`push`; they are parsed
    at this boundary and republished as typed events on ``events``.
    """

    def __init__(self) -> None:
        self.events = EventBus("realtime_channel")
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        await self._set_connected(True)

    async def disconnect(self) -> None:
        await self._set_connected(False)

    async def _set_connected(self, connected: bool) -> None:
        if connected == self._connected:
            return
        self._connected = connected
        logger.info("Realtime channel %s", "connected" if connected else "disconnected")
        await self.events.emit(
            EventType.CONNECTED if connected else EventType.DISCONNECTED, {}
        )

    async def push(self, raw: Any) -> EventType:
        """Parse and publish one raw event. Raises InvalidRealtimeEventError."""
        event = parse_realtime_event(raw)

        if isinstance(event, MessageEvent):
            message = event.payload.to_message(default_status=MessageStatus.DELIVERED)
            await self.events.emit(EventType.REALTIME_MESSAGE, {"message": message})
            return EventType.REALTIME_MESSAGE

        if isinstance(event, DeliveryReceiptEvent):
            await self.events.emit(
                EventType.DELIVERY_RECEIPT,
                {
                    "message_id": event.payload.message_id,
                    "conversation_id": event.payload.conversation_id,
                    "status": event.payload.status,
                },
            )
            return EventType.DELIVERY_RECEIPT

        if isinstance(event, ReadReceiptEvent):
            await self.events.emit(
                EventType.READ_RECEIPT,
                {
                    "message_id": event.payload.message_id,
                    "conversation_id": event.payload.conversation_id,
                    "timestamp": int(event.payload.timestamp),
                },
            )
            return EventType.READ_RECEIPT

        if isinstance(event, TypingEvent):
            await self.events.emit(
                EventType.TYPING,
                {
                    "conversation_id": event.payload.conversation_id,
                    "user_id": event.payload.user_id,
                    "action": event.payload.action,
                },
            )
            return EventType.TYPING

        assert isinstance(event, ConnectionEvent)
        await self._set_connected(event.payload.connected)
        return EventType.CONNECTED if event.payload.connected else EventType.DISCONNECTED
