"""EventBus implementation: a typed observer registry."""

import asyncio
from typing import Any, Awaitable, Callable, Protocol

from ..logging_config import get_logger
from ..models import Event, EventType

logger = get_logger(__name__)


EventHandler = Callable[[Event], Awaitable[None]]


class IEventBus(Protocol):
    """In-memory pub/sub for exchanging Events."""

    def subscribe(self, event_type: EventType, handler: EventHandler) -> None:
        """Subscribe a handler to an event type."""
        ...

    def unsubscribe(self, event_type: EventType, handler: EventHandler) -> None:
        """Remove a previously subscribed handler."""
        ...

    async def publish(self, event: Event) -> None:
        """Publish an Event to every subscriber of its type."""
        ...

    async def emit(self, event_type: EventType, payload: dict[str, Any]) -> None:
        """Build an Event from this bus's source and publish it."""
        ...

    def clear(self) -> None:
        """Detach every handler."""
        ...


class EventBus:
    """In-memory pub/sub event bus owned by one component."""

    def __init__(self, source: str):
        self._source = source
        self._subscribers: dict[EventType, list[EventHandler]] = {}

    @property
    def source(self) -> str:
        return self._source

    def subscribe(self, event_type: EventType, handler: EventHandler) -> None:
        """Subscribe a handler to an event type."""
        self._subscribers.setdefault(event_type, []).append(handler)

    def unsubscribe(self, event_type: EventType, handler: EventHandler) -> None:
        """Remove a previously subscribed handler (no-op if absent)."""
        handlers = self._subscribers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def handler_count(self, event_type: EventType | None = None) -> int:
        """Number of handlers for one type, or across all types."""
        if event_type is not None:
            return len(self._subscribers.get(event_type, []))
        return sum(len(h) for h in self._subscribers.values())

    async def publish(self, event: Event) -> None:
        """Publish Event: calls subscriber callbacks concurrently."""
        handlers = list(self._subscribers.get(event.type, []))
        if not handlers:
            return

        results = await asyncio.gather(
            *[handler(event) for handler in handlers],
            return_exceptions=True,
        )

        # A failing handler never propagates into the publisher
        for handler, result in zip(handlers, results):
            if isinstance(result, Exception):
                logger.error(
                    "Error in %s handler %s for %s: %s",
                    self._source,
                    getattr(handler, "__qualname__", handler),
                    event.type.value,
                    result,
                    exc_info=result,
                )

    async def emit(self, event_type: EventType, payload: dict[str, Any]) -> None:
        """Build an Event from this bus's source and publish it."""
        await self.publish(Event(type=event_type, payload=payload, source=self._source))

    def clear(self) -> None:
        """Detach every handler."""
        self._subscribers.clear()
