"""In-process event bus used to publish pipeline activity."""

from __future__ import annotations

import asyncio
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from nimbus.common.logging import get_logger


@dataclass
class Event:
    """Event message."""

    topic: str
    data: dict[str, Any]
    source: str
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: float = field(default_factory=time.time)


EventHandler = Callable[[Event], Awaitable[None]]


class EventBus:
    """Async pub/sub bus with exact-topic subscriptions and bounded history.

    Handlers run concurrently for each published event; a failing handler is
    logged and never affects the publisher or the other handlers.
    """

    def __init__(self, history_limit: int = 1000) -> None:
        self._subscribers: dict[str, list[EventHandler]] = {}
        self.history_limit = history_limit
        self._history: deque[Event] = deque(maxlen=history_limit)
        self.logger = get_logger("event_bus")

    async def publish(self, event: Event) -> None:
        """Publish an event to all subscribers of its topic."""
        self.logger.debug(
            "publishing_event",
            topic=event.topic,
            event_id=event.event_id,
            source=event.source,
        )
        self._history.append(event)

        handlers = list(self._subscribers.get(event.topic, ()))
        if handlers:
            await asyncio.gather(
                *[self._safe_dispatch(handler, event) for handler in handlers],
                return_exceptions=True,
            )

    async def _safe_dispatch(self, handler: EventHandler, event: Event) -> None:
        try:
            await handler(event)
        except Exception as e:
            self.logger.exception(
                "event_handler_error",
                topic=event.topic,
                event_id=event.event_id,
                error=str(e),
            )

    def subscribe(
        self,
        topic: str,
        handler: EventHandler | None = None,
    ) -> Callable[[EventHandler], EventHandler] | Callable[[], None]:
        """Subscribe to events on a topic.

        Can be used as a decorator or called directly.

        Args:
            topic: Topic to subscribe to.
            handler: Async function to handle events (omit for decorator use).

        Returns:
            Decorator (when handler is None) or unsubscribe function.
        """
        if handler is not None:
            return self._register(topic, handler)

        def decorator(fn: EventHandler) -> EventHandler:
            self._register(topic, fn)
            return fn

        return decorator

    def _register(self, topic: str, handler: EventHandler) -> Callable[[], None]:
        self._subscribers.setdefault(topic, []).append(handler)
        self.logger.debug("subscribed", topic=topic)

        def unsubscribe() -> None:
            handlers = self._subscribers.get(topic)
            if handlers and handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def subscriber_count(self, topic: str) -> int:
        """Number of handlers currently subscribed to a topic."""
        return len(self._subscribers.get(topic, ()))

    def get_history(
        self,
        topic: str | None = None,
        limit: int = 100,
    ) -> list[Event]:
        """Get recorded events, oldest first.

        Args:
            topic: Filter by topic (optional).
            limit: Maximum events to return (the most recent ones).
        """
        events = [e for e in self._history if topic is None or e.topic == topic]
        return events[-limit:]

    def clear_history(self) -> None:
        """Clear event history."""
        self._history.clear()
