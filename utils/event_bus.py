"""
Asynchronous event bus connecting the pricing core to its collaborators.
"""

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from models.events import PricingEvent

logger_event_bus = logging.getLogger(__name__)

Handler = Callable[[PricingEvent], Coroutine[Any, Any, None]]


class EventBus:
    """
    Publish/subscribe bus keyed by event type.
    Handlers for one event run concurrently; each call is bounded by
    ``handler_timeout`` so a slow collaborator never stalls the publisher.
    """

    def __init__(self, handler_timeout: float | None = 5.0):
        self.subscribers: dict[str, list[Handler]] = {}
        self.handler_timeout = handler_timeout
        self.published_count = 0

    def subscribe(self, event_type: str, callback: Handler) -> None:
        """Subscribe to an event type."""
        if not callable(callback):
            raise TypeError("Callback must be a callable async function.")
        handlers = self.subscribers.setdefault(event_type, [])
        if callback in handlers:
            logger_event_bus.warning(f"Callback {_name(callback)} already subscribed to {event_type}")
            return
        handlers.append(callback)
        logger_event_bus.debug(f"Callback {_name(callback)} subscribed to {event_type}")

    def unsubscribe(self, event_type: str, callback: Handler) -> None:
        """Unsubscribe a specific callback from an event type."""
        handlers = self.subscribers.get(event_type)
        if not handlers:
            return
        try:
            handlers.remove(callback)
        except ValueError:
            logger_event_bus.warning(f"Callback {_name(callback)} not found for event type {event_type}")
            return
        if not handlers:
            del self.subscribers[event_type]

    async def publish(self, event: PricingEvent) -> None:
        """Publish an event to subscribers."""
        if not isinstance(event, PricingEvent):
            logger_event_bus.error(f"Attempted to publish invalid event type: {type(event)}")
            return

        self.published_count += 1
        logger_event_bus.debug(f"Event published: {event.event_type} from {event.source.value}")
        handlers = list(self.subscribers.get(event.event_type, []))
        if not handlers:
            return

        results = await asyncio.gather(*(self._invoke(cb, event) for cb in handlers), return_exceptions=True)
        for callback, result in zip(handlers, results):
            if isinstance(result, asyncio.TimeoutError):
                logger_event_bus.error(
                    f"Subscriber '{_name(callback)}' timed out after {self.handler_timeout}s "
                    f"handling {event.event_type}"
                )
            elif isinstance(result, Exception):
                logger_event_bus.error(
                    f"Error in subscriber callback '{_name(callback)}' for event {event.event_type}: {result}"
                )

    async def _invoke(self, callback: Handler, event: PricingEvent) -> None:
        if self.handler_timeout is None:
            await callback(event)
        else:
            await asyncio.wait_for(callback(event), timeout=self.handler_timeout)


def _name(callback: Any) -> str:
    return getattr(callback, "__name__", type(callback).__name__)
