"""
In-process event dispatcher.

Routes each domain event to the single handler registered for its kind. In a
larger deployment this would sit behind a message broker; the contract stays
the same.

Design decisions:
- Exactly one handler per event kind (registering twice is an error)
- Async handlers; ``publish`` schedules the dispatch as a background task and
  returns at once, so the caller's response never waits on notifications
- Events are normalized at this boundary: dicts from another process are
  validated into DomainEvent, which coerces every identifier to a string
- Handler errors are logged and swallowed: the publisher has already
  committed and must not be rolled back by a notification failure
"""

import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

from pydantic import ValidationError

from notifications.events import DomainEvent
from shared.config import DEFAULT_HISTORY_LIMIT
from shared.models import EventKind, enum_value

logger = logging.getLogger("event_dispatcher")


# Type alias for event handler coroutines
EventHandler = Callable[[DomainEvent], Awaitable[Any]]

RawEvent = Union[DomainEvent, Mapping[str, Any]]


class EventDispatcher:
    """
    Event-kind router with fire-and-forget publishing.

    Example usage:
        dispatcher = EventDispatcher()

        async def handle_delivered(event):
            ...
        dispatcher.register(EventKind.DELIVERED, handle_delivered)

        # Inside a running event loop
        dispatcher.publish(events.delivered(shipment))
    """

    def __init__(self, history_limit: Optional[int] = DEFAULT_HISTORY_LIMIT):
        """
        Args:
            history_limit: How many accepted events the log keeps (None keeps all)
        """
        self._handlers: dict[str, EventHandler] = {}
        self._pending: set[asyncio.Task] = set()

        # Track recent events for debugging
        self._event_log: deque[DomainEvent] = deque(maxlen=history_limit)
        self._log_events: bool = True

    def register(self, kind: EventKind, handler: EventHandler) -> None:
        """
        Register the handler for an event kind.

        Raises:
            ValueError: If the kind already has a handler
        """
        key = EventKind(enum_value(kind)).value
        if key in self._handlers:
            raise ValueError(f"Event kind '{key}' already has a handler")
        self._handlers[key] = handler
        logger.debug(f"Registered handler for '{key}' events")

    def unregister(self, kind: EventKind) -> bool:
        """Remove the handler for an event kind. Returns False if none was set."""
        return self._handlers.pop(enum_value(kind), None) is not None

    def has_handler(self, kind: EventKind) -> bool:
        return enum_value(kind) in self._handlers

    @staticmethod
    def normalize(event: RawEvent) -> DomainEvent:
        """
        Bring an incoming event to its canonical form.

        Raises:
            pydantic.ValidationError: If the payload is not a valid event
        """
        if isinstance(event, DomainEvent):
            return event
        return DomainEvent.model_validate(dict(event))

    def _accept(self, event: RawEvent) -> Optional[DomainEvent]:
        try:
            normalized = self.normalize(event)
        except ValidationError as e:
            logger.error(f"Dropping malformed event: {e}")
            return None
        if self._log_events:
            self._event_log.append(normalized)
        return normalized

    async def _run(self, event: DomainEvent) -> bool:
        handler = self._handlers.get(enum_value(event.kind))
        if handler is None:
            logger.warning(f"No handler for event kind '{enum_value(event.kind)}'")
            return False
        try:
            await handler(event)
        except Exception:
            logger.exception(f"Handler raised for {event}")
            return False
        return True

    async def dispatch(self, event: RawEvent) -> bool:
        """
        Deliver an event to its handler and wait for it.

        Returns:
            True if a handler ran to completion, False otherwise. Never raises.
        """
        normalized = self._accept(event)
        if normalized is None:
            return False
        logger.info(f"Dispatching: {normalized}")
        return await self._run(normalized)

    def publish(self, event: RawEvent) -> Optional[asyncio.Task]:
        """
        Fire-and-forget: schedule the dispatch on the running loop.

        Must be called from inside a running event loop. The returned task is
        tracked until it finishes; ``drain()`` waits for all of them.
        """
        normalized = self._accept(event)
        if normalized is None:
            return None
        logger.info(f"Publishing: {normalized}")
        task = asyncio.get_running_loop().create_task(self._run(normalized))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait until every published event has been handled."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    @property
    def history_limit(self) -> Optional[int]:
        return self._event_log.maxlen

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def get_handler_count(self) -> int:
        return len(self._handlers)

    def get_event_log(self) -> list[DomainEvent]:
        """Get the log of recently accepted events, oldest first."""
        return list(self._event_log)

    def clear_event_log(self) -> None:
        self._event_log.clear()

    def clear_handlers(self) -> None:
        """Remove all handlers (useful for testing)."""
        self._handlers.clear()

    def set_logging(self, enabled: bool) -> None:
        self._log_events = enabled


# Module-level singleton for convenience
_default_dispatcher: Optional[EventDispatcher] = None


def get_dispatcher() -> EventDispatcher:
    """Get the default dispatcher singleton."""
    global _default_dispatcher
    if _default_dispatcher is None:
        _default_dispatcher = EventDispatcher()
    return _default_dispatcher


def reset_dispatcher() -> EventDispatcher:
    """Reset the default dispatcher (useful for testing)."""
    global _default_dispatcher
    _default_dispatcher = EventDispatcher()
    return _default_dispatcher
