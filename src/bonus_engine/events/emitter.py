"""Event emitter for publishing business events.

The emitter provides:
- Handler registration with type filtering
- Category-based routing
- Error isolation (handler failures don't break other handlers)
- Event batching so events publish only after a transaction commits
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Protocol, TypeVar, runtime_checkable

from bonus_engine.events.types import DomainEvent, EventCategory

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=DomainEvent)


@runtime_checkable
class AsyncEventHandler(Protocol):
    """Protocol for asynchronous event handlers."""

    async def __call__(self, event: DomainEvent) -> None:
        """Handle a business event asynchronously."""
        ...


@dataclass
class HandlerRegistration:
    """Registration of an event handler."""

    handler: AsyncEventHandler
    event_types: set[str] | None  # None = all events
    categories: set[EventCategory] | None  # None = all categories


class AsyncEventEmitter:
    """Asynchronous event emitter.

    Handlers run concurrently and are isolated: if one fails, the others
    still receive the event and the publisher only sees the collected
    exceptions.

    Usage:
        emitter = AsyncEventEmitter()
        emitter.on(PaymentConfirmed, subscriber)

        async with emitter.batch() as batch:
            await batch.add(payment_confirmed)
            await session.commit()
        # Events are dispatched when the context exits cleanly
    """

    def __init__(self) -> None:
        self._handlers: list[HandlerRegistration] = []

    def on(
        self,
        event_type: type[T] | list[type[T]],
        handler: AsyncEventHandler,
    ) -> None:
        """Register handler for specific event type(s)."""
        if isinstance(event_type, list):
            types = {t.__name__ for t in event_type}
        else:
            types = {event_type.__name__}

        self._handlers.append(
            HandlerRegistration(handler=handler, event_types=types, categories=None)
        )

    def on_category(
        self,
        category: EventCategory | list[EventCategory],
        handler: AsyncEventHandler,
    ) -> None:
        """Register handler for event category(ies)."""
        cats = set(category) if isinstance(category, list) else {category}
        self._handlers.append(
            HandlerRegistration(handler=handler, event_types=None, categories=cats)
        )

    def on_all(self, handler: AsyncEventHandler) -> None:
        """Register handler for all events."""
        self._handlers.append(
            HandlerRegistration(handler=handler, event_types=None, categories=None)
        )

    def off(self, handler: AsyncEventHandler) -> None:
        """Unregister a handler."""
        self._handlers = [reg for reg in self._handlers if reg.handler is not handler]

    async def emit(self, event: DomainEvent) -> list[Exception]:
        """Emit an event to all matching handlers.

        Returns list of any exceptions raised by handlers.
        """
        return await self._dispatch(event)

    async def _dispatch(self, event: DomainEvent) -> list[Exception]:
        """Dispatch event to matching handlers."""
        tasks: list[asyncio.Task[None]] = []

        for reg in self._handlers:
            if reg.event_types and event.event_type not in reg.event_types:
                continue
            if reg.categories and event.category not in reg.categories:
                continue
            tasks.append(asyncio.create_task(self._call_handler(reg.handler, event)))

        if not tasks:
            return []

        results = await asyncio.gather(*tasks, return_exceptions=True)
        return [r for r in results if isinstance(r, Exception)]

    async def _call_handler(self, handler: AsyncEventHandler, event: DomainEvent) -> None:
        """Call handler with error logging."""
        try:
            await handler(event)
        except Exception:
            logger.exception(
                "Handler %s failed for event %s",
                handler,
                event.event_type,
            )
            raise

    def batch(self) -> AsyncEventBatch:
        """Create a batch context for collecting events."""
        return AsyncEventBatch(self)

    async def _dispatch_all(self, events: list[DomainEvent]) -> list[Exception]:
        errors: list[Exception] = []
        for event in events:
            errors.extend(await self._dispatch(event))
        return errors


class AsyncEventBatch:
    """Async context manager for batching events.

    Events added inside the block are dispatched on clean exit and discarded
    if the block raises, so a rolled-back action never triggers bonuses.
    Each batch queues its own events, so concurrent batches on a shared
    emitter stay independent.
    """

    def __init__(self, emitter: AsyncEventEmitter) -> None:
        self._emitter = emitter
        self._events: list[DomainEvent] = []
        self._errors: list[Exception] = []

    async def __aenter__(self) -> AsyncEventBatch:
        self._events = []
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        events, self._events = self._events, []
        if exc_type is None:
            self._errors = await self._emitter._dispatch_all(events)

    async def add(self, event: DomainEvent) -> None:
        """Add event to batch."""
        self._events.append(event)

    @property
    def errors(self) -> list[Exception]:
        """Errors from handler execution."""
        return self._errors
