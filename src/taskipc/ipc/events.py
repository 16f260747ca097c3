"""Events surfaced to the host application and the emitter that delivers them."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4

logger = logging.getLogger(__name__)

_SUBSCRIPTION_QUEUE_SIZE = 100


def _new_event_id() -> str:
    return uuid4().hex


def _now() -> datetime:
    return datetime.now()


@dataclass(frozen=True)
class ClientConnected:
    client_id: str
    event_id: str = field(default_factory=_new_event_id)
    occurred_at: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class ClientDisconnected:
    client_id: str
    event_id: str = field(default_factory=_new_event_id)
    occurred_at: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class TaskCommandReceived:
    client_id: str
    payload: dict[str, Any]
    event_id: str = field(default_factory=_new_event_id)
    occurred_at: datetime = field(default_factory=_now)


IPCEvent = ClientConnected | ClientDisconnected | TaskCommandReceived
EventHandler = Callable[[IPCEvent], None]
EventFilter = type[ClientConnected] | type[ClientDisconnected] | type[TaskCommandReceived] | None


class EventSubscription:
    """Async iterator over events emitted after the subscription was opened."""

    def __init__(self, emitter: EventEmitter, event_type: EventFilter) -> None:
        self._emitter = emitter
        self.event_type = event_type
        self.queue: asyncio.Queue[IPCEvent] = asyncio.Queue(maxsize=_SUBSCRIPTION_QUEUE_SIZE)

    def __aiter__(self) -> EventSubscription:
        return self

    async def __anext__(self) -> IPCEvent:
        return await self.queue.get()

    async def get(self, timeout: float | None = None) -> IPCEvent:
        """Wait for the next event, optionally bounded by *timeout* seconds."""
        return await asyncio.wait_for(self.queue.get(), timeout=timeout)

    def close(self) -> None:
        self._emitter._unsubscribe(self)

    def __enter__(self) -> EventSubscription:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class EventEmitter:
    """Synchronous fan-out of IPC events to handlers and subscriptions.

    Delivery happens inline on the caller's thread, in registration order.
    Events are not persisted or replayed; new subscribers only receive
    future events.  Handlers should return quickly because the server does
    not process further socket activity until they do.
    """

    def __init__(self) -> None:
        self._handlers: list[tuple[EventFilter, EventHandler]] = []
        self._subscriptions: list[EventSubscription] = []

    def emit(self, event: IPCEvent) -> None:
        """Deliver *event* to every matching handler and subscription."""
        for filter_type, handler in list(self._handlers):
            if filter_type is None or isinstance(event, filter_type):
                try:
                    handler(event)
                except Exception:
                    logger.exception(
                        "Event handler %r failed for %s", handler, type(event).__name__
                    )

        for subscription in list(self._subscriptions):
            filter_type = subscription.event_type
            if filter_type is None or isinstance(event, filter_type):
                try:
                    subscription.queue.put_nowait(event)
                except asyncio.QueueFull:
                    logger.warning("Event subscription full; dropping %s", type(event).__name__)

    def add_handler(self, handler: EventHandler, event_type: EventFilter = None) -> None:
        """Register a synchronous handler for events (optionally filtered by type)."""
        self._handlers.append((event_type, handler))

    def remove_handler(self, handler: EventHandler) -> None:
        """Remove a previously registered handler."""
        self._handlers = [(t, h) for t, h in self._handlers if h is not handler]

    def subscribe(self, event_type: EventFilter = None) -> EventSubscription:
        """Open a queue-backed subscription; it sees only events emitted from now on."""
        subscription = EventSubscription(self, event_type)
        self._subscriptions.append(subscription)
        return subscription

    def _unsubscribe(self, subscription: EventSubscription) -> None:
        self._subscriptions = [s for s in self._subscriptions if s is not subscription]

    @property
    def handler_count(self) -> int:
        return len(self._handlers)


__all__ = [
    "ClientConnected",
    "ClientDisconnected",
    "EventEmitter",
    "EventHandler",
    "EventSubscription",
    "IPCEvent",
    "TaskCommandReceived",
]
