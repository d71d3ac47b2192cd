"""In-process event bus for domain events (cards, comments, users, teams)."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine, Mapping
from typing import Any

from contentos.events.types import EventType

logger = logging.getLogger(__name__)

Listener = Callable[[EventType, dict[str, Any]], Coroutine[Any, Any, None]]

# Subscription key for listeners that receive every event type.
ALL = None


class EventBus:
    """Async pub/sub bus used by the services to fan out side effects.

    Listeners run in subscription order, typed listeners before wildcard
    ones. A failing listener is logged and skipped; the emitter only learns
    how many listeners completed.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[EventType | None, list[Listener]] = {}

    def on(self, event_type: EventType, listener: Listener) -> None:
        self._subscriptions.setdefault(event_type, []).append(listener)

    def on_all(self, listener: Listener) -> None:
        self._subscriptions.setdefault(ALL, []).append(listener)

    def subscribe(self, listeners: Mapping[EventType, Listener]) -> None:
        """Register several typed listeners at once."""
        for event_type, listener in listeners.items():
            self.on(event_type, listener)

    def off(self, event_type: EventType | None, listener: Listener) -> None:
        """Remove a listener. Pass ``None`` to drop a wildcard listener."""
        registered = self._subscriptions.get(event_type, [])
        if listener in registered:
            registered.remove(listener)

    def listener_count(self, event_type: EventType) -> int:
        return len(self._subscriptions.get(event_type, [])) + len(self._subscriptions.get(ALL, []))

    async def emit(self, event_type: EventType, data: dict[str, Any] | None = None) -> int:
        """Deliver an event and return the number of listeners that completed."""
        payload = data or {}
        targets = [*self._subscriptions.get(event_type, []), *self._subscriptions.get(ALL, [])]
        delivered = 0
        for listener in targets:
            try:
                await listener(event_type, payload)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Listener %r failed on %s", listener, event_type)
                continue
            delivered += 1
        if targets:
            logger.debug("Event %s delivered to %d/%d listeners", event_type, delivered, len(targets))
        return delivered

    def clear(self) -> None:
        self._subscriptions.clear()
