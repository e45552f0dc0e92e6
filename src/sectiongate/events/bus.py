"""Async event bus used as the real-time push channel."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Callable, Coroutine
from typing import Any

from sectiongate.events.types import EventType

logger = logging.getLogger(__name__)

Listener = Callable[[EventType, dict[str, Any]], Coroutine[Any, Any, None]]


class EventBus:
    """Simple async pub/sub event bus.

    Besides per-type and global listeners, listeners can be bound to a user
    (one per active session). They only receive events whose payload carries
    a matching ``user_id``.
    """

    def __init__(self) -> None:
        self._listeners: dict[EventType, list[Listener]] = defaultdict(list)
        self._global_listeners: list[Listener] = []
        self._user_listeners: dict[str, list[Listener]] = defaultdict(list)

    def on(self, event_type: EventType, listener: Listener) -> None:
        """Register a listener for a specific event type."""
        self._listeners[event_type].append(listener)

    def on_all(self, listener: Listener) -> None:
        """Register a listener for all events."""
        self._global_listeners.append(listener)

    def on_user(self, user_id: str, listener: Listener) -> None:
        """Register a session listener for events addressed to one user."""
        self._user_listeners[user_id].append(listener)

    def off(self, event_type: EventType, listener: Listener) -> None:
        """Remove a listener."""
        if listener in self._listeners[event_type]:
            self._listeners[event_type].remove(listener)

    def off_user(self, user_id: str, listener: Listener) -> None:
        """Remove a session listener."""
        listeners = self._user_listeners.get(user_id)
        if listeners and listener in listeners:
            listeners.remove(listener)
            if not listeners:
                del self._user_listeners[user_id]

    def session_count(self, user_id: str) -> int:
        return len(self._user_listeners.get(user_id, []))

    async def emit(self, event_type: EventType, data: dict[str, Any] | None = None) -> None:
        """Emit an event to all registered listeners."""
        data = data or {}
        listeners = self._listeners.get(event_type, []) + self._global_listeners
        user_id = data.get("user_id")
        if user_id is not None:
            listeners = listeners + self._user_listeners.get(user_id, [])

        for listener in listeners:
            try:
                await listener(event_type, data)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Error in event listener for %s", event_type)

    def clear(self) -> None:
        """Remove all listeners."""
        self._listeners.clear()
        self._global_listeners.clear()
        self._user_listeners.clear()
