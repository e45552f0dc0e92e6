"""Permission-change side effects fired after membership mutations."""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from sectiongate.core.cache import PermissionCache
from sectiongate.events.bus import EventBus
from sectiongate.events.types import EventType

logger = logging.getLogger(__name__)


class InvalidationDispatcher(Protocol):
    """Busts cached permissions and notifies a user's sessions."""

    def notify_permissions_changed(self, user_id: str) -> None: ...

    async def drain(self) -> None: ...


class NullDispatcher:
    """Dispatcher used when no cache or push channel is configured."""

    def notify_permissions_changed(self, user_id: str) -> None:
        return None

    async def drain(self) -> None:
        return None


class CachePushDispatcher:
    """Invalidates the permission cache and pushes a change event.

    The push is scheduled as a background task so the mutation never waits
    for delivery. Failures in either effect are logged and swallowed.
    """

    def __init__(self, cache: PermissionCache | None, event_bus: EventBus | None) -> None:
        self._cache = cache
        self._event_bus = event_bus
        self._pending: set[asyncio.Task[None]] = set()

    def notify_permissions_changed(self, user_id: str) -> None:
        if self._cache is not None:
            try:
                self._cache.invalidate_user(user_id)
            except Exception:
                logger.exception("Failed to invalidate permission cache for %s", user_id)

        event_bus = self._event_bus
        if event_bus is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running loop; dropping permissions push for %s", user_id)
            return
        task = loop.create_task(self._push(event_bus, user_id))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _push(self, event_bus: EventBus, user_id: str) -> None:
        try:
            await event_bus.emit(EventType.PERMISSIONS_CHANGED, {"user_id": user_id})
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Failed to push permissions change for %s", user_id)

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for scheduled pushes to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
