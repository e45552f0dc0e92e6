"""In-memory permission snapshot cache with per-user expiry."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    expires_at: float
    snapshots: dict[str, frozenset[str]] = field(default_factory=dict)


class PermissionCache:
    """Caches effective permission sets keyed by user and context.

    All snapshots of a user share one expiry, set when the first snapshot is
    stored. Invalidation drops every context of the user at once and bumps
    the user's generation, so a snapshot computed before the invalidation
    is refused by ``set``.
    """

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._generations: dict[str, int] = {}
        self._epoch = 0

    def get(self, user_id: str, context_key: str) -> frozenset[str] | None:
        entry = self._entries.get(user_id)
        if entry is None:
            return None
        if entry.expires_at < self._clock():
            del self._entries[user_id]
            return None
        return entry.snapshots.get(context_key)

    def generation(self, user_id: str) -> tuple[int, int]:
        """Token to pass to ``set`` for a snapshot computed from now on."""
        return self._epoch, self._generations.get(user_id, 0)

    def set(
        self,
        user_id: str,
        context_key: str,
        permissions: frozenset[str],
        *,
        generation: tuple[int, int] | None = None,
    ) -> bool:
        """Store a snapshot. Returns False if it was invalidated while computed."""
        if generation is not None and generation != self.generation(user_id):
            logger.debug("Discarded stale permission snapshot for %s", user_id)
            return False
        entry = self._entries.get(user_id)
        now = self._clock()
        if entry is None or entry.expires_at < now:
            entry = _Entry(expires_at=now + self.ttl_seconds)
            self._entries[user_id] = entry
        entry.snapshots[context_key] = permissions
        return True

    def invalidate_user(self, user_id: str) -> None:
        self._entries.pop(user_id, None)
        self._generations[user_id] = self._generations.get(user_id, 0) + 1
        logger.debug("Cache invalidated for user %s", user_id)

    def invalidate_all(self) -> None:
        self._entries.clear()
        self._epoch += 1
        logger.debug("Cache invalidated for all users")

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._entries
