"""Tests for the permission cache and the invalidation dispatcher."""

from __future__ import annotations

import asyncio
import logging

import pytest

from sectiongate.core.cache import PermissionCache
from sectiongate.core.invalidation import CachePushDispatcher, NullDispatcher
from sectiongate.events.bus import EventBus
from sectiongate.events.types import EventType


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class BrokenBus(EventBus):
    async def emit(self, event_type, data=None) -> None:
        raise ConnectionError("push channel down")


class TestPermissionCache:
    def test_set_and_get(self) -> None:
        cache = PermissionCache()
        cache.set("alice", "ctx", frozenset({"section:read"}))

        assert cache.get("alice", "ctx") == frozenset({"section:read"})
        assert cache.get("alice", "other") is None
        assert cache.get("bob", "ctx") is None

    def test_entries_expire(self) -> None:
        clock = FakeClock()
        cache = PermissionCache(ttl_seconds=60, clock=clock)
        cache.set("alice", "ctx", frozenset({"*"}))

        clock.now += 59
        assert cache.get("alice", "ctx") is not None
        clock.now += 2
        assert cache.get("alice", "ctx") is None
        assert "alice" not in cache

    def test_invalidate_user_drops_all_contexts(self) -> None:
        cache = PermissionCache()
        cache.set("alice", "a", frozenset())
        cache.set("alice", "b", frozenset())
        cache.set("bob", "a", frozenset())

        cache.invalidate_user("alice")

        assert cache.get("alice", "a") is None
        assert cache.get("alice", "b") is None
        assert cache.get("bob", "a") == frozenset()

    def test_invalidate_unknown_user_is_noop(self) -> None:
        PermissionCache().invalidate_user("ghost")

    def test_invalidate_all(self) -> None:
        cache = PermissionCache()
        cache.set("alice", "a", frozenset())
        cache.set("bob", "a", frozenset())
        cache.invalidate_all()
        assert "alice" not in cache
        assert "bob" not in cache

    def test_snapshot_from_before_invalidation_is_refused(self) -> None:
        cache = PermissionCache()
        token = cache.generation("alice")

        cache.invalidate_user("alice")

        assert cache.set("alice", "ctx", frozenset({"section:read"}), generation=token) is False
        assert cache.get("alice", "ctx") is None
        assert cache.set("alice", "ctx", frozenset(), generation=cache.generation("alice"))
        assert cache.get("alice", "ctx") == frozenset()

    def test_invalidating_another_user_keeps_token_valid(self) -> None:
        cache = PermissionCache()
        token = cache.generation("alice")

        cache.invalidate_user("bob")

        assert cache.set("alice", "ctx", frozenset({"*"}), generation=token)

    def test_invalidate_all_refuses_every_older_token(self) -> None:
        cache = PermissionCache()
        alice = cache.generation("alice")
        bob = cache.generation("bob")

        cache.invalidate_all()

        assert not cache.set("alice", "ctx", frozenset(), generation=alice)
        assert not cache.set("bob", "ctx", frozenset(), generation=bob)
        assert "alice" not in cache


class TestNullDispatcher:
    async def test_calls_are_noops(self) -> None:
        dispatcher = NullDispatcher()
        assert dispatcher.notify_permissions_changed("alice") is None
        await dispatcher.drain()


class TestCachePushDispatcher:
    async def test_invalidates_and_pushes_to_user_sessions(self, event_bus: EventBus) -> None:
        cache = PermissionCache()
        cache.set("alice", "ctx", frozenset({"section:read"}))
        received = []

        async def session(event_type, data):
            received.append((event_type, data))

        event_bus.on_user("alice", session)
        dispatcher = CachePushDispatcher(cache, event_bus)

        dispatcher.notify_permissions_changed("alice")

        assert "alice" not in cache
        await dispatcher.drain()
        assert received == [(EventType.PERMISSIONS_CHANGED, {"user_id": "alice"})]

    async def test_push_does_not_block_caller(self, event_bus: EventBus) -> None:
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_session(event_type, data):
            started.set()
            await release.wait()

        event_bus.on_user("alice", slow_session)
        dispatcher = CachePushDispatcher(PermissionCache(), event_bus)

        dispatcher.notify_permissions_changed("alice")

        assert dispatcher.pending == 1
        await started.wait()
        release.set()
        await dispatcher.drain()
        assert dispatcher.pending == 0

    async def test_push_failure_is_logged_not_raised(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        dispatcher = CachePushDispatcher(PermissionCache(), BrokenBus())

        with caplog.at_level(logging.ERROR, logger="sectiongate.core.invalidation"):
            dispatcher.notify_permissions_changed("alice")
            await dispatcher.drain()

        assert "Failed to push permissions change for alice" in caplog.text

    async def test_without_collaborators(self) -> None:
        dispatcher = CachePushDispatcher(None, None)
        dispatcher.notify_permissions_changed("alice")
        assert dispatcher.pending == 0

    def test_without_running_loop_only_invalidates(self, event_bus: EventBus) -> None:
        cache = PermissionCache()
        cache.set("alice", "ctx", frozenset())
        dispatcher = CachePushDispatcher(cache, event_bus)

        dispatcher.notify_permissions_changed("alice")

        assert "alice" not in cache
        assert dispatcher.pending == 0
