"""Tests for the event bus."""

from __future__ import annotations

from sectiongate.events.bus import EventBus
from sectiongate.events.types import EventType


async def test_typed_and_global_listeners(event_bus: EventBus) -> None:
    typed, everything = [], []

    async def on_created(event_type, data):
        typed.append(data)

    async def on_any(event_type, data):
        everything.append(event_type)

    event_bus.on(EventType.SECTION_CREATED, on_created)
    event_bus.on_all(on_any)

    await event_bus.emit(EventType.SECTION_CREATED, {"section_id": "s1"})
    await event_bus.emit(EventType.SECTION_REMOVED, {"section_id": "s1"})

    assert typed == [{"section_id": "s1"}]
    assert everything == [EventType.SECTION_CREATED, EventType.SECTION_REMOVED]


async def test_user_listeners_only_get_their_events(event_bus: EventBus) -> None:
    alice, bob = [], []

    async def alice_session(event_type, data):
        alice.append(data["user_id"])

    async def bob_session(event_type, data):
        bob.append(data["user_id"])

    event_bus.on_user("alice", alice_session)
    event_bus.on_user("bob", bob_session)

    await event_bus.emit(EventType.PERMISSIONS_CHANGED, {"user_id": "alice"})
    await event_bus.emit(EventType.SECTION_CREATED, {"section_id": "s1"})

    assert alice == ["alice"]
    assert bob == []


async def test_off_user(event_bus: EventBus) -> None:
    received = []

    async def session(event_type, data):
        received.append(data)

    event_bus.on_user("alice", session)
    event_bus.on_user("alice", session)
    assert event_bus.session_count("alice") == 2

    event_bus.off_user("alice", session)
    event_bus.off_user("alice", session)
    event_bus.off_user("alice", session)
    assert event_bus.session_count("alice") == 0

    await event_bus.emit(EventType.PERMISSIONS_CHANGED, {"user_id": "alice"})
    assert received == []


async def test_failing_listener_does_not_stop_others(event_bus: EventBus) -> None:
    received = []

    async def broken(event_type, data):
        raise RuntimeError("boom")

    async def healthy(event_type, data):
        received.append(event_type)

    event_bus.on(EventType.SECTIONS_REORDERED, broken)
    event_bus.on(EventType.SECTIONS_REORDERED, healthy)

    await event_bus.emit(EventType.SECTIONS_REORDERED)

    assert received == [EventType.SECTIONS_REORDERED]


async def test_clear(event_bus: EventBus) -> None:
    received = []

    async def session(event_type, data):
        received.append(data)

    event_bus.on_user("alice", session)
    event_bus.on_all(session)
    event_bus.clear()

    await event_bus.emit(EventType.PERMISSIONS_CHANGED, {"user_id": "alice"})
    assert received == []
