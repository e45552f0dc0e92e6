"""Shared test fixtures for sectiongate."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest

from sectiongate.config import Config
from sectiongate.core.catalog import RoleSlugMapper, seed_system_roles
from sectiongate.events.bus import EventBus
from sectiongate.storage.metadata_store import MetadataStore

USERS = {
    "root": "admin",
    "alice": "employee",
    "bob": "employee",
    "carol": "manager",
}


class RecordingDispatcher:
    """Invalidation dispatcher that records every notified user."""

    def __init__(self) -> None:
        self.calls: list[str] = []

    def notify_permissions_changed(self, user_id: str) -> None:
        self.calls.append(user_id)

    async def drain(self) -> None:
        return None


@pytest.fixture
def tmp_db(tmp_path: Path) -> Path:
    return tmp_path / "metadata.db"


@pytest.fixture
async def store(tmp_db: Path) -> AsyncGenerator[MetadataStore, None]:
    s = MetadataStore(tmp_db)
    await s.initialize()
    for user_id, global_role in USERS.items():
        await s.create_user(user_id, f"{user_id}@example.com", user_id.title(), global_role=global_role)
    yield s
    await s.close()


@pytest.fixture
async def seeded_store(store: MetadataStore) -> MetadataStore:
    await seed_system_roles(store)
    return store


@pytest.fixture
def mapper(store: MetadataStore) -> RoleSlugMapper:
    return RoleSlugMapper(store)


@pytest.fixture
def recorder() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def config(tmp_path: Path) -> Config:
    return Config(home_path=tmp_path)
