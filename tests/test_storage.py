"""Tests for MetadataStore."""

from __future__ import annotations

import asyncio
from pathlib import Path

import aiosqlite
import pytest

from sectiongate.models.section import Section
from sectiongate.storage.metadata_store import MetadataStore


async def _section(store: MetadataStore, name: str = "Ops", order: int = 0) -> str:
    section = Section(name=name, display_order=order)
    await store.insert_section(section.to_storage())
    return section.id


class TestTransactions:
    async def test_rollback_on_error(self, store: MetadataStore) -> None:
        section_id = await _section(store)

        with pytest.raises(RuntimeError):
            async with store.transaction():
                await store.upsert_section_member(section_id, "alice", "viewer", None)
                raise RuntimeError("abort")

        assert await store.get_section_member(section_id, "alice") is None

    async def test_nested_transaction_joins_outer(self, store: MetadataStore) -> None:
        section_id = await _section(store)

        with pytest.raises(aiosqlite.IntegrityError):
            async with store.transaction():
                await store.upsert_section_member(section_id, "alice", "viewer", None)
                await store.upsert_section_member(section_id, "ghost", "viewer", None)

        assert await store.list_section_members(section_id) == []

    async def test_concurrent_writers_are_serialized(self, store: MetadataStore) -> None:
        section_id = await _section(store)

        await asyncio.gather(
            *(store.upsert_section_member(section_id, u, "viewer", None) for u in ("alice", "bob", "carol"))
        )

        members = await store.list_section_members(section_id)
        assert sorted(m["user_id"] for m in members) == ["alice", "bob", "carol"]

    async def test_failed_begin_leaves_no_owner(self, store: MetadataStore, tmp_db: Path) -> None:
        section_id = await _section(store)
        await store.db.execute("BEGIN")
        with pytest.raises(aiosqlite.OperationalError):
            async with store.transaction():
                pass
        await store.db.rollback()

        async with store.transaction():
            await store.upsert_section_member(section_id, "alice", "viewer", None)

        async with aiosqlite.connect(tmp_db) as other:
            cursor = await other.execute(
                "SELECT user_id FROM section_members WHERE section_id = ?", (section_id,)
            )
            assert await cursor.fetchall() == [("alice",)]

    async def test_reader_waits_for_open_transaction(self, store: MetadataStore) -> None:
        section_id = await _section(store)
        written = asyncio.Event()
        release = asyncio.Event()

        async def writer() -> None:
            with pytest.raises(RuntimeError):
                async with store.transaction():
                    await store.upsert_section_member(section_id, "alice", "viewer", None)
                    written.set()
                    await release.wait()
                    raise RuntimeError("abort")

        writing = asyncio.create_task(writer())
        await written.wait()
        reading = asyncio.create_task(store.get_section_member(section_id, "alice"))
        await asyncio.sleep(0.05)
        assert not reading.done()

        release.set()
        await writing
        assert await reading is None


class TestSections:
    async def test_list_orders_by_display_order_then_name(self, store: MetadataStore) -> None:
        await _section(store, "Beta", 1)
        await _section(store, "Alpha", 1)
        await _section(store, "Zulu", 0)

        names = [s["name"] for s in await store.list_sections()]

        assert names == ["Zulu", "Alpha", "Beta"]

    async def test_list_with_empty_id_filter(self, store: MetadataStore) -> None:
        await _section(store)
        assert await store.list_sections([]) == []

    async def test_workspaces_are_attached(self, store: MetadataStore) -> None:
        section_id = await _section(store)
        await store.create_workspace("ws-2", "Second", section_id=section_id)
        await store.create_workspace("ws-1", "First", section_id=section_id)
        await store.create_workspace("ws-3", "Loose")

        section = await store.get_section(section_id, with_workspaces=True)

        assert [w["name"] for w in section["workspaces"]] == ["First", "Second"]
        assert "workspaces" not in await store.get_section(section_id)

    async def test_max_display_order(self, store: MetadataStore) -> None:
        assert await store.max_display_order() is None
        await _section(store, "A", 4)
        await _section(store, "B", 2)
        assert await store.max_display_order() == 4

    async def test_update_rejects_unknown_columns(self, store: MetadataStore) -> None:
        section_id = await _section(store)

        updated = await store.update_section(section_id, {"name": "Renamed", "id": "hijack", "bogus": 1})

        assert updated["name"] == "Renamed"
        assert updated["id"] == section_id

    async def test_update_missing_section(self, store: MetadataStore) -> None:
        assert await store.update_section("missing", {"name": "x"}) is None

    async def test_delete_cascades_members_and_detaches_workspaces(
        self, store: MetadataStore
    ) -> None:
        section_id = await _section(store)
        await store.upsert_section_member(section_id, "alice", "admin", None)
        await store.create_workspace("ws-1", "First", section_id=section_id)

        assert await store.delete_section(section_id)

        assert await store.list_memberships_for_user("alice") == []
        assert await store.list_workspace_section_ids("alice") == []
        assert await store.delete_section(section_id) is False


class TestMembers:
    async def test_upsert_keeps_one_row(self, store: MetadataStore) -> None:
        section_id = await _section(store)

        first = await store.upsert_section_member(section_id, "alice", "viewer", None)
        second = await store.upsert_section_member(section_id, "alice", "admin", None)

        assert second["role"] == "admin"
        assert second["created_at"] == first["created_at"]
        assert len(await store.list_section_members(section_id)) == 1

    async def test_invalid_role_rejected(self, store: MetadataStore) -> None:
        section_id = await _section(store)
        with pytest.raises(aiosqlite.IntegrityError):
            await store.upsert_section_member(section_id, "alice", "owner", None)

    async def test_update_missing_member(self, store: MetadataStore) -> None:
        section_id = await _section(store)
        assert await store.update_section_member(section_id, "alice", "admin", None) is None

    async def test_delete_user_cascades(self, store: MetadataStore) -> None:
        section_id = await _section(store)
        await store.upsert_section_member(section_id, "alice", "viewer", None)
        await store.create_workspace("ws-1", "First", section_id=section_id)
        await store.add_workspace_member("ws-1", "alice")

        assert await store.delete_user("alice")

        assert await store.get_user("alice") is None
        assert await store.get_section_member(section_id, "alice") is None
        assert await store.get_workspace_member("ws-1", "alice") is None

    async def test_workspace_section_ids(self, store: MetadataStore) -> None:
        section_id = await _section(store)
        await store.create_workspace("ws-1", "First", section_id=section_id)
        await store.create_workspace("ws-2", "Second", section_id=section_id)
        await store.create_workspace("ws-3", "Loose")
        for ws in ("ws-1", "ws-2", "ws-3"):
            await store.add_workspace_member(ws, "bob")

        assert await store.list_workspace_section_ids("bob") == [section_id]

    async def test_deleting_catalog_role_clears_reference(
        self, seeded_store: MetadataStore
    ) -> None:
        section_id = await _section(seeded_store)
        admin = await seeded_store.get_role_by_slug("section_admin")
        await seeded_store.upsert_section_member(section_id, "alice", "admin", admin["id"])

        async with seeded_store.transaction():
            await seeded_store.db.execute("DELETE FROM roles WHERE id = ?", (admin["id"],))

        member = await seeded_store.get_section_member(section_id, "alice")
        assert member["role"] == "admin"
        assert member["role_id"] is None
        assert len(await seeded_store.list_members_without_role_id()) == 1


async def test_stats(store: MetadataStore) -> None:
    await _section(store)
    stats = await store.get_stats()
    assert stats["users"] == 4
    assert stats["sections"] == 1
    assert stats["roles"] == 0


async def test_remove_workspace_member(store: MetadataStore) -> None:
    await store.create_workspace("ws-1", "First")
    await store.add_workspace_member("ws-1", "alice", role="viewer")

    assert (await store.get_workspace_member("ws-1", "alice"))["role"] == "viewer"
    assert await store.remove_workspace_member("ws-1", "alice")
    assert await store.remove_workspace_member("ws-1", "alice") is False
