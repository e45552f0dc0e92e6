"""Tests for the role catalog and the legacy role slug mapping."""

from __future__ import annotations

from sectiongate.auth.permissions import GlobalRole, SectionRole
from sectiongate.core.catalog import (
    GLOBAL_ROLE_SLUGS,
    SECTION_ROLE_SLUGS,
    SYSTEM_ROLES,
    RoleSlugMapper,
    backfill_section_role_ids,
    seed_system_roles,
)
from sectiongate.models.section import RoleAssignment, Section, SectionMember
from sectiongate.storage.metadata_store import MetadataStore

SECTION_ADMIN_ID = "00000000-0000-4000-a000-000000000011"
SECTION_VIEWER_ID = "00000000-0000-4000-a000-000000000012"


class TestSlugMapping:
    def test_every_section_role_has_a_slug(self) -> None:
        assert set(SECTION_ROLE_SLUGS) == set(SectionRole)
        assert SECTION_ROLE_SLUGS[SectionRole.ADMIN] == "section_admin"
        assert SECTION_ROLE_SLUGS[SectionRole.VIEWER] == "section_viewer"

    def test_every_global_role_has_a_slug(self) -> None:
        assert set(GLOBAL_ROLE_SLUGS) == set(GlobalRole)

    def test_mapped_slugs_exist_in_system_catalog(self) -> None:
        slugs = {r.slug for r in SYSTEM_ROLES}
        assert set(SECTION_ROLE_SLUGS.values()) <= slugs
        assert set(GLOBAL_ROLE_SLUGS.values()) <= slugs

    async def test_resolve_without_catalog_returns_none(self, mapper: RoleSlugMapper) -> None:
        assert await mapper.resolve_role_id(SectionRole.ADMIN) is None

    async def test_resolve_with_seeded_catalog(self, seeded_store: MetadataStore) -> None:
        mapper = RoleSlugMapper(seeded_store)
        assert await mapper.resolve_role_id(SectionRole.ADMIN) == SECTION_ADMIN_ID
        assert await mapper.resolve_role_id(SectionRole.VIEWER) == SECTION_VIEWER_ID

    async def test_assignment_for(self, seeded_store: MetadataStore) -> None:
        mapper = RoleSlugMapper(seeded_store)

        resolved = await mapper.assignment_for("viewer")
        explicit = await mapper.assignment_for(SectionRole.ADMIN, "custom-role")

        assert resolved == RoleAssignment(role=SectionRole.VIEWER, role_id=SECTION_VIEWER_ID)
        assert explicit.role == SectionRole.ADMIN
        assert explicit.role_id == "custom-role"

    async def test_custom_mapping_without_entry(self, seeded_store: MetadataStore) -> None:
        mapper = RoleSlugMapper(seeded_store, {SectionRole.ADMIN: "section_owner"})
        assert await mapper.resolve_role_id(SectionRole.ADMIN) is None
        assert await mapper.resolve_role_id(SectionRole.VIEWER) is None


class TestSeeding:
    async def test_seed_creates_all_system_roles(self, store: MetadataStore) -> None:
        seeded = await seed_system_roles(store)

        assert len(seeded) == len(SYSTEM_ROLES)
        roles = await store.list_roles(scope="section")
        assert {r["slug"] for r in roles} == {"section_admin", "section_viewer"}
        admin = await store.get_role_by_slug("section_admin")
        assert admin is not None
        assert admin["permissions"] == ["section:*"]
        assert admin["is_system"] is True

    async def test_seed_is_idempotent_and_keeps_ids(self, store: MetadataStore) -> None:
        await store.upsert_role(
            {
                "id": "custom-id",
                "slug": "section_viewer",
                "name": "Old name",
                "description": None,
                "scope": "section",
                "permissions": [],
                "is_system": False,
                "is_default": False,
                "created_at": "2024-01-01T00:00:00+00:00",
                "updated_at": "2024-01-01T00:00:00+00:00",
            }
        )

        await seed_system_roles(store)
        await seed_system_roles(store)

        viewer = await store.get_role_by_slug("section_viewer")
        assert viewer is not None
        assert viewer["id"] == "custom-id"
        assert viewer["name"] == "Section viewer"
        assert viewer["permissions"] == ["section:read"]
        assert len(await store.list_roles()) == len(SYSTEM_ROLES)


class TestBackfill:
    async def test_backfill_fills_missing_role_ids(
        self, seeded_store: MetadataStore, recorder
    ) -> None:
        section = Section(name="Ops")
        await seeded_store.insert_section(section.to_storage())
        await seeded_store.upsert_section_member(section.id, "alice", "admin", None)
        await seeded_store.upsert_section_member(section.id, "bob", "viewer", None)
        await seeded_store.upsert_section_member(section.id, "carol", "viewer", SECTION_ADMIN_ID)

        count = await backfill_section_role_ids(
            seeded_store, RoleSlugMapper(seeded_store), recorder
        )

        assert count == 2
        alice = await seeded_store.get_section_member(section.id, "alice")
        bob = await seeded_store.get_section_member(section.id, "bob")
        carol = await seeded_store.get_section_member(section.id, "carol")
        assert alice["role_id"] == SECTION_ADMIN_ID
        assert alice["role"] == "admin"
        assert bob["role_id"] == SECTION_VIEWER_ID
        assert carol["role_id"] == SECTION_ADMIN_ID
        assert recorder.calls == ["alice", "bob"]

    async def test_backfill_without_catalog_changes_nothing(
        self, store: MetadataStore, mapper: RoleSlugMapper
    ) -> None:
        section = Section(name="Ops")
        await store.insert_section(section.to_storage())
        await store.upsert_section_member(section.id, "alice", "admin", None)

        assert await backfill_section_role_ids(store, mapper) == 0
        assert (await store.get_section_member(section.id, "alice"))["role_id"] is None


def test_member_exposes_assignment() -> None:
    member = SectionMember(section_id="s1", user_id="alice", role="admin", role_id=SECTION_ADMIN_ID)
    assert member.assignment == RoleAssignment(role=SectionRole.ADMIN, role_id=SECTION_ADMIN_ID)
