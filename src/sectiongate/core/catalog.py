"""Role catalog: system roles and the legacy role to slug mapping."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType

from sectiongate.auth.permissions import GlobalRole, SectionRole
from sectiongate.core.invalidation import InvalidationDispatcher
from sectiongate.models.role import CatalogRole
from sectiongate.models.section import RoleAssignment
from sectiongate.storage.base import MembershipBackend

logger = logging.getLogger(__name__)

# Bump when a slug mapping changes so backfills can be re-run deliberately.
SLUG_MAP_VERSION = 1

SECTION_ROLE_SLUGS: Mapping[SectionRole, str] = MappingProxyType(
    {
        SectionRole.ADMIN: "section_admin",
        SectionRole.VIEWER: "section_viewer",
    }
)

GLOBAL_ROLE_SLUGS: Mapping[GlobalRole, str] = MappingProxyType(
    {
        GlobalRole.ADMIN: "super_admin",
        GlobalRole.MANAGER: "department_head",
        GlobalRole.EMPLOYEE: "employee",
    }
)


@dataclass(frozen=True)
class SystemRoleDefinition:
    """Seed data for an immutable system role."""

    id: str
    slug: str
    name: str
    scope: str
    description: str
    permissions: tuple[str, ...]
    is_default: bool = False

    def to_catalog_role(self) -> CatalogRole:
        return CatalogRole(
            id=self.id,
            slug=self.slug,
            name=self.name,
            scope=self.scope,
            description=self.description,
            permissions=list(self.permissions),
            is_system=True,
            is_default=self.is_default,
        )


SYSTEM_ROLES: tuple[SystemRoleDefinition, ...] = (
    # Global -------------------------------------------------------------
    SystemRoleDefinition(
        id="00000000-0000-4000-a000-000000000001",
        slug="super_admin",
        name="Super administrator",
        scope="global",
        description="Full access to every platform feature.",
        permissions=("*",),
    ),
    SystemRoleDefinition(
        id="00000000-0000-4000-a000-000000000002",
        slug="department_head",
        name="Department head",
        scope="global",
        description="Department lead with access to global analytics.",
        permissions=("global:analytics:read",),
    ),
    SystemRoleDefinition(
        id="00000000-0000-4000-a000-000000000003",
        slug="employee",
        name="Employee",
        scope="global",
        description="Base role. Access comes from section and workspace roles.",
        permissions=(),
        is_default=True,
    ),
    # Section ------------------------------------------------------------
    SystemRoleDefinition(
        id="00000000-0000-4000-a000-000000000011",
        slug="section_admin",
        name="Section administrator",
        scope="section",
        description="Edit the section and manage its members.",
        permissions=("section:*",),
    ),
    SystemRoleDefinition(
        id="00000000-0000-4000-a000-000000000012",
        slug="section_viewer",
        name="Section viewer",
        scope="section",
        description="View the section and its workspace list.",
        permissions=("section:read",),
        is_default=True,
    ),
    # Workspace ----------------------------------------------------------
    SystemRoleDefinition(
        id="00000000-0000-4000-a000-000000000021",
        slug="ws_admin",
        name="Workspace administrator",
        scope="workspace",
        description="Settings, members and all data of a workspace.",
        permissions=("workspace:*",),
    ),
    SystemRoleDefinition(
        id="00000000-0000-4000-a000-000000000022",
        slug="ws_editor",
        name="Editor",
        scope="workspace",
        description="Work with records, comments and tasks.",
        permissions=(
            "workspace:entity:*",
            "workspace:entity.field.*:*",
            "workspace:comment:*",
            "workspace:bpmn.task:*",
            "workspace:analytics:read",
        ),
        is_default=True,
    ),
    SystemRoleDefinition(
        id="00000000-0000-4000-a000-000000000023",
        slug="ws_viewer",
        name="Viewer",
        scope="workspace",
        description="Read-only access to records, comments and analytics.",
        permissions=(
            "workspace:entity:read",
            "workspace:entity.field.*:read",
            "workspace:comment:read",
            "workspace:analytics:read",
        ),
    ),
)


class RoleSlugMapper:
    """Translates legacy section roles into catalog role IDs."""

    def __init__(
        self,
        store: MembershipBackend,
        slugs: Mapping[SectionRole, str] = SECTION_ROLE_SLUGS,
    ) -> None:
        self._store = store
        self._slugs = slugs

    def slug_for(self, role: SectionRole) -> str | None:
        return self._slugs.get(SectionRole(role))

    async def resolve_role_id(self, role: SectionRole) -> str | None:
        """Look up the catalog role ID for a legacy role.

        Returns None when the role has no slug or the catalog has no entry for
        it; legacy assignment keeps working without the catalog.
        """
        slug = self.slug_for(role)
        if slug is None:
            return None
        catalog_role = await self._store.get_role_by_slug(slug)
        return catalog_role["id"] if catalog_role else None

    async def assignment_for(
        self, role: SectionRole | str, role_id: str | None = None
    ) -> RoleAssignment:
        """Build the assignment to store for a legacy role.

        An explicit role_id wins over the catalog lookup.
        """
        role = SectionRole(role)
        return RoleAssignment(role=role, role_id=role_id or await self.resolve_role_id(role))


async def seed_system_roles(store: MembershipBackend) -> list[CatalogRole]:
    """Upsert every system role by slug."""
    seeded = []
    async with store.transaction():
        for definition in SYSTEM_ROLES:
            stored = await store.upsert_role(definition.to_catalog_role().to_storage())
            seeded.append(CatalogRole(**stored))
    logger.info("Seeded %d system roles", len(seeded))
    return seeded


async def backfill_section_role_ids(
    store: MembershipBackend,
    mapper: RoleSlugMapper,
    dispatcher: InvalidationDispatcher | None = None,
) -> int:
    """Fill in catalog role IDs for member rows that predate the catalog.

    The legacy role is left untouched. Returns the number of rows updated.
    """
    assigned = 0
    touched_users: set[str] = set()
    async with store.transaction():
        for member in await store.list_members_without_role_id():
            assignment = await mapper.assignment_for(member["role"])
            if assignment.role_id is None:
                continue
            await store.update_section_member(
                member["section_id"],
                member["user_id"],
                assignment.role.value,
                assignment.role_id,
            )
            touched_users.add(member["user_id"])
            assigned += 1

    if dispatcher is not None:
        for user_id in sorted(touched_users):
            dispatcher.notify_permissions_changed(user_id)
    logger.info(
        "Backfilled catalog roles for %d section members (slug map v%d)",
        assigned,
        SLUG_MAP_VERSION,
    )
    return assigned
