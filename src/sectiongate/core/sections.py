"""Section lifecycle and membership management."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any, ClassVar

from sectiongate.auth.permissions import GlobalRole, SectionRole, is_global_admin
from sectiongate.core.catalog import RoleSlugMapper
from sectiongate.core.invalidation import InvalidationDispatcher, NullDispatcher
from sectiongate.errors import ConflictError, NotFoundError
from sectiongate.events.bus import EventBus
from sectiongate.events.types import EventType
from sectiongate.models.section import Section, SectionMember
from sectiongate.storage.base import MembershipBackend

logger = logging.getLogger(__name__)


class SectionService:
    """Creates, updates and removes sections and their memberships.

    Every membership mutation ends with a call to the invalidation
    dispatcher for the affected user, after the store write has committed.
    """

    _UPDATABLE_FIELDS: ClassVar[set[str]] = {"name", "description", "icon", "display_order"}

    def __init__(
        self,
        store: MembershipBackend,
        mapper: RoleSlugMapper,
        dispatcher: InvalidationDispatcher | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        """Initialize SectionService.

        Args:
            store: Membership storage backend
            mapper: Legacy role to catalog role translation
            dispatcher: Permission-change side effects; defaults to a no-op
            event_bus: Optional bus for section lifecycle events
        """
        self._store = store
        self._mapper = mapper
        self._dispatcher: InvalidationDispatcher = dispatcher or NullDispatcher()
        self._event_bus = event_bus

    # --- Sections ---

    async def list_accessible_sections(
        self, user_id: str, global_role: GlobalRole | str | None
    ) -> list[Section]:
        """Sections a user can see, ordered by display order then name.

        Global administrators see every section. Everyone else sees sections
        they are a direct member of plus sections reachable through a
        workspace membership.
        """
        if is_global_admin(global_role):
            return [Section(**s) for s in await self._store.list_sections()]

        section_ids = {m["section_id"] for m in await self._store.list_memberships_for_user(user_id)}
        section_ids.update(await self._store.list_workspace_section_ids(user_id))
        if not section_ids:
            return []

        rows = await self._store.list_sections(sorted(section_ids))
        return [Section(**s) for s in rows]

    async def get_section(self, section_id: str) -> Section | None:
        data = await self._store.get_section(section_id, with_workspaces=True)
        return Section(**data) if data else None

    async def create_section(
        self,
        *,
        name: str,
        creator_id: str,
        description: str | None = None,
        icon: str | None = None,
        display_order: int | None = None,
    ) -> Section:
        """Create a section and make its creator a section admin.

        The section row and the creator's membership are written in one
        transaction.

        Raises:
            ValueError: If name is empty or whitespace-only
            NotFoundError: If the creator is not a known user
        """
        name = _clean_name(name)
        assignment = await self._mapper.assignment_for(SectionRole.ADMIN)

        async with self._store.transaction():
            await self._require_user(creator_id)
            if display_order is None:
                max_order = await self._store.max_display_order()
                display_order = (max_order if max_order is not None else -1) + 1

            section = Section(
                name=name,
                description=description,
                icon=icon,
                display_order=display_order,
            )
            await self._store.insert_section(section.to_storage())
            await self._store.upsert_section_member(
                section.id, creator_id, assignment.role.value, assignment.role_id
            )

        logger.info("Created section: %s (id=%s, order=%d)", section.name, section.id, display_order)
        self._dispatcher.notify_permissions_changed(creator_id)
        await self._emit(EventType.SECTION_CREATED, {"section_id": section.id, "name": section.name})
        return section

    async def update_section(self, section_id: str, **updates: Any) -> Section:
        """Apply a partial update to a section.

        Raises:
            ValueError: If a new name is empty or whitespace-only
            NotFoundError: If the section does not exist
        """
        filtered = {k: v for k, v in updates.items() if k in self._UPDATABLE_FIELDS}
        if "name" in filtered:
            filtered["name"] = _clean_name(filtered["name"])
        filtered["updated_at"] = datetime.now(UTC).isoformat()

        data = await self._store.update_section(section_id, filtered)
        if data is None:
            raise NotFoundError(f"Section not found: {section_id}")

        await self._emit(
            EventType.SECTION_UPDATED,
            {"section_id": section_id, "fields": sorted(k for k in filtered if k != "updated_at")},
        )
        return Section(**data)

    async def remove_section(self, section_id: str) -> None:
        """Delete an empty section.

        Raises:
            NotFoundError: If the section does not exist
            ConflictError: If workspaces are still placed under the section
        """
        async with self._store.transaction():
            section = await self._store.get_section(section_id, with_workspaces=True)
            if not section:
                raise NotFoundError(f"Section not found: {section_id}")

            if section["workspaces"]:
                raise ConflictError(
                    f"Section {section_id} still contains {len(section['workspaces'])} "
                    "workspace(s). Move or delete them first."
                )

            members = await self._store.list_section_members(section_id)
            await self._store.delete_section(section_id)
        logger.info("Removed section %s", section_id)

        for member in members:
            self._dispatcher.notify_permissions_changed(member["user_id"])
        await self._emit(EventType.SECTION_REMOVED, {"section_id": section_id})

    async def reorder(self, section_ids: list[str]) -> None:
        """Set each section's display order to its position in section_ids.

        All updates run in one transaction. Unknown IDs are skipped.
        """
        async with self._store.transaction():
            for position, section_id in enumerate(section_ids):
                if not await self._store.set_display_order(section_id, position):
                    logger.warning("Skipping unknown section %s in reorder", section_id)

        await self._emit(EventType.SECTIONS_REORDERED, {"section_ids": list(section_ids)})

    # --- Members ---

    async def list_members(self, section_id: str) -> list[SectionMember]:
        return [SectionMember(**m) for m in await self._store.list_section_members(section_id)]

    async def grant_or_update_member(
        self,
        section_id: str,
        user_id: str,
        role: SectionRole = SectionRole.VIEWER,
        role_id: str | None = None,
    ) -> SectionMember:
        """Grant a section role, or change it if the user is already a member.

        Raises:
            NotFoundError: If the section or the user does not exist
        """
        assignment = await self._mapper.assignment_for(role, role_id)

        async with self._store.transaction():
            if not await self._store.get_section(section_id):
                raise NotFoundError(f"Section not found: {section_id}")
            await self._require_user(user_id)
            data = await self._store.upsert_section_member(
                section_id, user_id, assignment.role.value, assignment.role_id
            )
        logger.info("Granted %s on section %s to %s", assignment.role.value, section_id, user_id)

        self._dispatcher.notify_permissions_changed(user_id)
        return SectionMember(**data)

    async def update_member_role(
        self,
        section_id: str,
        user_id: str,
        role: SectionRole,
        role_id: str | None = None,
    ) -> SectionMember:
        """Change the role of an existing member.

        Raises:
            NotFoundError: If the user is not a member of the section
        """
        assignment = await self._mapper.assignment_for(role, role_id)
        data = await self._store.update_section_member(
            section_id, user_id, assignment.role.value, assignment.role_id
        )
        if data is None:
            raise NotFoundError(f"Member not found: {user_id} in section {section_id}")
        logger.info(
            "Changed role of %s on section %s to %s", user_id, section_id, assignment.role.value
        )

        self._dispatcher.notify_permissions_changed(user_id)
        return SectionMember(**data)

    async def remove_member(self, section_id: str, user_id: str) -> None:
        """Revoke a user's direct membership.

        Raises:
            NotFoundError: If no membership row was deleted
        """
        if not await self._store.delete_section_member(section_id, user_id):
            raise NotFoundError(f"Member not found: {user_id} in section {section_id}")
        logger.info("Removed %s from section %s", user_id, section_id)

        self._dispatcher.notify_permissions_changed(user_id)

    async def _emit(self, event_type: EventType, data: dict[str, Any]) -> None:
        if self._event_bus is not None:
            await self._event_bus.emit(event_type, data)

    async def _require_user(self, user_id: str) -> None:
        if not await self._store.get_user(user_id):
            raise NotFoundError(f"User not found: {user_id}")


def _clean_name(name: str | None) -> str:
    if not name or not name.strip():
        raise ValueError("Section name cannot be empty")
    return name.strip()
