"""Hierarchical access resolution for sections."""

from __future__ import annotations

import logging

from sectiongate.auth.permissions import GlobalRole, SectionRole, is_global_admin, satisfies
from sectiongate.errors import AccessDeniedError
from sectiongate.models.section import AccessSource, EffectiveAccess
from sectiongate.storage.base import MembershipBackend

logger = logging.getLogger(__name__)


class AccessResolver:
    """Resolves a user's effective role on a section.

    Order of precedence: global administrator, then direct section
    membership, then membership in any workspace under the section. Access
    inherited from a workspace is capped at viewer.
    """

    def __init__(self, store: MembershipBackend) -> None:
        self._store = store

    async def resolve_access(
        self,
        section_id: str,
        user_id: str,
        global_role: GlobalRole | str | None,
        required_role: SectionRole | None = None,
    ) -> EffectiveAccess | None:
        """Compute effective access, or None when the user has no (sufficient) access.

        Args:
            section_id: Section to check
            user_id: User whose access is resolved
            global_role: Platform-wide role of the user
            required_role: Optional minimum section role

        Returns:
            EffectiveAccess if the user has access meeting required_role, None otherwise
        """
        if is_global_admin(global_role):
            return EffectiveAccess(
                section_id=section_id,
                user_id=user_id,
                role=SectionRole.ADMIN,
                source=AccessSource.GLOBAL,
            )

        member = await self._store.get_section_member(section_id, user_id)
        if member:
            role = SectionRole(member["role"])
            if required_role is not None and not satisfies(role, required_role):
                return None
            return EffectiveAccess(
                section_id=section_id,
                user_id=user_id,
                role=role,
                source=AccessSource.DIRECT,
            )

        section = await self._store.get_section(section_id, with_workspaces=True)
        if not section:
            return None

        for workspace in section["workspaces"]:
            if await self._store.get_workspace_member(workspace["id"], user_id):
                if required_role is not None and not satisfies(SectionRole.VIEWER, required_role):
                    return None
                return EffectiveAccess(
                    section_id=section_id,
                    user_id=user_id,
                    role=SectionRole.VIEWER,
                    source=AccessSource.WORKSPACE,
                )

        return None

    async def require_access(
        self,
        section_id: str,
        user_id: str,
        global_role: GlobalRole | str | None,
        required_role: SectionRole | None = None,
    ) -> EffectiveAccess:
        """Like resolve_access, but raises AccessDeniedError instead of returning None."""
        access = await self.resolve_access(section_id, user_id, global_role, required_role)
        if access is None:
            logger.info(
                "Denied %s on section %s (required=%s)",
                user_id,
                section_id,
                required_role.value if required_role else "any",
            )
            raise AccessDeniedError(f"Insufficient permission for section {section_id}")
        return access

    async def get_my_roles(
        self, user_id: str, global_role: GlobalRole | str | None
    ) -> dict[str, SectionRole]:
        """Effective role of a user in every section they can reach."""
        if is_global_admin(global_role):
            return {s["id"]: SectionRole.ADMIN for s in await self._store.list_sections()}

        roles: dict[str, SectionRole] = {}
        for member in await self._store.list_memberships_for_user(user_id):
            roles[member["section_id"]] = SectionRole(member["role"])

        for section_id in await self._store.list_workspace_section_ids(user_id):
            roles.setdefault(section_id, SectionRole.VIEWER)

        return roles
