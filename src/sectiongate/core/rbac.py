"""Catalog permission evaluation with wildcard matching."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from sectiongate.auth.permissions import GlobalRole
from sectiongate.core.cache import PermissionCache
from sectiongate.core.catalog import GLOBAL_ROLE_SLUGS
from sectiongate.storage.base import MembershipBackend

logger = logging.getLogger(__name__)


def match_permission(required: str, granted: str) -> bool:
    """Check if a granted permission key covers a required one.

    Keys are colon-separated segments. ``*`` as a whole segment matches the
    rest of the key; inside a segment, dot parts support the same wildcard
    (``entity.field.*`` covers ``entity.field.abc``).
    """
    if granted == "*":
        return True

    req_parts = required.split(":")
    grant_parts = granted.split(":")

    for i, req in enumerate(req_parts):
        if i >= len(grant_parts):
            return False
        grant = grant_parts[i]
        if grant == "*":
            return True
        if grant != req:
            if "*" in grant and _match_dot_segment(req, grant):
                continue
            return False

    return len(req_parts) == len(grant_parts)


def _match_dot_segment(required: str, granted: str) -> bool:
    req_dots = required.split(".")
    grant_dots = granted.split(".")

    for j, req in enumerate(req_dots):
        if j >= len(grant_dots):
            return False
        if grant_dots[j] == "*":
            return True
        if grant_dots[j] != req:
            return False
    return len(req_dots) == len(grant_dots)


def has_permission_in_set(required: str, granted: Iterable[str]) -> bool:
    return any(match_permission(required, g) for g in granted)


class PermissionService:
    """Computes effective catalog permissions for a user.

    Resolution is additive: the global role's catalog permissions plus the
    catalog role referenced by the user's section membership. Results are
    cached per (user, section) until invalidated or expired.
    """

    def __init__(self, store: MembershipBackend, cache: PermissionCache | None = None) -> None:
        self._store = store
        self._cache = cache

    async def get_effective_permissions(
        self,
        user_id: str,
        global_role: GlobalRole | str,
        section_id: str | None = None,
    ) -> frozenset[str]:
        context_key = f"{global_role}:{section_id or '_'}"
        generation = None
        if self._cache is not None:
            cached = self._cache.get(user_id, context_key)
            if cached is not None:
                return cached
            generation = self._cache.generation(user_id)

        permissions: set[str] = set()

        slug = GLOBAL_ROLE_SLUGS.get(GlobalRole(global_role))
        if slug:
            global_catalog_role = await self._store.get_role_by_slug(slug)
            if global_catalog_role:
                permissions.update(global_catalog_role["permissions"])

        if section_id:
            member = await self._store.get_section_member(section_id, user_id)
            if member and member["role_id"]:
                section_catalog_role = await self._store.get_role(member["role_id"])
                if section_catalog_role:
                    permissions.update(section_catalog_role["permissions"])

        result = frozenset(permissions)
        if self._cache is not None:
            self._cache.set(user_id, context_key, result, generation=generation)
        return result

    async def has_permission(
        self,
        user_id: str,
        global_role: GlobalRole | str,
        permission: str,
        section_id: str | None = None,
    ) -> bool:
        permissions = await self.get_effective_permissions(user_id, global_role, section_id)
        return has_permission_in_set(permission, permissions)
