"""Role hierarchy for section-level access checks."""

from __future__ import annotations

from enum import StrEnum


class SectionRole(StrEnum):
    VIEWER = "viewer"
    ADMIN = "admin"


class GlobalRole(StrEnum):
    ADMIN = "admin"
    MANAGER = "manager"
    EMPLOYEE = "employee"


_ROLE_HIERARCHY = {
    SectionRole.VIEWER: 0,
    SectionRole.ADMIN: 1,
}


def rank(role: SectionRole | str) -> int:
    """Return the position of a section role in the hierarchy.

    Raises:
        ValueError: If the role is not a known section role
    """
    return _ROLE_HIERARCHY[SectionRole(role)]


def satisfies(actual: SectionRole | str, required: SectionRole | str) -> bool:
    """Check if a role meets a minimum required role."""
    return rank(actual) >= rank(required)


def is_global_admin(global_role: GlobalRole | str | None) -> bool:
    """Global administrators bypass every section-level check."""
    return global_role == GlobalRole.ADMIN
