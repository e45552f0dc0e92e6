"""sectiongate data models."""

from sectiongate.models.role import CatalogRole
from sectiongate.models.section import (
    AccessSource,
    EffectiveAccess,
    RoleAssignment,
    Section,
    SectionMember,
    Workspace,
)

__all__ = [
    "AccessSource",
    "CatalogRole",
    "EffectiveAccess",
    "RoleAssignment",
    "Section",
    "SectionMember",
    "Workspace",
]
