"""Event type constants for sectiongate."""

from enum import StrEnum


class EventType(StrEnum):
    SECTION_CREATED = "section.created"
    SECTION_UPDATED = "section.updated"
    SECTION_REMOVED = "section.removed"
    SECTIONS_REORDERED = "section.reordered"

    PERMISSIONS_CHANGED = "rbac:permissions-changed"
