"""Role ordering and global role checks."""

from sectiongate.auth.permissions import GlobalRole, SectionRole, is_global_admin, rank, satisfies

__all__ = ["GlobalRole", "SectionRole", "is_global_admin", "rank", "satisfies"]
