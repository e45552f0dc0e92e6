"""Abstract membership storage interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from typing import Any


class MembershipBackend(ABC):
    """Abstract interface for section membership storage backends."""

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize database schema and connections."""

    @abstractmethod
    async def close(self) -> None:
        """Close all connections."""

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[None]:
        """Group writes into one atomic unit. Nested use joins the outer unit."""

    # --- Users ---

    @abstractmethod
    async def get_user(self, user_id: str) -> dict[str, Any] | None:
        """Get a user by ID."""

    # --- Section operations ---

    @abstractmethod
    async def insert_section(self, section: dict[str, Any]) -> dict[str, Any]:
        """Insert a section. Returns the inserted section."""

    @abstractmethod
    async def get_section(
        self, section_id: str, *, with_workspaces: bool = False
    ) -> dict[str, Any] | None:
        """Get a section by ID, optionally with its ``workspaces`` list."""

    @abstractmethod
    async def list_sections(self, section_ids: list[str] | None = None) -> list[dict[str, Any]]:
        """List sections with workspaces, ordered by display order then name."""

    @abstractmethod
    async def max_display_order(self) -> int | None:
        """Highest display order in use, or None when there are no sections."""

    @abstractmethod
    async def update_section(
        self, section_id: str, updates: dict[str, Any]
    ) -> dict[str, Any] | None:
        """Apply a partial update. Returns the refreshed section."""

    @abstractmethod
    async def set_display_order(self, section_id: str, display_order: int) -> bool:
        """Set a section's display order. Returns False for unknown sections."""

    @abstractmethod
    async def delete_section(self, section_id: str) -> bool:
        """Delete a section. Members cascade."""

    # --- Section member operations ---

    @abstractmethod
    async def get_section_member(self, section_id: str, user_id: str) -> dict[str, Any] | None:
        """Get a member row by composite key."""

    @abstractmethod
    async def upsert_section_member(
        self, section_id: str, user_id: str, role: str, role_id: str | None
    ) -> dict[str, Any]:
        """Insert a member row or update role and role_id of the existing one."""

    @abstractmethod
    async def update_section_member(
        self, section_id: str, user_id: str, role: str, role_id: str | None
    ) -> dict[str, Any] | None:
        """Update an existing member row. Returns None when it does not exist."""

    @abstractmethod
    async def delete_section_member(self, section_id: str, user_id: str) -> bool:
        """Delete a member row. Returns False when nothing was deleted."""

    @abstractmethod
    async def list_section_members(self, section_id: str) -> list[dict[str, Any]]:
        """Members of a section ordered by creation time."""

    @abstractmethod
    async def list_memberships_for_user(self, user_id: str) -> list[dict[str, Any]]:
        """All section member rows of a user."""

    @abstractmethod
    async def list_members_without_role_id(self) -> list[dict[str, Any]]:
        """Member rows that have no catalog role reference yet."""

    # --- Workspace membership (read-only signal) ---

    @abstractmethod
    async def get_workspace_member(
        self, workspace_id: str, user_id: str
    ) -> dict[str, Any] | None:
        """Get a workspace member row by composite key."""

    @abstractmethod
    async def list_workspace_section_ids(self, user_id: str) -> list[str]:
        """Section IDs of the workspaces a user is a member of."""

    # --- Role catalog ---

    @abstractmethod
    async def get_role_by_slug(self, slug: str) -> dict[str, Any] | None:
        """Get a catalog role by slug."""

    @abstractmethod
    async def get_role(self, role_id: str) -> dict[str, Any] | None:
        """Get a catalog role by ID."""

    @abstractmethod
    async def upsert_role(self, role: dict[str, Any]) -> dict[str, Any]:
        """Insert a catalog role or refresh the one with the same slug."""

    @abstractmethod
    async def list_roles(self, scope: str | None = None) -> list[dict[str, Any]]:
        """List catalog roles, optionally filtered by scope."""
