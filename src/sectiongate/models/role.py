"""Role catalog model."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

VALID_SCOPES = {"global", "section", "workspace"}


class CatalogRole(BaseModel):
    """A role in the permission catalog, addressed by slug."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    slug: str
    name: str
    description: str | None = None
    scope: str
    permissions: list[str] = Field(default_factory=list)
    is_system: bool = False
    is_default: bool = False
    created_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    updated_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())

    def to_storage(self) -> dict[str, Any]:
        return self.model_dump()

    def to_response(self) -> dict[str, Any]:
        return {
            "_v": "1.0",
            "id": self.id,
            "slug": self.slug,
            "name": self.name,
            "scope": self.scope,
            "permissions": self.permissions,
        }
