"""Section, membership and effective access models."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from sectiongate.auth.permissions import SectionRole, satisfies


class Workspace(BaseModel):
    """A workspace placed under a section. Owned by the workspace service."""

    id: str
    name: str
    section_id: str | None = None
    created_at: str | None = None

    def to_response(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "section_id": self.section_id}


class Section(BaseModel):
    """Top-level container that owns workspaces and section members."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    description: str | None = None
    icon: str | None = None
    display_order: int = 0
    created_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    updated_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    workspaces: list[Workspace] = Field(default_factory=list)

    def to_storage(self) -> dict[str, Any]:
        return self.model_dump(exclude={"workspaces"})

    def to_response(self, *, detail: str = "summary") -> dict[str, Any]:
        data: dict[str, Any] = {
            "_v": "1.0",
            "id": self.id,
            "name": self.name,
            "display_order": self.display_order,
        }
        if detail != "summary":
            data.update(
                {
                    "description": self.description,
                    "icon": self.icon,
                    "workspaces": [w.to_response() for w in self.workspaces],
                    "created_at": self.created_at,
                    "updated_at": self.updated_at,
                }
            )
        return data


class RoleAssignment(BaseModel):
    """A section role in both representations.

    ``role`` is the legacy two-tier role and stays authoritative for access
    decisions. ``role_id`` points at the matching catalog role when one exists.
    """

    model_config = ConfigDict(frozen=True)

    role: SectionRole
    role_id: str | None = None


class SectionMember(BaseModel):
    """A stored grant of a section role to a user."""

    section_id: str
    user_id: str
    role: SectionRole = SectionRole.VIEWER
    role_id: str | None = None
    created_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())

    @property
    def assignment(self) -> RoleAssignment:
        return RoleAssignment(role=self.role, role_id=self.role_id)

    def to_response(self) -> dict[str, Any]:
        return {
            "_v": "1.0",
            "section_id": self.section_id,
            "user_id": self.user_id,
            "role": self.role.value,
            "role_id": self.role_id,
            "created_at": self.created_at,
        }


class AccessSource(StrEnum):
    GLOBAL = "global"
    DIRECT = "direct"
    WORKSPACE = "workspace"


class EffectiveAccess(BaseModel):
    """Computed access of a user to a section. Never persisted."""

    model_config = ConfigDict(frozen=True)

    section_id: str
    user_id: str
    role: SectionRole
    source: AccessSource

    def satisfies(self, required: SectionRole) -> bool:
        return satisfies(self.role, required)

    def to_response(self) -> dict[str, Any]:
        return {
            "_v": "1.0",
            "section_id": self.section_id,
            "user_id": self.user_id,
            "role": self.role.value,
            "source": self.source.value,
        }
