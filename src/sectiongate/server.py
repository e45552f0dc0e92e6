"""FastMCP server — section and membership tools gated by access resolution."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Annotated, Any, Literal

from fastmcp import FastMCP
from pydantic import Field

from sectiongate.auth.permissions import GlobalRole, SectionRole, is_global_admin
from sectiongate.config import Config
from sectiongate.core.catalog import SECTION_ROLE_SLUGS, SLUG_MAP_VERSION, seed_system_roles
from sectiongate.core.rbac import has_permission_in_set
from sectiongate.core.wiring import Engines, build_engines
from sectiongate.errors import AccessDeniedError, SectionGateError
from sectiongate.storage.metadata_store import MetadataStore

logger = logging.getLogger(__name__)


def _json(data: dict[str, Any]) -> str:
    return json.dumps(data, default=str)


def _ok(data: dict[str, Any]) -> str:
    """Return a versioned JSON success response."""
    return _json({**data, "_v": "1.0"})


def _err(msg: str, code: str = "invalid") -> str:
    """Return a versioned JSON error response."""
    return _json({"_v": "1.0", "error": msg, "code": code})


def _require_global_admin(caller_role: str) -> None:
    if not is_global_admin(caller_role):
        raise AccessDeniedError("Only global administrators can do this")


class ServerContext:
    """Engines shared by the tools of one server, opened on first use."""

    def __init__(self, db_path: str, config: Config | None = None) -> None:
        self.db_path = db_path
        self.config = config or Config()
        self._engines: Engines | None = None
        self._init_failed = False
        self._lock = asyncio.Lock()

    async def engines(self) -> Engines:
        async with self._lock:
            if self._init_failed:
                raise RuntimeError(f"sectiongate init previously failed for {self.db_path}")
            if self._engines is None:
                store = MetadataStore(Path(self.db_path), wal_mode=self.config.wal_mode)
                try:
                    await store.initialize()
                    if self.config.seed_catalog_on_init:
                        await seed_system_roles(store)
                except Exception as e:
                    self._init_failed = True
                    await store.close()
                    logger.error("Failed to initialize database: %s", e)
                    raise RuntimeError(f"sectiongate init failed: {self.db_path}") from e
                self._engines = build_engines(store, self.config)
            return self._engines

    async def aclose(self) -> None:
        """Wait for pending pushes, then close the store. Safe to call twice."""
        async with self._lock:
            engines, self._engines = self._engines, None
        if engines is not None:
            await engines.dispatcher.drain()
            await engines.store.close()


def create_server(
    db_path: str,
    config: Config | None = None,
    *,
    context: ServerContext | None = None,
) -> FastMCP:
    """Create FastMCP server with section and member tools."""
    ctx = context or ServerContext(db_path, config)

    @asynccontextmanager
    async def lifespan(server: FastMCP) -> AsyncIterator[dict[str, Any]]:
        try:
            yield {}
        finally:
            await ctx.aclose()

    mcp = FastMCP("sectiongate", version="0.1.0", lifespan=lifespan)

    # ── sg_section ────────────────────────────────────────────

    @mcp.tool()
    async def sg_section(
        action: Annotated[
            Literal["list", "get", "create", "update", "remove", "reorder", "my_roles"],
            Field(description="list | get | create | update | remove | reorder | my_roles"),
        ],
        caller_id: Annotated[str, Field(description="Authenticated user ID")],
        caller_role: Annotated[
            GlobalRole,
            Field(description="Global role of the caller: admin | manager | employee"),
        ],
        section_id: Annotated[
            str | None,
            Field(description="Section ID (get, update, remove)"),
        ] = None,
        name: Annotated[
            str | None,
            Field(description="Section name (create, update)"),
        ] = None,
        description: Annotated[
            str | None,
            Field(description="Section description (create, update)"),
        ] = None,
        icon: Annotated[
            str | None,
            Field(description="Icon name (create, update)"),
        ] = None,
        display_order: Annotated[
            int | None,
            Field(description="Display order; omitted on create appends to the end", ge=0),
        ] = None,
        section_ids: Annotated[
            list[str] | None,
            Field(description="Section IDs in their new order (reorder)"),
        ] = None,
    ) -> str:
        """Sections: list visible ones, read, create, edit, delete, reorder, and show the caller's role per section."""  # noqa: E501
        e = await ctx.engines()

        try:
            if action == "list":
                sections = await e.sections.list_accessible_sections(caller_id, caller_role)
                items = [s.to_response(detail="full") for s in sections]
                return _ok({"count": len(items), "sections": items})

            if action == "my_roles":
                roles = await e.resolver.get_my_roles(caller_id, caller_role)
                return _ok({"roles": {k: v.value for k, v in roles.items()}})

            if action == "reorder":
                _require_global_admin(caller_role)
                if not section_ids:
                    return _err("section_ids is required for reorder")
                await e.sections.reorder(section_ids)
                return _ok({"reordered": len(section_ids)})

            if action == "create":
                _require_global_admin(caller_role)
                if not name or not name.strip():
                    return _err("name is required for create")
                section = await e.sections.create_section(
                    name=name,
                    creator_id=caller_id,
                    description=description,
                    icon=icon,
                    display_order=display_order,
                )
                return _ok(section.to_response(detail="full"))

            if not section_id or not section_id.strip():
                return _err(f"section_id is required for {action}")
            section_id = section_id.strip()

            if action == "get":
                await e.resolver.require_access(section_id, caller_id, caller_role)
                section = await e.sections.get_section(section_id)
                if section is None:
                    return _err(f"Section not found: {section_id}", "not_found")
                return _ok(section.to_response(detail="full"))

            if action == "update":
                await e.resolver.require_access(
                    section_id, caller_id, caller_role, SectionRole.ADMIN
                )
                updates = {
                    k: v
                    for k, v in {
                        "name": name.strip() if name else None,
                        "description": description,
                        "icon": icon,
                        "display_order": display_order,
                    }.items()
                    if v is not None
                }
                section = await e.sections.update_section(section_id, **updates)
                return _ok(section.to_response(detail="full"))

            if action == "remove":
                _require_global_admin(caller_role)
                await e.sections.remove_section(section_id)
                return _ok({"removed": "section", "id": section_id})

        except SectionGateError as exc:
            return _err(str(exc), exc.code)
        except ValueError as exc:
            return _err(str(exc))

        return _err(f"Unknown action: {action}")

    # ── sg_member ─────────────────────────────────────────────

    @mcp.tool()
    async def sg_member(
        action: Annotated[
            Literal["list", "grant", "update", "remove", "check", "can"],
            Field(description="list | grant | update | remove | check | can"),
        ],
        caller_id: Annotated[str, Field(description="Authenticated user ID")],
        caller_role: Annotated[
            GlobalRole,
            Field(description="Global role of the caller: admin | manager | employee"),
        ],
        section_id: Annotated[str, Field(description="Section ID")],
        user_id: Annotated[
            str | None,
            Field(description="Target user ID (grant, update, remove)"),
        ] = None,
        role: Annotated[
            SectionRole,
            Field(description="Section role: viewer | admin (grant, update; check: minimum)"),
        ] = SectionRole.VIEWER,
        permission: Annotated[
            str | None,
            Field(description="Catalog permission key to test (can), e.g. section:update"),
        ] = None,
    ) -> str:
        """Section membership: list members, grant, change or revoke a role, check the caller's effective access and catalog permissions."""  # noqa: E501
        e = await ctx.engines()
        section_id = section_id.strip()

        try:
            if action == "check":
                access = await e.resolver.resolve_access(section_id, caller_id, caller_role, role)
                if access is None:
                    return _ok({"access": None, "section_id": section_id})
                return _ok({"access": access.to_response()})

            if action == "can":
                if not permission or not permission.strip():
                    return _err("permission is required for can")
                granted = await e.permissions.get_effective_permissions(
                    caller_id, caller_role, section_id
                )
                return _ok(
                    {
                        "section_id": section_id,
                        "permission": permission.strip(),
                        "allowed": has_permission_in_set(permission.strip(), granted),
                        "granted": sorted(granted),
                    }
                )

            if action == "list":
                await e.resolver.require_access(section_id, caller_id, caller_role)
                members = await e.sections.list_members(section_id)
                return _ok(
                    {"count": len(members), "members": [m.to_response() for m in members]}
                )

            await e.resolver.require_access(section_id, caller_id, caller_role, SectionRole.ADMIN)
            if not user_id or not user_id.strip():
                return _err(f"user_id is required for {action}")
            user_id = user_id.strip()

            if action == "grant":
                member = await e.sections.grant_or_update_member(section_id, user_id, role)
                return _ok(member.to_response())

            if action == "update":
                member = await e.sections.update_member_role(section_id, user_id, role)
                return _ok(member.to_response())

            if action == "remove":
                await e.sections.remove_member(section_id, user_id)
                return _ok({"removed": "member", "section_id": section_id, "user_id": user_id})

        except SectionGateError as exc:
            return _err(str(exc), exc.code)

        return _err(f"Unknown action: {action}")

    # ── Resources ─────────────────────────────────────────────

    @mcp.resource("sg://catalog")
    async def catalog_resource() -> str:
        """System role catalog with permission keys."""
        e = await ctx.engines()
        roles = await e.store.list_roles()
        return _json(
            {
                "_v": "1.0",
                "slug_map_version": SLUG_MAP_VERSION,
                "section_role_slugs": {k.value: v for k, v in SECTION_ROLE_SLUGS.items()},
                "roles": roles,
            }
        )

    return mcp
