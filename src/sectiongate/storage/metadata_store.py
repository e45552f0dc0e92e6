"""SQLite metadata store for users, sections, workspaces and the role catalog."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiosqlite

from sectiongate.storage.base import MembershipBackend

logger = logging.getLogger(__name__)

# Column whitelists per table — prevents SQL injection in UPDATE operations
_ALLOWED_COLUMNS: dict[str, set[str]] = {
    "sections": {"name", "description", "icon", "display_order", "updated_at"},
    "users": {"name", "global_role"},
}


def _validate_update_keys(table: str, updates: dict[str, Any]) -> dict[str, Any]:
    """Filter update dict to only allowed column names."""
    allowed = _ALLOWED_COLUMNS.get(table, set())
    filtered = {k: v for k, v in updates.items() if k in allowed}
    rejected = set(updates.keys()) - allowed - {"id"}
    if rejected:
        logger.warning("Rejected invalid column names for %s: %s", table, rejected)
    return filtered


class MetadataStore(MembershipBackend):
    """SQLite-based store for section membership and the role catalog.

    All tasks share one connection, so uncommitted rows are visible to every
    query on it. Reads from tasks other than the transaction owner therefore
    wait on the same lock as writers.
    """

    def __init__(self, db_path: Path, *, wal_mode: bool = True) -> None:
        self.db_path = db_path
        self.wal_mode = wal_mode
        self._db: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()
        self._tx_owner: asyncio.Task[Any] | None = None

    async def initialize(self) -> None:
        """Create database and apply schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(str(self.db_path))
        self._db.row_factory = aiosqlite.Row

        if self.wal_mode:
            await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA foreign_keys=ON")

        schema_sql = _load_sql("metadata.sql")
        await self._db.executescript(schema_sql)
        await self._db.commit()
        logger.info("Initialized metadata store at %s", self.db_path)

    async def close(self) -> None:
        """Close database connection."""
        if self._db:
            await self._db.close()
            self._db = None
            logger.info("Closed metadata store at %s", self.db_path)

    @property
    def db(self) -> aiosqlite.Connection:
        """Get database connection."""
        if self._db is None:
            raise RuntimeError("Store not initialized. Call initialize() first.")
        return self._db

    def _owns_transaction(self) -> bool:
        return self._tx_owner is not None and self._tx_owner is asyncio.current_task()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Run the enclosed writes in one transaction.

        Writers are serialized on a lock. A task that already owns the open
        transaction joins it instead of starting a new one.
        """
        if self._owns_transaction():
            yield
            return

        async with self._write_lock:
            await self.db.execute("BEGIN IMMEDIATE")
            self._tx_owner = asyncio.current_task()
            try:
                yield
            except BaseException:
                await self.db.rollback()
                raise
            else:
                await self.db.commit()
            finally:
                self._tx_owner = None

    @asynccontextmanager
    async def _reading(self) -> AsyncIterator[None]:
        """Hold off until no other task has a transaction open."""
        if self._owns_transaction():
            yield
            return
        async with self._write_lock:
            yield

    async def _fetchone(self, sql: str, params: Iterable[Any] = ()) -> aiosqlite.Row | None:
        async with self._reading():
            cursor = await self.db.execute(sql, tuple(params))
            return await cursor.fetchone()

    async def _fetchall(self, sql: str, params: Iterable[Any] = ()) -> list[aiosqlite.Row]:
        async with self._reading():
            cursor = await self.db.execute(sql, tuple(params))
            return list(await cursor.fetchall())

    # --- Users ---

    async def create_user(
        self,
        user_id: str,
        email: str,
        name: str,
        *,
        global_role: str = "employee",
    ) -> dict[str, Any]:
        """Create a new user."""
        now = datetime.now(UTC).isoformat()
        async with self.transaction():
            await self.db.execute(
                """INSERT INTO users (user_id, email, name, global_role, created_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (user_id, email, name, global_role, now),
            )
        return {
            "user_id": user_id,
            "email": email,
            "name": name,
            "global_role": global_role,
            "created_at": now,
        }

    async def get_user(self, user_id: str) -> dict[str, Any] | None:
        """Get a user by ID."""
        row = await self._fetchone("SELECT * FROM users WHERE user_id = ?", (user_id,))
        return _row_to_dict(row) if row else None

    async def delete_user(self, user_id: str) -> bool:
        """Delete a user. Section and workspace memberships cascade."""
        async with self.transaction():
            cursor = await self.db.execute("DELETE FROM users WHERE user_id = ?", (user_id,))
        return cursor.rowcount > 0

    # --- Sections ---

    async def insert_section(self, section: dict[str, Any]) -> dict[str, Any]:
        async with self.transaction():
            await self.db.execute(
                """INSERT INTO sections (id, name, description, icon, display_order,
                   created_at, updated_at)
                   VALUES (:id, :name, :description, :icon, :display_order,
                   :created_at, :updated_at)""",
                section,
            )
        return section

    async def get_section(
        self, section_id: str, *, with_workspaces: bool = False
    ) -> dict[str, Any] | None:
        async with self._reading():
            cursor = await self.db.execute("SELECT * FROM sections WHERE id = ?", (section_id,))
            row = await cursor.fetchone()
            if not row:
                return None
            section = _row_to_dict(row)
            if with_workspaces:
                grouped = await self._workspaces_by_section([section_id])
                section["workspaces"] = grouped.get(section_id, [])
        return section

    async def list_sections(self, section_ids: list[str] | None = None) -> list[dict[str, Any]]:
        if section_ids is not None and not section_ids:
            return []

        async with self._reading():
            if section_ids is None:
                cursor = await self.db.execute(
                    "SELECT * FROM sections ORDER BY display_order ASC, name ASC"
                )
            else:
                placeholders = ", ".join("?" for _ in section_ids)
                cursor = await self.db.execute(
                    f"""SELECT * FROM sections WHERE id IN ({placeholders})
                        ORDER BY display_order ASC, name ASC""",
                    section_ids,
                )
            sections = [_row_to_dict(row) for row in await cursor.fetchall()]
            grouped = await self._workspaces_by_section([s["id"] for s in sections])

        for section in sections:
            section["workspaces"] = grouped.get(section["id"], [])
        return sections

    async def _workspaces_by_section(
        self, section_ids: list[str]
    ) -> dict[str, list[dict[str, Any]]]:
        # Caller holds the read guard.
        if not section_ids:
            return {}
        placeholders = ", ".join("?" for _ in section_ids)
        cursor = await self.db.execute(
            f"""SELECT * FROM workspaces WHERE section_id IN ({placeholders})
                ORDER BY name ASC""",
            section_ids,
        )
        grouped: dict[str, list[dict[str, Any]]] = {}
        for row in await cursor.fetchall():
            workspace = _row_to_dict(row)
            grouped.setdefault(workspace["section_id"], []).append(workspace)
        return grouped

    async def max_display_order(self) -> int | None:
        row = await self._fetchone("SELECT MAX(display_order) AS max_order FROM sections")
        return row["max_order"] if row else None

    async def update_section(
        self, section_id: str, updates: dict[str, Any]
    ) -> dict[str, Any] | None:
        updates = _validate_update_keys("sections", updates)

        async with self.transaction():
            existing = await self.get_section(section_id)
            if not existing:
                return None

            if updates:
                set_clauses = [f"{key} = ?" for key in updates]
                values = [*updates.values(), section_id]
                await self.db.execute(
                    f"UPDATE sections SET {', '.join(set_clauses)} WHERE id = ?",
                    values,
                )
            return await self.get_section(section_id, with_workspaces=True)

    async def set_display_order(self, section_id: str, display_order: int) -> bool:
        async with self.transaction():
            cursor = await self.db.execute(
                "UPDATE sections SET display_order = ? WHERE id = ?",
                (display_order, section_id),
            )
        return cursor.rowcount > 0

    async def delete_section(self, section_id: str) -> bool:
        async with self.transaction():
            cursor = await self.db.execute("DELETE FROM sections WHERE id = ?", (section_id,))
        return cursor.rowcount > 0

    # --- Section members ---

    async def get_section_member(self, section_id: str, user_id: str) -> dict[str, Any] | None:
        row = await self._fetchone(
            "SELECT * FROM section_members WHERE section_id = ? AND user_id = ?",
            (section_id, user_id),
        )
        return _row_to_dict(row) if row else None

    async def upsert_section_member(
        self, section_id: str, user_id: str, role: str, role_id: str | None
    ) -> dict[str, Any]:
        now = datetime.now(UTC).isoformat()
        async with self.transaction():
            await self.db.execute(
                """INSERT INTO section_members (section_id, user_id, role, role_id, created_at)
                   VALUES (?, ?, ?, ?, ?)
                   ON CONFLICT (section_id, user_id)
                   DO UPDATE SET role = excluded.role, role_id = excluded.role_id""",
                (section_id, user_id, role, role_id, now),
            )
            member = await self.get_section_member(section_id, user_id)
        if member is None:
            raise RuntimeError(f"Upserted member {section_id}/{user_id} vanished")
        return member

    async def update_section_member(
        self, section_id: str, user_id: str, role: str, role_id: str | None
    ) -> dict[str, Any] | None:
        async with self.transaction():
            cursor = await self.db.execute(
                """UPDATE section_members SET role = ?, role_id = ?
                   WHERE section_id = ? AND user_id = ?""",
                (role, role_id, section_id, user_id),
            )
            if cursor.rowcount == 0:
                return None
            return await self.get_section_member(section_id, user_id)

    async def delete_section_member(self, section_id: str, user_id: str) -> bool:
        async with self.transaction():
            cursor = await self.db.execute(
                "DELETE FROM section_members WHERE section_id = ? AND user_id = ?",
                (section_id, user_id),
            )
        return cursor.rowcount > 0

    async def list_section_members(self, section_id: str) -> list[dict[str, Any]]:
        rows = await self._fetchall(
            """SELECT * FROM section_members WHERE section_id = ?
               ORDER BY created_at ASC, rowid ASC""",
            (section_id,),
        )
        return [_row_to_dict(row) for row in rows]

    async def list_memberships_for_user(self, user_id: str) -> list[dict[str, Any]]:
        rows = await self._fetchall(
            "SELECT * FROM section_members WHERE user_id = ?",
            (user_id,),
        )
        return [_row_to_dict(row) for row in rows]

    async def list_members_without_role_id(self) -> list[dict[str, Any]]:
        rows = await self._fetchall("SELECT * FROM section_members WHERE role_id IS NULL")
        return [_row_to_dict(row) for row in rows]

    # --- Workspaces ---

    async def create_workspace(
        self, workspace_id: str, name: str, *, section_id: str | None = None
    ) -> dict[str, Any]:
        """Create a workspace, optionally placed under a section."""
        now = datetime.now(UTC).isoformat()
        async with self.transaction():
            await self.db.execute(
                """INSERT INTO workspaces (id, name, section_id, created_at)
                   VALUES (?, ?, ?, ?)""",
                (workspace_id, name, section_id, now),
            )
        return {"id": workspace_id, "name": name, "section_id": section_id, "created_at": now}

    async def move_workspace(self, workspace_id: str, section_id: str | None) -> bool:
        """Place a workspace under another section, or detach it with None."""
        async with self.transaction():
            cursor = await self.db.execute(
                "UPDATE workspaces SET section_id = ? WHERE id = ?",
                (section_id, workspace_id),
            )
        return cursor.rowcount > 0

    async def add_workspace_member(
        self, workspace_id: str, user_id: str, role: str = "editor"
    ) -> dict[str, Any]:
        """Add a member to a workspace."""
        now = datetime.now(UTC).isoformat()
        async with self.transaction():
            await self.db.execute(
                """INSERT INTO workspace_members (workspace_id, user_id, role, joined_at)
                   VALUES (?, ?, ?, ?)""",
                (workspace_id, user_id, role, now),
            )
        return {"workspace_id": workspace_id, "user_id": user_id, "role": role, "joined_at": now}

    async def remove_workspace_member(self, workspace_id: str, user_id: str) -> bool:
        """Remove a member from a workspace."""
        async with self.transaction():
            cursor = await self.db.execute(
                "DELETE FROM workspace_members WHERE workspace_id = ? AND user_id = ?",
                (workspace_id, user_id),
            )
        return cursor.rowcount > 0

    async def get_workspace_member(
        self, workspace_id: str, user_id: str
    ) -> dict[str, Any] | None:
        row = await self._fetchone(
            "SELECT * FROM workspace_members WHERE workspace_id = ? AND user_id = ?",
            (workspace_id, user_id),
        )
        return _row_to_dict(row) if row else None

    async def list_workspace_section_ids(self, user_id: str) -> list[str]:
        rows = await self._fetchall(
            """SELECT DISTINCT w.section_id FROM workspace_members wm
               JOIN workspaces w ON w.id = wm.workspace_id
               WHERE wm.user_id = ? AND w.section_id IS NOT NULL""",
            (user_id,),
        )
        return [row["section_id"] for row in rows]

    # --- Role catalog ---

    async def get_role_by_slug(self, slug: str) -> dict[str, Any] | None:
        row = await self._fetchone("SELECT * FROM roles WHERE slug = ?", (slug,))
        return _row_to_role(row) if row else None

    async def get_role(self, role_id: str) -> dict[str, Any] | None:
        row = await self._fetchone("SELECT * FROM roles WHERE id = ?", (role_id,))
        return _row_to_role(row) if row else None

    async def list_roles(self, scope: str | None = None) -> list[dict[str, Any]]:
        """List catalog roles, optionally filtered by scope."""
        if scope:
            rows = await self._fetchall(
                "SELECT * FROM roles WHERE scope = ? ORDER BY scope, name", (scope,)
            )
        else:
            rows = await self._fetchall("SELECT * FROM roles ORDER BY scope, name")
        return [_row_to_role(row) for row in rows]

    async def upsert_role(self, role: dict[str, Any]) -> dict[str, Any]:
        params = _serialize_json_fields(role, ["permissions"])
        async with self.transaction():
            await self.db.execute(
                """INSERT INTO roles (id, slug, name, description, scope, permissions,
                   is_system, is_default, created_at, updated_at)
                   VALUES (:id, :slug, :name, :description, :scope, :permissions,
                   :is_system, :is_default, :created_at, :updated_at)
                   ON CONFLICT (slug) DO UPDATE SET
                       name = excluded.name,
                       description = excluded.description,
                       permissions = excluded.permissions,
                       is_system = excluded.is_system,
                       is_default = excluded.is_default,
                       updated_at = excluded.updated_at""",
                params,
            )
            stored = await self.get_role_by_slug(role["slug"])
        if stored is None:
            raise RuntimeError(f"Upserted role {role['slug']} vanished")
        return stored

    async def get_stats(self) -> dict[str, int]:
        """Row counts per table."""
        stats: dict[str, int] = {}
        for table in ("users", "sections", "section_members", "workspaces", "roles"):
            row = await self._fetchone(f"SELECT COUNT(*) AS n FROM {table}")
            stats[table] = row["n"] if row else 0
        return stats


def _load_sql(filename: str) -> str:
    """Load SQL file from the schema package."""
    schema_dir = Path(__file__).parent.parent / "schema"
    return (schema_dir / filename).read_text()


def _serialize_json_fields(data: dict[str, Any], fields: list[str]) -> dict[str, Any]:
    """Serialize list/dict fields to JSON strings for SQLite storage."""
    result = dict(data)
    for field in fields:
        if field in result and result[field] is not None:
            result[field] = json.dumps(result[field])
    return result


def _row_to_dict(row: aiosqlite.Row) -> dict[str, Any]:
    """Convert an aiosqlite Row to a dict."""
    return dict(row)


def _row_to_role(row: aiosqlite.Row) -> dict[str, Any]:
    role = _row_to_dict(row)
    role["permissions"] = json.loads(role["permissions"]) if role["permissions"] else []
    role["is_system"] = bool(role["is_system"])
    role["is_default"] = bool(role["is_default"])
    return role
