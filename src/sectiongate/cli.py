"""CLI — init, status, serve, user, section, member, access, catalog."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TypeVar

import aiosqlite
import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from sectiongate.auth.permissions import GlobalRole, SectionRole
from sectiongate.config import Config
from sectiongate.core.catalog import backfill_section_role_ids, seed_system_roles
from sectiongate.core.wiring import Engines, build_engines
from sectiongate.errors import SectionGateError
from sectiongate.storage.metadata_store import MetadataStore

T = TypeVar("T")

_GLOBAL_ROLES = click.Choice([r.value for r in GlobalRole])
_SECTION_ROLES = click.Choice([r.value for r in SectionRole])


def _run(action: Callable[[Engines], Awaitable[T]]) -> T:
    """Open the configured store, run an action against the engines, close."""
    config = Config.load()
    logging.basicConfig(level=config.log_level.upper())

    if not config.metadata_db_path.exists():
        click.echo(
            f"Error: No database at {config.metadata_db_path}. Run 'sectiongate init' first.",
            err=True,
        )
        sys.exit(1)

    async def _go() -> T:
        store = MetadataStore(config.metadata_db_path, wal_mode=config.wal_mode)
        await store.initialize()
        engines = build_engines(store, config)
        try:
            return await action(engines)
        finally:
            await engines.dispatcher.drain()
            await store.close()

    try:
        return asyncio.run(_go())
    except (SectionGateError, ValueError, aiosqlite.IntegrityError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@click.group()
@click.version_option(package_name="sectiongate")
def main() -> None:
    """sectiongate — section membership and access resolution."""


@main.command()
@click.argument("path", type=click.Path(), default="~/.sectiongate")
def init(path: str) -> None:
    """Initialize a sectiongate home with an empty database."""
    home = Path(path).expanduser().resolve()

    async def _init() -> int:
        config = Config.load(home)
        config.home_path = home
        store = MetadataStore(config.metadata_db_path, wal_mode=config.wal_mode)
        await store.initialize()
        try:
            seeded = await seed_system_roles(store) if config.seed_catalog_on_init else []
        finally:
            await store.close()
        config.save()
        return len(seeded)

    seeded = asyncio.run(_init())
    click.echo(f"Initialized sectiongate at {home}")
    click.echo(f"Database: {home / 'metadata.db'}")
    click.echo(f"Catalog roles seeded: {seeded}")


@main.command()
def status() -> None:
    """Show row counts."""

    async def _status(e: Engines) -> dict:
        return await e.store.get_stats()  # type: ignore[attr-defined]

    click.echo(json.dumps(_run(_status), indent=2))


@main.command()
@click.option("--transport", type=click.Choice(["stdio"]), default="stdio")
def serve(transport: str) -> None:
    """Start the MCP server."""
    config = Config.load()
    if not config.metadata_db_path.exists():
        click.echo(
            f"Error: No database at {config.metadata_db_path}. Run 'sectiongate init' first.",
            err=True,
        )
        sys.exit(1)

    from sectiongate.server import create_server

    server = create_server(str(config.metadata_db_path), config)
    server.run(transport=transport)  # type: ignore[arg-type]


# --- Users ---


@main.group()
def user() -> None:
    """Manage users known to the membership store."""


@user.command("add")
@click.argument("user_id")
@click.option("--email", required=True)
@click.option("--name", required=True)
@click.option("--role", "global_role", type=_GLOBAL_ROLES, default=GlobalRole.EMPLOYEE.value)
def user_add(user_id: str, email: str, name: str, global_role: str) -> None:
    """Register a user."""

    async def _add(e: Engines) -> None:
        await e.store.create_user(  # type: ignore[attr-defined]
            user_id, email, name, global_role=global_role
        )

    _run(_add)
    click.echo(f"Added user {user_id} ({global_role})")


# --- Sections ---


@main.group()
def section() -> None:
    """Manage sections."""


@section.command("list")
@click.option("--user", "user_id", required=True, help="User whose visible sections to list")
@click.option("--role", "global_role", type=_GLOBAL_ROLES, default=GlobalRole.EMPLOYEE.value)
def section_list(user_id: str, global_role: str) -> None:
    """List sections visible to a user."""

    async def _list(e: Engines) -> tuple[list, dict]:
        sections = await e.sections.list_accessible_sections(user_id, global_role)
        roles = await e.resolver.get_my_roles(user_id, global_role)
        return sections, roles

    sections, roles = _run(_list)

    table = Table(title=f"Sections for {user_id}")
    table.add_column("Order", justify="right")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Workspaces", justify="right")
    table.add_column("Role")
    for s in sections:
        role = roles.get(s.id)
        table.add_row(
            str(s.display_order), s.id, s.name, str(len(s.workspaces)), role.value if role else "-"
        )
    Console().print(table)


@section.command("create")
@click.argument("name")
@click.option("--creator", required=True, help="User ID that becomes section admin")
@click.option("--description", default=None)
@click.option("--icon", default=None)
@click.option("--order", "display_order", type=int, default=None)
def section_create(
    name: str, creator: str, description: str | None, icon: str | None, display_order: int | None
) -> None:
    """Create a section."""

    async def _create(e: Engines):
        return await e.sections.create_section(
            name=name,
            creator_id=creator,
            description=description,
            icon=icon,
            display_order=display_order,
        )

    created = _run(_create)
    Console().print(
        Panel(
            f"[green]✓[/green] Section created: {created.name}\n"
            f"ID: {created.id}\n"
            f"Order: {created.display_order}\n"
            f"Admin: {creator}",
            title="Section Created",
        )
    )


@section.command("remove")
@click.argument("section_id")
def section_remove(section_id: str) -> None:
    """Delete an empty section."""

    async def _remove(e: Engines) -> None:
        await e.sections.remove_section(section_id)

    _run(_remove)
    click.echo(f"Removed section {section_id}")


@section.command("reorder")
@click.argument("section_ids", nargs=-1, required=True)
def section_reorder(section_ids: tuple[str, ...]) -> None:
    """Set display order to the given sequence of section IDs."""

    async def _reorder(e: Engines) -> None:
        await e.sections.reorder(list(section_ids))

    _run(_reorder)
    click.echo(f"Reordered {len(section_ids)} section(s)")


# --- Members ---


@main.group()
def member() -> None:
    """Manage section members."""


@member.command("grant")
@click.argument("section_id")
@click.argument("user_id")
@click.option("--role", type=_SECTION_ROLES, default=SectionRole.VIEWER.value)
def member_grant(section_id: str, user_id: str, role: str) -> None:
    """Grant or change a section role."""

    async def _grant(e: Engines):
        return await e.sections.grant_or_update_member(section_id, user_id, SectionRole(role))

    granted = _run(_grant)
    click.echo(f"{granted.user_id} is {granted.role.value} of {granted.section_id}")


@member.command("remove")
@click.argument("section_id")
@click.argument("user_id")
def member_remove(section_id: str, user_id: str) -> None:
    """Revoke a direct section membership."""

    async def _remove(e: Engines) -> None:
        await e.sections.remove_member(section_id, user_id)

    _run(_remove)
    click.echo(f"Removed {user_id} from {section_id}")


@member.command("list")
@click.argument("section_id")
def member_list(section_id: str) -> None:
    """List direct members of a section."""

    async def _list(e: Engines):
        return await e.sections.list_members(section_id)

    members = _run(_list)
    table = Table(title=f"Members of {section_id}")
    table.add_column("User")
    table.add_column("Role")
    table.add_column("Catalog role")
    table.add_column("Since")
    for m in members:
        table.add_row(m.user_id, m.role.value, m.role_id or "-", m.created_at)
    Console().print(table)


# --- Access ---


@main.group()
def access() -> None:
    """Inspect effective access."""


@access.command("check")
@click.argument("section_id")
@click.argument("user_id")
@click.option("--role", "global_role", type=_GLOBAL_ROLES, default=GlobalRole.EMPLOYEE.value)
@click.option("--require", "required_role", type=_SECTION_ROLES, default=None)
def access_check(section_id: str, user_id: str, global_role: str, required_role: str | None) -> None:
    """Resolve a user's effective role on a section. Exits 2 on no access."""

    async def _check(e: Engines):
        required = SectionRole(required_role) if required_role else None
        return await e.resolver.resolve_access(section_id, user_id, global_role, required)

    result = _run(_check)
    if result is None:
        click.echo("no-access")
        sys.exit(2)
    click.echo(f"{result.role.value} ({result.source.value})")


@access.command("can")
@click.argument("section_id")
@click.argument("user_id")
@click.argument("permission")
@click.option("--role", "global_role", type=_GLOBAL_ROLES, default=GlobalRole.EMPLOYEE.value)
def access_can(section_id: str, user_id: str, permission: str, global_role: str) -> None:
    """Test a catalog permission key on a section. Exits 2 when denied."""

    async def _can(e: Engines) -> bool:
        return await e.permissions.has_permission(user_id, global_role, permission, section_id)

    if not _run(_can):
        click.echo("denied")
        sys.exit(2)
    click.echo("allowed")


# --- Catalog ---


@main.group()
def catalog() -> None:
    """Manage the role catalog."""


@catalog.command("seed")
def catalog_seed() -> None:
    """Upsert the system roles."""

    async def _seed(e: Engines) -> int:
        return len(await seed_system_roles(e.store))

    click.echo(f"Seeded {_run(_seed)} system role(s)")


@catalog.command("backfill")
def catalog_backfill() -> None:
    """Attach catalog roles to section members that have none."""

    async def _backfill(e: Engines) -> int:
        return await backfill_section_role_ids(e.store, e.mapper, e.dispatcher)

    click.echo(f"Backfilled {_run(_backfill)} section member(s)")
