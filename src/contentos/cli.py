"""CLI: init, serve, status, matrix, user, team, token, remind."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from contentos.auth.jwt import create_token
from contentos.auth.permissions import (
    GLOBAL_PERMISSIONS,
    PERMISSION_MATRIX,
    PermissionLevel,
    Role,
    Stage,
)
from contentos.config import Config
from contentos.core.audit import AuditLogService
from contentos.core.notifications import NotificationQueue, NotificationService
from contentos.core.teams import TeamService
from contentos.core.users import UserService
from contentos.events.bus import EventBus
from contentos.storage.sqlite_store import SQLiteStore

_LEVEL_STYLES = {
    PermissionLevel.FULL: "[green]full[/green]",
    PermissionLevel.COMMENT_APPROVE: "[yellow]comment/approve[/yellow]",
    PermissionLevel.READ_ONLY: "[blue]read-only[/blue]",
    PermissionLevel.NONE: "[red]none[/red]",
}


def _load_config(path: str | None) -> Config:
    workspace = Path(path).expanduser().resolve() if path else None
    config = Config.load(workspace)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    return config


def _require_db(config: Config) -> Path:
    if not config.db_path.exists():
        click.echo(
            f"Error: No database at {config.db_path}. Run 'contentos init' first.", err=True
        )
        sys.exit(1)
    return config.db_path


@click.group()
@click.version_option(package_name="contentos")
def main() -> None:
    """Content OS: role and stage permissions for the REACH pipeline."""


@main.command()
@click.argument("path", type=click.Path(), default="~/.contentos")
@click.option("--agency-team", default=None, help="Create the Main Agency Team with this name")
def init(path: str, agency_team: str | None) -> None:
    """Initialize a new Content OS workspace."""
    workspace = Path(path).expanduser().resolve()
    config = Config(workspace_path=workspace)

    async def _init() -> str | None:
        store = SQLiteStore(config.db_path, wal_mode=config.wal_mode)
        await store.initialize()
        try:
            if not agency_team:
                return None
            team = await TeamService(store, EventBus()).create_team(name=agency_team)
            return team.id
        finally:
            await store.close()

    team_id = asyncio.run(_init())
    if team_id:
        config.agency_team_id = team_id
    config.save()

    click.echo(f"Initialized workspace at {workspace}")
    click.echo(f"Database: {config.db_path}")
    if team_id:
        click.echo(f"Agency team: {agency_team} ({team_id})")
    click.echo("Add to Claude Desktop config:")
    click.echo(f'  "contentos": {{"command": "contentos", "args": ["serve", "{workspace}"]}}')


@main.command()
@click.argument("path", type=click.Path(exists=True))
@click.option("--transport", type=click.Choice(["stdio"]), default="stdio")
def serve(path: str, transport: str) -> None:
    """Start the MCP server."""
    config = _load_config(path)
    db_path = _require_db(config)

    from contentos.server import create_server

    server = create_server(str(db_path), config=config)
    server.run(transport=transport)  # type: ignore[arg-type]


@main.command()
@click.argument("path", type=click.Path(exists=True))
def status(path: str) -> None:
    """Show workspace status."""
    config = _load_config(path)
    db_path = _require_db(config)

    async def _status() -> dict:
        store = SQLiteStore(db_path, wal_mode=config.wal_mode)
        try:
            await store.initialize()
            return await store.get_stats()
        finally:
            await store.close()

    stats = asyncio.run(_status())
    stats["agency_team_id"] = config.agency_team_id
    click.echo(json.dumps(stats, indent=2))


@main.command()
@click.option("--role", type=click.Choice([str(r) for r in Role]), default=None)
def matrix(role: str | None) -> None:
    """Print the role/stage permission matrix."""
    roles = [Role(role)] if role else list(Role)

    table = Table(title="REACH Permission Matrix")
    table.add_column("Role", style="cyan")
    for stage in Stage:
        table.add_column(stage.value.capitalize())
    table.add_column("Global", style="dim")

    for r in roles:
        table.add_row(
            str(r),
            *(_LEVEL_STYLES[PERMISSION_MATRIX[r][stage]] for stage in Stage),
            ", ".join(sorted(str(p) for p in GLOBAL_PERMISSIONS[r])),
        )
    Console().print(table)


@main.group()
def user() -> None:
    """Manage users."""


@user.command("create")
@click.argument("path", type=click.Path(exists=True))
@click.option("--email", required=True)
@click.option("--name", required=True)
@click.option("--role", type=click.Choice([str(r) for r in Role]), default=str(Role.MEMBER))
@click.option("--team", "team_id", default=None, help="Add the user to this team")
def create_user(path: str, email: str, name: str, role: str, team_id: str | None) -> None:
    """Create a user and print a session token."""
    config = _load_config(path)
    db_path = _require_db(config)

    async def _create() -> tuple[str, str]:
        store = SQLiteStore(db_path, wal_mode=config.wal_mode)
        await store.initialize()
        try:
            bus = EventBus()
            users = UserService(store, bus, AuditLogService(store))
            created = await users.create_user(email=email, name=name, role=role)
            if team_id:
                if not await store.get_team(team_id):
                    raise ValueError(f"Team not found: {team_id}")
                await TeamService(store, bus).add_member(team_id, created.id)
            return created.id, str(created.role)
        finally:
            await store.close()

    try:
        user_id, user_role = asyncio.run(_create())
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    token = create_token(user_id, exp_minutes=config.session_ttl_minutes)
    Console().print(
        Panel(
            f"[bold]ID:[/bold] {user_id}\n"
            f"[bold]Email:[/bold] {email}\n"
            f"[bold]Role:[/bold] {user_role}\n"
            f"[bold]Token:[/bold] {token}",
            title="User created",
            border_style="green",
        )
    )


@main.command()
@click.argument("path", type=click.Path(exists=True))
@click.option("--email", required=True)
def token(path: str, email: str) -> None:
    """Issue a session token for an existing user."""
    config = _load_config(path)
    db_path = _require_db(config)

    async def _lookup() -> dict | None:
        store = SQLiteStore(db_path, wal_mode=config.wal_mode)
        await store.initialize()
        try:
            return await store.get_user_by_email(email)
        finally:
            await store.close()

    found = asyncio.run(_lookup())
    if not found:
        click.echo(f"Error: No user with email {email}", err=True)
        sys.exit(1)
    click.echo(create_token(found["id"], exp_minutes=config.session_ttl_minutes))


@main.group()
def team() -> None:
    """Manage teams."""


@team.command("create")
@click.argument("path", type=click.Path(exists=True))
@click.argument("name")
@click.option("--client", "is_client", is_flag=True, help="Create as a client team")
@click.option("--description", default=None)
@click.option("--member", "members", multiple=True, help="User ID to add (repeatable)")
def create_team(
    path: str, name: str, is_client: bool, description: str | None, members: tuple[str, ...]
) -> None:
    """Create a team with the five REACH stages."""
    config = _load_config(path)
    db_path = _require_db(config)

    async def _create() -> tuple[str, list[tuple[str, int]]]:
        store = SQLiteStore(db_path, wal_mode=config.wal_mode)
        await store.initialize()
        try:
            for member_id in members:
                if not await store.get_user(member_id):
                    raise ValueError(f"User not found: {member_id}")
            teams = TeamService(store, EventBus(), agency_team_id=config.agency_team_id)
            created = await teams.create_team(
                name=name, description=description, is_client=is_client
            )
            for member_id in members:
                await teams.add_member(created.id, member_id)
            stages = await teams.list_stages(created.id)
            return created.id, [(s.id, s.position) for s in stages]
        finally:
            await store.close()

    try:
        team_id, stages = asyncio.run(_create())
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    table = Table(title=f"Team {name} ({team_id})")
    table.add_column("Position", justify="right")
    table.add_column("Stage ID", style="cyan")
    for stage_id, position in stages:
        table.add_row(str(position), stage_id)
    Console().print(table)


@main.command()
@click.argument("path", type=click.Path(exists=True))
@click.argument("team_id")
@click.option("--hours", default=24, show_default=True, help="Look-ahead window")
def remind(path: str, team_id: str, hours: int) -> None:
    """Send deadline reminders for a team's cards due soon."""
    config = _load_config(path)
    db_path = _require_db(config)

    async def _remind() -> int:
        store = SQLiteStore(db_path, wal_mode=config.wal_mode)
        await store.initialize()
        try:
            queue = NotificationQueue(store)
            service = NotificationService(store, EventBus(), queue)
            await service.enqueue_deadline_reminders(team_id, within_hours=hours)
            return await queue.drain()
        finally:
            await store.close()

    sent = asyncio.run(_remind())
    click.echo(f"Sent {sent} deadline reminder(s)")


if __name__ == "__main__":
    main()
