"""Typer CLI for Dance Chives."""

from __future__ import annotations

import json
from pathlib import Path

from sqlalchemy.exc import OperationalError
import typer
import uvicorn

from .auth import AuthLevel, auth_level_name
from .config import (
    load_settings,
    settings,
    settings_as_dict,
    update_config_file,
)
from .crud import (
    create_user,
    get_user_by_username,
    rotate_token,
    set_auth_level,
    set_city_access,
)
from .database import get_session
from .errors import DanceChivesError
from .graph import get_store
from .maintenance import run_notification_prune
from .scheduler import start_scheduler, stop_scheduler
from .seed import seed_fake_data
from .storage import checkpoint_graph, export_graph, init_db, upgrade_database

app = typer.Typer(help="Dance Chives command-line interface")


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Show help when no subcommand is provided."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


def _fail(message: str) -> None:
    typer.secho(message, err=True, fg=typer.colors.RED)
    raise typer.Exit(code=1)


def _require_username(session, username: str):
    user = get_user_by_username(session, username)
    if not user:
        _fail(f"User '{username}' not found.")
    return user


@app.command("upgrade-db")
def upgrade_db(
    no_backup: bool = typer.Option(
        False,
        "--no-backup",
        help="Skip creating a .bak copy of the database before upgrading",
    ),
) -> None:
    """Upgrade the SQLite database schema if needed."""
    try:
        actions = upgrade_database(make_backup=not no_backup)
    except OperationalError as exc:
        message = str(getattr(exc, "orig", exc)).lower()
        if "readonly" in message or "read-only" in message:
            _fail(
                "Unable to upgrade because the database is read-only. "
                f"Ensure write access to {settings.database_path}."
            )
        raise

    if not actions:
        typer.echo("Database already up to date.")
        return

    typer.echo("Database upgrade complete:")
    for action in actions:
        typer.echo(f"- {action}")


@app.command("runserver")
def runserver(
    host: str = typer.Option(settings.app_host, "--host", help="Host to bind"),
    port: int = typer.Option(settings.app_port, "--port", help="Port to bind"),
):
    """Start FastAPI with APScheduler."""
    init_db()
    start_scheduler()
    config = uvicorn.Config(
        "dancechives.api:app",
        host=host,
        port=port,
        reload=False,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )
    server = uvicorn.Server(config)
    try:
        typer.echo(f"Starting Dance Chives on {host}:{port}")
        server.run()
    finally:
        stop_scheduler()
        checkpoint_graph()


@app.command("create-user")
def create_user_command(
    username: str = typer.Argument(..., help="Unique username"),
    display_name: str | None = typer.Option(None, "--name", help="Display name"),
    email: str | None = typer.Option(None, "--email", help="Contact email"),
    auth_level: int = typer.Option(
        AuthLevel.BASE_USER,
        "--auth-level",
        min=AuthLevel.BASE_USER,
        max=AuthLevel.SUPER_ADMIN,
        help="Authorization level (0-4)",
    ),
    verified: bool = typer.Option(False, "--verified", help="Mark the user verified"),
    unclaimed: bool = typer.Option(
        False, "--unclaimed", help="Create a placeholder profile nobody has claimed"
    ),
) -> None:
    """Create a user and print their API token."""
    init_db()
    graph = get_store()
    try:
        with get_session() as session:
            user = create_user(
                session,
                graph,
                username=username,
                display_name=display_name,
                email=email,
                auth_level=auth_level,
                verified=verified,
                claimed=not unclaimed,
            )
            user_id, token = user.id, user.api_token
    except DanceChivesError as exc:
        _fail(exc.message)
    graph.checkpoint()
    typer.echo(f"Created user {username} ({user_id})")
    typer.echo(token)


@app.command("set-auth-level")
def set_auth_level_command(
    username: str = typer.Argument(..., help="Username to update"),
    level: int = typer.Argument(..., help="New authorization level (0-4)"),
) -> None:
    """Change a user's authorization level without going through a request."""
    init_db()
    try:
        with get_session() as session:
            user = _require_username(session, username)
            set_auth_level(session, user.id, level)
    except DanceChivesError as exc:
        _fail(exc.message)
    typer.echo(f"{username} is now {auth_level_name(level)}")


@app.command("grant-city-access")
def grant_city_access(
    username: str = typer.Argument(..., help="Username to update"),
    city_id: str | None = typer.Option(None, "--city", help="City id to moderate"),
    all_cities: bool | None = typer.Option(
        None,
        "--all-cities/--no-all-cities",
        help="Grant or revoke access to every city",
    ),
) -> None:
    """Set the city a moderator may act in."""
    init_db()
    graph = get_store()
    if city_id and graph.get_city_name(city_id) is None:
        _fail(f"City {city_id} not found.")
    with get_session() as session:
        user = _require_username(session, username)
        set_city_access(
            session,
            user.id,
            city_id=city_id,
            all_cities=all_cities,
            replace_city=city_id is not None,
        )
    typer.echo(f"Updated city access for {username}")


@app.command("rotate-token")
def rotate_token_command(
    username: str = typer.Argument(..., help="Username whose token to rotate"),
) -> None:
    """Issue a new API token for a user."""
    init_db()
    with get_session() as session:
        user = _require_username(session, username)
        token = rotate_token(session, user.id)
    typer.echo(token)


@app.command("seed-data")
def seed_data(
    users: int = typer.Option(
        settings.seed_users, "--users", min=1, help="Number of users to create"
    ),
    events: int = typer.Option(
        settings.seed_events, "--events", min=0, help="Number of events to create"
    ),
    sections: int = typer.Option(
        settings.seed_sections_per_event,
        "--sections",
        min=0,
        help="Sections per event",
    ),
    videos: int = typer.Option(
        settings.seed_videos_per_section,
        "--videos",
        min=0,
        help="Videos per section",
    ),
):
    """Populate the database and graph with fake data for testing."""
    stats = seed_fake_data(
        user_count=users,
        event_count=events,
        sections_per_event=sections,
        videos_per_section=videos,
    )
    typer.echo(
        f"Seed complete: {stats['users']} users, {stats['events']} events, "
        f"{stats['sections']} sections, {stats['videos']} videos, "
        f"{stats['tags']} tags created."
    )


@app.command("prune-notifications")
def prune_notifications() -> None:
    """Delete read notifications older than the retention window."""
    init_db()
    removed = run_notification_prune()
    typer.echo(f"Removed {removed} notifications.")


@app.command("export-graph")
def export_graph_command(
    destination: Path | None = typer.Argument(
        None, help="Write to this file instead of stdout"
    ),
    format: str = typer.Option("turtle", "--format", help="rdflib serializer name"),
) -> None:
    """Dump the tag graph."""
    data = export_graph(destination, format=format)
    if destination:
        typer.echo(f"Wrote graph to {destination}")
    else:
        typer.echo(data)


@app.command("config")
def configure(
    show: bool = typer.Option(
        False, "--show", help="Show the current effective configuration"
    ),
    host: str | None = typer.Option(None, "--host", help="Default host for runserver"),
    port: int | None = typer.Option(None, "--port", help="Default port for runserver"),
    config_path: Path | None = typer.Option(
        None,
        "--config-path",
        help="Path to dancechives.toml (default: ./dancechives.toml)",
    ),
    enable_scheduler: bool | None = typer.Option(
        None,
        "--enable-scheduler/--disable-scheduler",
        help="Toggle background scheduler (checkpoint/prune)",
    ),
    notification_page_size: int | None = typer.Option(
        None, "--notification-page-size", min=1, help="Default notification page size"
    ),
    notification_retention_days: int | None = typer.Option(
        None,
        "--notification-retention-days",
        min=1,
        help="Days to keep read notifications",
    ),
    notification_prune_hours: int | None = typer.Option(
        None, "--notification-prune-hours", min=1, help="Hours between prune runs"
    ),
    graph_checkpoint_minutes: int | None = typer.Option(
        None,
        "--graph-checkpoint-minutes",
        min=1,
        help="Minutes between graph checkpoints",
    ),
    seed_users: int | None = typer.Option(
        None, "--seed-users", min=1, help="Default seed-data users"
    ),
    seed_events: int | None = typer.Option(
        None, "--seed-events", min=0, help="Default seed-data events"
    ),
    seed_sections_per_event: int | None = typer.Option(
        None, "--seed-sections-per-event", min=0, help="Default seed-data sections"
    ),
    seed_videos_per_section: int | None = typer.Option(
        None, "--seed-videos-per-section", min=0, help="Default seed-data videos"
    ),
):
    """View or update the persistent configuration file."""

    updates = {
        "app_host": host,
        "app_port": port,
        "enable_scheduler": enable_scheduler,
        "notification_page_size": notification_page_size,
        "notification_retention_days": notification_retention_days,
        "notification_prune_hours": notification_prune_hours,
        "graph_checkpoint_minutes": graph_checkpoint_minutes,
        "seed_users": seed_users,
        "seed_events": seed_events,
        "seed_sections_per_event": seed_sections_per_event,
        "seed_videos_per_section": seed_videos_per_section,
    }
    clean_updates = {k: v for k, v in updates.items() if v is not None}

    target_path = config_path or settings.config_path
    if clean_updates:
        settings_ref = update_config_file(clean_updates, path=target_path)
        typer.echo(f"Updated configuration in {target_path}")
    else:
        settings_ref = load_settings(target_path)
    if show or not clean_updates:
        effective = settings_as_dict(settings_ref)
        effective["config_path"] = str(target_path)
        typer.echo(json.dumps(effective, indent=2))


if __name__ == "__main__":
    app()
