"""
CLI interface for the Discord/LINE broadcast bridge.

Commands:
    setup          — Create the database and show the trigger schedule
    sync           — Run one Discord polling tick
    flush          — Release broadcasts held during quiet hours
    run-scheduler  — Run the poll tick and morning release forever
    stats          — Show member counts per role
    queue          — List broadcasts waiting for the morning release
    logs           — Show recent activity
    register       — Register or re-role a LINE member by hand
    add-reply      — Add or update an auto-reply keyword
    reset-cursor   — Forget the Discord cursor and poll again
"""

from __future__ import annotations

from typing import Optional

import click

from kairan_bridge import __version__
from kairan_bridge.errors import ConfigurationError
from kairan_bridge.observability import configure_logging


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------

@click.group()
@click.version_option(version=__version__, prog_name="kairan-bridge")
@click.option("--config", "config_path", default=None, type=click.Path(dir_okay=False),
              help="Bridge config JSON file (default: built-in settings).")
@click.option("--db", default=None, help="Database URL, overrides the config file.")
@click.option("--log-level", default="INFO",
              type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
              help="Logging level.")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str], db: Optional[str], log_level: str) -> None:
    """Discord/LINE broadcast bridge — fan officer messages out to LINE members."""
    from kairan_bridge.dispatch.config import default_config, load_bridge_config

    configure_logging(log_level.upper())
    try:
        config = load_bridge_config(config_path) if config_path else default_config()
    except (ConfigurationError, FileNotFoundError, ValueError) as e:
        raise click.ClickException(str(e))
    if db:
        config = config.with_overrides(db_url=db)

    ctx.ensure_object(dict)
    ctx.obj["config"] = config


def _bridge(ctx: click.Context):
    from kairan_bridge.app import BridgeApp

    if "bridge" not in ctx.obj:
        bridge = BridgeApp.from_config(ctx.obj["config"])
        ctx.call_on_close(bridge.close)
        ctx.obj["bridge"] = bridge
    return ctx.obj["bridge"]


def _db(ctx: click.Context):
    from kairan_bridge.dispatch.roles import RoleRegistry
    from kairan_bridge.store.repository import BridgeDB

    config = ctx.obj["config"]
    return BridgeDB(config.db_url, registry=RoleRegistry(config.roles))


# ---------------------------------------------------------------------------
# setup
# ---------------------------------------------------------------------------

@cli.command()
@click.pass_context
def setup(ctx: click.Context) -> None:
    """Create the database tables and show the trigger schedule."""
    from kairan_bridge.scheduler import Scheduler, register_default_jobs

    bridge = _bridge(ctx)
    scheduler = Scheduler()
    register_default_jobs(scheduler, bridge)

    click.echo("Setup complete.")
    click.echo(f"Database: {bridge.config.db_url}")
    click.echo(f"Quiet hours: {bridge.policy.describe()} ({bridge.config.night_window.timezone})")
    for job in scheduler.jobs:
        click.echo(f"  {job.name:12s} {job.describe()}")


# ---------------------------------------------------------------------------
# sync / flush / run-scheduler
# ---------------------------------------------------------------------------

@cli.command()
@click.pass_context
def sync(ctx: click.Context) -> None:
    """Poll Discord once and forward new commands to LINE."""
    results = _bridge(ctx).sync_relay()
    if results is None:
        click.echo("Sync skipped or aborted; see the log.")
        return
    click.echo(f"Processed {len(results)} command(s).")
    for r in results:
        click.echo(f"  {r.status.value:8s} {r.count} recipient(s)")


@cli.command()
@click.pass_context
def flush(ctx: click.Context) -> None:
    """Release every broadcast held during quiet hours."""
    results = _bridge(ctx).flush_queue()
    if not results:
        click.echo("No queued messages.")
        return
    click.echo(f"Released {len(results)} message(s).")
    for r in results:
        click.echo(f"  {r.status.value:8s} {r.count} recipient(s)")


@cli.command(name="run-scheduler")
@click.option("--poll-seconds", default=30.0, type=float, help="How often to check for due jobs.")
@click.pass_context
def run_scheduler(ctx: click.Context, poll_seconds: float) -> None:
    """Run the Discord poll tick and the morning release until interrupted."""
    from kairan_bridge.scheduler import Scheduler, register_default_jobs

    scheduler = Scheduler()
    register_default_jobs(scheduler, _bridge(ctx))
    try:
        scheduler.run_forever(poll_seconds=poll_seconds)
    except KeyboardInterrupt:
        click.echo("Scheduler stopped.")


# ---------------------------------------------------------------------------
# stats / queue / logs
# ---------------------------------------------------------------------------

@cli.command()
@click.pass_context
def stats(ctx: click.Context) -> None:
    """Show member counts per role."""
    from kairan_bridge.dispatch.roles import RoleRegistry

    registry = RoleRegistry(ctx.obj["config"].roles)
    counts = _db(ctx).user_stats()

    click.echo("=== Registered members ===")
    for role in registry.roles:
        click.echo(f"  {role.label:8s} ({role.key:10s}): {counts.get(role.key, 0)}")
    for key, n in counts.items():
        if not registry.is_known(key):
            click.echo(f"  ? ({key:10s}): {n}")
    click.echo(f"Total: {sum(counts.values())}")


@cli.command()
@click.pass_context
def queue(ctx: click.Context) -> None:
    """List broadcasts waiting for the morning release."""
    items = _db(ctx).pending_queue()
    if not items:
        click.echo("Queue is empty.")
        return
    click.echo(f"Queued broadcasts ({len(items)}):")
    for item in items:
        image = " [image]" if item.image_url else ""
        click.echo(
            f"  #{item.id:4d} | {item.enqueued_at:%Y-%m-%d %H:%M} | "
            f"{item.sender[:20]:20s} -> {item.target_role:10s} | {item.body[:40]}{image}"
        )


@cli.command()
@click.option("--limit", "-n", default=20, type=int, help="Number of entries.")
@click.option("--category", "-c", default=None, help="Only this category (e.g. Error).")
@click.pass_context
def logs(ctx: click.Context, limit: int, category: Optional[str]) -> None:
    """Show recent activity log entries."""
    entries = _db(ctx).recent_logs(limit=limit, category=category)
    if not entries:
        click.echo("No log entries.")
        return
    for e in entries:
        click.echo(f"  {e.created_at:%Y-%m-%d %H:%M:%S} | {e.category:18s} | {e.subject}")
        if e.detail:
            click.echo(f"    {e.detail[:200]}")


# ---------------------------------------------------------------------------
# register / add-reply / reset-cursor
# ---------------------------------------------------------------------------

@cli.command()
@click.option("--user-id", "-u", required=True, help="LINE user id.")
@click.option("--name", required=True, help="Display name.")
@click.option("--role", "-r", required=True, help="Role key (e.g. Yakuin).")
@click.pass_context
def register(ctx: click.Context, user_id: str, name: str, role: str) -> None:
    """Register a LINE member or change their role."""
    db = _db(ctx)
    if not db.registry.is_known(role):
        keys = [r.key for r in db.registry.roles]
        raise click.BadParameter(f"Unknown role '{role}'. Options: {keys}")
    user = db.upsert_user(user_id, name, role)
    click.echo(f"{user.display_name} ({user.identity_key}) is now {db.registry.label(role)}.")


@cli.command(name="add-reply")
@click.option("--keyword", "-k", required=True, help="Text that triggers the reply.")
@click.option("--response", "-r", required=True, help="Reply sent back on LINE.")
@click.pass_context
def add_reply(ctx: click.Context, keyword: str, response: str) -> None:
    """Add or update an auto-reply keyword."""
    _db(ctx).set_auto_reply(keyword, response)
    click.echo(f"Auto reply saved for '{keyword}'.")


@cli.command(name="reset-cursor")
@click.option("--sync/--no-sync", "run_sync", default=True, help="Poll Discord right after resetting.")
@click.pass_context
def reset_cursor(ctx: click.Context, run_sync: bool) -> None:
    """Forget the Discord cursor so the latest messages are fetched again."""
    bridge = _bridge(ctx)
    removed = bridge.db.clear_cursor()
    click.echo("Cursor cleared." if removed else "No cursor was stored.")
    if run_sync:
        ctx.invoke(sync)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
