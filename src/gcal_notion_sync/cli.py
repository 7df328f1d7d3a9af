"""
Command-line interface for Google Calendar ↔ Notion sync.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from dataclasses import field
from enum import Enum
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from gcal_notion_sync.config import AppConfig
from gcal_notion_sync.config import load_config
from gcal_notion_sync.db import StateDatabase
from gcal_notion_sync.errors import SyncError
from gcal_notion_sync.fields import OptionalField
from gcal_notion_sync.models import DEFAULT_CONFIG
from gcal_notion_sync.models import DEFAULT_STATE_DB
from gcal_notion_sync.models import SyncStats
from gcal_notion_sync.models import SyncStatus
from gcal_notion_sync.sync import SyncSession

# ---------------------------------------------------------------------------
# Typer app
# ---------------------------------------------------------------------------

app = typer.Typer(
    no_args_is_help=True,
    rich_markup_mode="rich",
    help="Two-way sync between a Google Calendar and a Notion database.",
)
webhook_app = typer.Typer(no_args_is_help=True, help="Manage push-notification subscriptions.")
backfill_app = typer.Typer(no_args_is_help=True, help="Fill newly enabled fields on synced pages.")
historical_app = typer.Typer(no_args_is_help=True, help="Import past calendar events into Notion.")
app.add_typer(webhook_app, name="webhook")
app.add_typer(backfill_app, name="backfill")
app.add_typer(historical_app, name="historical")

console = Console()


# ---------------------------------------------------------------------------
# Global state shared across subcommands
# ---------------------------------------------------------------------------


@dataclass
class _State:
    config_path: Path = field(default_factory=lambda: DEFAULT_CONFIG)
    state_db: Path = field(default_factory=lambda: DEFAULT_STATE_DB)
    verbose: bool = False


state = _State()


@app.callback()
def _global(
    config: Annotated[
        Path,
        typer.Option("--config", "-c", help=f"Config file path (default: {DEFAULT_CONFIG})"),
    ] = DEFAULT_CONFIG,
    state_db: Annotated[
        Path,
        typer.Option("--state-db", help=f"State DB path (default: {DEFAULT_STATE_DB})"),
    ] = DEFAULT_STATE_DB,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose debug output"),
    ] = False,
) -> None:
    state.config_path = config
    state.state_db = state_db
    state.verbose = verbose
    _setup_logging(verbose)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False, console=console)],
    )
    # googleapiclient and httpx are chatty at INFO
    logging.getLogger("googleapiclient").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _load() -> AppConfig:
    try:
        return load_config(state.config_path, state.state_db)
    except SyncError as e:
        console.print(f"[bold red]Config error:[/] {e}")
        raise typer.Exit(1) from None


@contextmanager
def _session(preflight: bool = True, need_google: bool = True, need_notion: bool = True) -> Iterator[SyncSession]:
    """Open the state DB and yield a session; map failures to exit codes."""
    cfg = _load()
    if preflight:
        from gcal_notion_sync.preflight import run_preflight_checks

        if not run_preflight_checks(cfg, console, need_google=need_google, need_notion=need_notion):
            raise typer.Exit(1)

    with StateDatabase(cfg.state_db_path) as db:
        session = SyncSession(cfg, db)
        try:
            yield session
        except SyncError as e:
            console.print(f"[bold red]Failed:[/] {e}")
            raise typer.Exit(1) from None
        except KeyboardInterrupt:
            console.print("[yellow]Interrupted by user[/]")
            raise typer.Exit(130) from None
        finally:
            session.reset()


def _stats_panel(stats: SyncStats, title: str = "Results") -> Panel:
    results = Table.grid(padding=(0, 2))
    results.add_column(style="bold")
    results.add_column(justify="right")
    results.add_row("Created", str(stats.created))
    results.add_row("Updated", str(stats.updated))
    results.add_row("Deleted", str(stats.deleted))
    results.add_row("Skipped", str(stats.skipped))
    error_val = Text(str(stats.errors))
    if stats.errors == 0:
        error_val.append(" ✓", style="green")
    else:
        error_val.stylize("bold red")
    results.add_row("Errors", error_val)
    return Panel(results, title=f"[bold]{title}[/bold]", expand=False)


_STATUS_STYLES = {
    "idle": "dim",
    "running": "cyan",
    "completed": "green",
    "failed": "bold red",
    "cancelled": "yellow",
}


def _progress_panel(progress: dict, title: str) -> Panel:
    grid = Table.grid(padding=(0, 2))
    grid.add_column(style="bold")
    grid.add_column()
    status = progress.get("status", "idle")
    grid.add_row("Status", Text(status, style=_STATUS_STYLES.get(status, "")))
    grid.add_row("Processed", f"{progress.get('processed', 0)} / {progress.get('total', 0)}")
    for key in ("created", "updated", "skipped"):
        if key in progress:
            grid.add_row(key.capitalize(), str(progress[key]))
    grid.add_row("Errors", str(progress.get("errors", 0)))
    if progress.get("fields"):
        grid.add_row("Fields", ", ".join(progress["fields"]))
    if progress.get("days"):
        grid.add_row("Days", str(progress["days"]))
    if progress.get("started_at"):
        grid.add_row("Started", progress["started_at"])
    if progress.get("completed_at"):
        grid.add_row("Finished", progress["completed_at"])
    if progress.get("error"):
        grid.add_row("Error", Text(progress["error"], style="red"))
    return Panel(grid, title=f"[bold]{title}[/bold]", expand=False)


def _state_table(info: dict) -> Table:
    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold")
    table.add_column()
    for key, value in info.items():
        if value is None:
            continue
        if key == "state":
            style = {"active": "green", "inactive": "red"}.get(value, "yellow")
            table.add_row("State", Text(value, style=style))
        else:
            table.add_row(key.replace("_", " ").capitalize(), str(value))
    return table


# ---------------------------------------------------------------------------
# Subcommand: sync
# ---------------------------------------------------------------------------


class Direction(str, Enum):
    BOTH = "both"
    TO_GCAL = "to-gcal"
    TO_NOTION = "to-notion"


@app.command()
def sync(
    direction: Annotated[
        Direction,
        typer.Option("--direction", "-d", help="Which side(s) to push changes to"),
    ] = Direction.BOTH,
) -> None:
    """Run one polling pass: calendar changes to Notion, then Notion to the calendar."""
    with _session() as session:
        cfg = session.config
        info = Text()
        info.append("  Calendar:  ", style="bold")
        info.append(f"{cfg.google.calendar_id}\n")
        info.append("  Database:  ", style="bold")
        info.append(f"{cfg.notion.database_id}\n")
        info.append("  Direction: ", style="bold")
        info.append_text(
            Text.from_markup(
                {
                    Direction.BOTH: "[cyan]↔ Bidirectional[/]",
                    Direction.TO_GCAL: "[cyan]→ Notion → Google Calendar[/]",
                    Direction.TO_NOTION: "[cyan]← Google Calendar → Notion[/]",
                }[direction]
            )
        )
        console.print(Panel(info, title="[bold]Google Calendar ↔ Notion Sync[/bold]"))

        stats = session.run(
            to_gcal=direction in (Direction.BOTH, Direction.TO_GCAL),
            to_notion=direction in (Direction.BOTH, Direction.TO_NOTION),
        )
        console.print(_stats_panel(stats))

    if stats.errors:
        raise typer.Exit(1)


# ---------------------------------------------------------------------------
# Subcommand: status
# ---------------------------------------------------------------------------


@app.command()
def status() -> None:
    """Show webhook, cursor, job progress and recent sync health."""
    config_exists = state.config_path.exists()
    cfg_info = Text()
    cfg_info.append("  Config:   ", style="bold")
    cfg_info.append(str(state.config_path) + " ")
    cfg_info.append(
        "✓" if config_exists else "(not found)", style="green" if config_exists else "red"
    )
    cfg_info.append("\n  State DB: ", style="bold")
    cfg_info.append(str(state.state_db))
    console.print(Panel(cfg_info, title="[bold]Google Calendar ↔ Notion Sync: Status[/bold]"))

    with _session(preflight=False) as session:
        channels = session.channels
        console.print(
            Panel(
                _state_table(channels.google_status(session.config.google.calendar_id)),
                title="[bold]Google Calendar channel[/bold]",
                expand=False,
            )
        )
        console.print(
            Panel(
                _state_table(channels.notion_status(session.config.notion.database_id)),
                title="[bold]Notion subscription[/bold]",
                expand=False,
            )
        )

        cursor = channels.get_cursor()
        cursor_text = (
            Text(f"last sync {cursor.last_sync:%Y-%m-%d %H:%M:%S} UTC", style="green")
            if cursor
            else Text("none (next sync performs a full fetch)", style="yellow")
        )
        console.print(Text.assemble(("Sync cursor: ", "bold"), cursor_text))

        console.print(_progress_panel(session.backfill_progress().get(), "Backfill"))
        console.print(_progress_panel(session.historical_progress().get(), "Historical sync"))

        metrics = session.sync_log.metrics()
        grid = Table.grid(padding=(0, 2))
        grid.add_column(style="bold")
        grid.add_column(justify="right")
        grid.add_row("Operations", str(metrics["total"]))
        grid.add_row("Succeeded", str(metrics["success"]))
        grid.add_row("Failed", str(metrics["failure"]))
        grid.add_row("Skipped", str(metrics["skipped"]))
        rate = metrics["success_rate"]
        grid.add_row("Success rate", f"{rate}%" if rate is not None else "—")
        console.print(Panel(grid, title="[bold]Last 24 hours[/bold]", expand=False))


# ---------------------------------------------------------------------------
# Subcommand: logs
# ---------------------------------------------------------------------------


@app.command()
def logs(
    limit: Annotated[int, typer.Option("--limit", "-n", help="Number of entries to show")] = 50,
) -> None:
    """Show the most recent sync log entries."""
    with _session(preflight=False) as session:
        entries = session.sync_log.recent(limit)
        if not entries:
            console.print("[yellow]No sync operations recorded yet.[/]")
            return

        table = Table(show_header=True, header_style="bold cyan", box=None, padding=(0, 2))
        table.add_column("Time")
        table.add_column("Direction")
        table.add_column("Operation")
        table.add_column("Status")
        table.add_column("Event", overflow="fold")
        table.add_column("Error", overflow="fold")
        status_styles = {SyncStatus.SUCCESS: "green", SyncStatus.FAILURE: "red", SyncStatus.SKIPPED: "yellow"}
        for entry in entries:
            table.add_row(
                entry.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
                "Notion → Google" if entry.direction.value == "notion_to_gcal" else "Google → Notion",
                entry.operation.value,
                Text(entry.status.value, style=status_styles[entry.status]),
                entry.event_title or "—",
                entry.error or "",
            )
        console.print(table)


# ---------------------------------------------------------------------------
# Subcommand group: webhook
# ---------------------------------------------------------------------------

_URL_OPT = Annotated[
    str | None,
    typer.Option("--url", help="Public HTTPS endpoint (overrides config)"),
]


@webhook_app.command("setup")
def webhook_setup(url: _URL_OPT = None) -> None:
    """Start watching the calendar for changes."""
    from gcal_notion_sync.webhooks.lifecycle import setup_calendar_channel

    with _session(need_notion=False) as session:
        channel = setup_calendar_channel(session, url)
        console.print(
            f"[green]✓[/] Channel [cyan]{channel.channel_id}[/] active until "
            f"{channel.expiration:%Y-%m-%d %H:%M} UTC"
        )


@webhook_app.command("renew")
def webhook_renew(
    url: _URL_OPT = None,
    force: Annotated[bool, typer.Option("--force", help="Renew even if not close to expiry")] = False,
) -> None:
    """Renew the calendar channel if it expires within six hours.

    Intended to run from a scheduler, e.g. hourly.
    """
    from gcal_notion_sync.webhooks.lifecycle import renew_calendar_channel

    with _session(need_notion=False) as session:
        channel = renew_calendar_channel(session, url, force=force)
        if channel is None:
            console.print("[dim]Channel does not need renewal yet.[/dim]")
        else:
            console.print(
                f"[green]✓[/] Renewed as [cyan]{channel.channel_id}[/], active until "
                f"{channel.expiration:%Y-%m-%d %H:%M} UTC"
            )


@webhook_app.command("stop")
def webhook_stop() -> None:
    """Stop the calendar channel and forget it."""
    from gcal_notion_sync.webhooks.lifecycle import stop_calendar_channel

    with _session(need_notion=False) as session:
        if stop_calendar_channel(session):
            console.print("[green]✓[/] Channel stopped.")
        else:
            console.print("[yellow]No channel registered.[/]")


@webhook_app.command("notion-setup")
def webhook_notion_setup(
    url: _URL_OPT = None,
    subscription_id: Annotated[
        str | None,
        typer.Option("--subscription-id", help="Register a subscription created in Notion's UI"),
    ] = None,
) -> None:
    """Create or register the Notion webhook subscription."""
    from gcal_notion_sync.webhooks.lifecycle import setup_notion_subscription

    with _session(need_google=False) as session:
        subscription = setup_notion_subscription(session, url, subscription_id=subscription_id)
        if subscription.verified:
            console.print(f"[green]✓[/] Subscription [cyan]{subscription.subscription_id}[/] registered.")
        else:
            console.print(
                "[yellow]Subscription created; Notion will send a verification token to the "
                "endpoint.[/] Confirm it in Notion, then run "
                "[cyan]gcal-notion-sync webhook notion-verify[/]."
            )


@webhook_app.command("notion-verify")
def webhook_notion_verify() -> None:
    """Mark the Notion subscription as verified."""
    from gcal_notion_sync.webhooks.lifecycle import confirm_notion_verification

    with _session(preflight=False) as session:
        subscription = confirm_notion_verification(session)
        console.print(f"[green]✓[/] Subscription {subscription.subscription_id or ''} verified.")


# ---------------------------------------------------------------------------
# Subcommand group: backfill
# ---------------------------------------------------------------------------


@backfill_app.command("start")
def backfill_start(
    fields: Annotated[
        list[str],
        typer.Argument(
            help="Fields to fill: " + ", ".join(f.key for f in OptionalField),
            show_default=False,
        ),
    ],
) -> None:
    """Write the given fields onto every linked Notion page (next 365 days)."""
    with _session() as session:
        progress = session.backfill().start(fields)
        console.print(_progress_panel(progress, "Backfill"))
    if progress.get("errors"):
        raise typer.Exit(1)


@backfill_app.command("cancel")
def backfill_cancel() -> None:
    """Request cancellation of a running backfill."""
    with _session(preflight=False) as session:
        if session.backfill_progress().cancel():
            console.print("[yellow]Cancellation requested; the job stops after the current batch.[/]")
        else:
            console.print("[dim]No backfill is running.[/dim]")


@backfill_app.command("reset")
def backfill_reset() -> None:
    """Clear the stored backfill progress."""
    with _session(preflight=False) as session:
        session.backfill_progress().reset()
        console.print("[green]✓[/] Backfill progress reset.")


@backfill_app.command("status")
def backfill_status() -> None:
    """Show backfill progress."""
    with _session(preflight=False) as session:
        console.print(_progress_panel(session.backfill_progress().get(), "Backfill"))


# ---------------------------------------------------------------------------
# Subcommand group: historical
# ---------------------------------------------------------------------------

_DAYS_ARG = Annotated[int, typer.Argument(help="How many days back to import (1-365)")]


@historical_app.command("preview")
def historical_preview(days: _DAYS_ARG) -> None:
    """Show what a historical import would do, without changing anything."""
    with _session() as session:
        preview = session.historical().get_preview(days)
        console.print(_preview_panel(preview, days))


def _preview_panel(preview: dict, days: int) -> Panel:
    grid = Table.grid(padding=(0, 2))
    grid.add_column(style="bold")
    grid.add_column(justify="right")
    grid.add_row("Events", str(preview["total"]))
    grid.add_row("New", str(preview["new_events"]))
    grid.add_row("Already synced", str(preview["already_synced"]))
    grid.add_row("Recurring instances", str(preview["recurring_instances"]))
    return Panel(grid, title=f"[bold]Last {days} days[/bold]", expand=False)


@historical_app.command("start")
def historical_start(
    days: _DAYS_ARG,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt")] = False,
) -> None:
    """Import past calendar events into Notion."""
    with _session() as session:
        coordinator = session.historical()
        if not yes:
            console.print(_preview_panel(coordinator.get_preview(days), days))
            typer.confirm("Proceed?", abort=True)
        progress = coordinator.start(days)
        console.print(_progress_panel(progress, "Historical sync"))
    if progress.get("errors"):
        raise typer.Exit(1)


@historical_app.command("cancel")
def historical_cancel() -> None:
    """Request cancellation of a running historical import."""
    with _session(preflight=False) as session:
        if session.historical_progress().cancel():
            console.print("[yellow]Cancellation requested; the job stops after the current batch.[/]")
        else:
            console.print("[dim]No historical sync is running.[/dim]")


@historical_app.command("reset")
def historical_reset() -> None:
    """Clear the stored historical sync progress."""
    with _session(preflight=False) as session:
        session.historical_progress().reset()
        console.print("[green]✓[/] Historical sync progress reset.")


@historical_app.command("status")
def historical_status() -> None:
    """Show historical sync progress."""
    with _session(preflight=False) as session:
        console.print(_progress_panel(session.historical_progress().get(), "Historical sync"))


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    app()
