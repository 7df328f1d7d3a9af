"""
Preflight checks run before mutating commands to catch common misconfigurations early.
"""

import logging
import sqlite3

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from gcal_notion_sync.config import AppConfig
from gcal_notion_sync.models import DEFAULT_CONFIG

logger = logging.getLogger(__name__)

_SETTING_HINTS = {
    "notion.token": "Set [notion] token or export NOTION_TOKEN",
    "notion.database_id": "Set [notion] database_id to the ID of the events database",
    "google.calendar_id": "Set [google] calendar_id (use 'primary' for the default calendar)",
}


def run_preflight_checks(
    cfg: AppConfig, console: Console, need_google: bool = True, need_notion: bool = True
) -> bool:
    """Return True if the command may proceed; print issues and return False otherwise."""
    issues: list[tuple[str, str, str]] = []  # (label, detail, hint)

    # 1. Required settings
    for name in cfg.missing():
        if name.startswith("notion.") and not need_notion:
            continue
        if name.startswith("google.") and not need_google:
            continue
        logger.error("Missing setting: %s", name)
        issues.append(
            (
                "Configuration",
                f"{name} is not set",
                _SETTING_HINTS.get(name, f"Add it to {DEFAULT_CONFIG}"),
            )
        )

    # 2. Google OAuth token
    if need_google and not cfg.google.token_file.exists():
        logger.error("Google token file not found: %s", cfg.google.token_file)
        issues.append(
            (
                "Google credentials",
                f"Token file not found: {cfg.google.token_file}",
                "Authorize once with the Google OAuth flow and save the token there, "
                "or set [google] token_file",
            )
        )

    # 3. State DB parent dir writable + DB writable if it exists
    db_path = cfg.state_db_path
    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error("Cannot create state DB directory %s: %s", db_path.parent, e)
        issues.append(
            (
                "State database",
                f"{db_path}: {e}",
                f"Check permissions on {db_path.parent}",
            )
        )
    else:
        if db_path.exists():
            try:
                conn = sqlite3.connect(db_path)
                conn.execute("SELECT 1")
                # BEGIN IMMEDIATE takes the write lock, which needs a journal
                # file next to the DB.
                conn.execute("BEGIN IMMEDIATE")
                conn.execute("ROLLBACK")
                conn.close()
            except sqlite3.Error as e:
                logger.error("State DB not readable/writable (%s): %s", db_path, e)
                issues.append(
                    (
                        "State database",
                        f"{db_path}: {e}",
                        f"Check permissions on {db_path.parent} "
                        f"(journal files must be creatable alongside the DB)",
                    )
                )

    if issues:
        _print_issues(issues, console)
        return False

    return True


def _print_issues(issues: list[tuple[str, str, str]], console: Console) -> None:
    body = Text()
    for i, (label, detail, hint) in enumerate(issues):
        if i:
            body.append("\n")
        body.append(f"  ✗  {label}: ", style="bold red")
        body.append(detail, style="bold red")
        body.append(f"\n       → {hint}", style="yellow")

    console.print(Panel(body, title="[bold red]Preflight checks failed[/bold red]"))
