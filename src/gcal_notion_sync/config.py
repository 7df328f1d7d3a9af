"""
INI configuration loading.

Example::

    [google]
    calendar_id = primary
    token_file = ~/.config/gcal-notion-sync-token.json
    webhook_url = https://sync.example.com/webhooks/google-calendar

    [notion]
    token = secret_xxx
    database_id = 0123456789abcdef
    webhook_url = https://sync.example.com/webhooks/notion

    [sync]
    max_workers = 4
    max_retries = 3

    [fields]
    reminders = on
    attendees = off

    [properties]
    title = Name
"""

import os
from configparser import ConfigParser
from dataclasses import dataclass
from dataclasses import field
from pathlib import Path

from gcal_notion_sync.errors import ConfigurationError
from gcal_notion_sync.errors import ValidationError
from gcal_notion_sync.fields import FieldMapping
from gcal_notion_sync.fields import OptionalField
from gcal_notion_sync.models import DEFAULT_STATE_DB
from gcal_notion_sync.retry import RetryOptions

DEFAULT_TOKEN_FILE = Path.home() / ".config/gcal-notion-sync-token.json"


@dataclass
class GoogleSettings:
    calendar_id: str = "primary"
    token_file: Path = DEFAULT_TOKEN_FILE
    webhook_url: str | None = None
    self_email: str | None = None


@dataclass
class NotionSettings:
    token: str | None = None
    database_id: str | None = None
    webhook_url: str | None = None


@dataclass
class SyncSettings:
    max_workers: int = 4
    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0


@dataclass
class AppConfig:
    """Configuration for a sync session."""

    google: GoogleSettings = field(default_factory=GoogleSettings)
    notion: NotionSettings = field(default_factory=NotionSettings)
    sync: SyncSettings = field(default_factory=SyncSettings)
    fields: FieldMapping = field(default_factory=FieldMapping)
    state_db_path: Path = DEFAULT_STATE_DB

    def retry_options(self) -> RetryOptions:
        return RetryOptions(
            max_retries=self.sync.max_retries,
            initial_delay=self.sync.initial_delay,
            max_delay=self.sync.max_delay,
        )

    def missing(self) -> list[str]:
        """Names of settings required to talk to both APIs that are unset."""
        missing = []
        if not self.notion.token:
            missing.append("notion.token")
        if not self.notion.database_id:
            missing.append("notion.database_id")
        if not self.google.calendar_id:
            missing.append("google.calendar_id")
        return missing


def _parse_mapping(parser: ConfigParser) -> FieldMapping:
    enabled = {}
    if parser.has_section("fields"):
        for key in parser["fields"]:
            try:
                enabled[OptionalField.from_key(key)] = parser["fields"].getboolean(key)
            except (ValueError, ValidationError) as e:
                raise ConfigurationError(f"[fields] {key}: {e}") from e
    names = dict(parser["properties"]) if parser.has_section("properties") else {}
    try:
        return FieldMapping().with_options(enabled=enabled, names=names)
    except ValidationError as e:
        raise ConfigurationError(f"[properties] {e}") from e


def load_config(config_path: Path, state_db_path: Path | None = None) -> AppConfig:
    """Read ``config_path``; a missing file yields defaults.

    The NOTION_TOKEN environment variable overrides [notion] token.
    """
    parser = ConfigParser()
    if config_path.exists():
        parser.read(config_path)

    google = parser["google"] if parser.has_section("google") else {}
    notion = parser["notion"] if parser.has_section("notion") else {}

    try:
        sync = SyncSettings(
            max_workers=parser.getint("sync", "max_workers", fallback=4),
            max_retries=parser.getint("sync", "max_retries", fallback=3),
            initial_delay=parser.getfloat("sync", "initial_delay", fallback=1.0),
            max_delay=parser.getfloat("sync", "max_delay", fallback=10.0),
        )
    except ValueError as e:
        raise ConfigurationError(f"Invalid [sync] setting in {config_path}: {e}") from e

    token_file = google.get("token_file")
    return AppConfig(
        google=GoogleSettings(
            calendar_id=google.get("calendar_id", "primary"),
            token_file=Path(token_file).expanduser() if token_file else DEFAULT_TOKEN_FILE,
            webhook_url=google.get("webhook_url"),
            self_email=google.get("self_email"),
        ),
        notion=NotionSettings(
            token=os.environ.get("NOTION_TOKEN") or notion.get("token"),
            database_id=notion.get("database_id"),
            webhook_url=notion.get("webhook_url"),
        ),
        sync=sync,
        fields=_parse_mapping(parser),
        state_db_path=state_db_path or DEFAULT_STATE_DB,
    )
