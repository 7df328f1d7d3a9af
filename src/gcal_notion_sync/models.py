"""
Pure data models; no API client or sqlite imports.
"""

from dataclasses import dataclass
from dataclasses import field
from datetime import datetime
from datetime import time
from datetime import timezone
from enum import Enum
from pathlib import Path

DEFAULT_STATE_DB = Path.home() / ".local/share/gcal-notion-sync-state.db"
DEFAULT_CONFIG = Path.home() / ".config/gcal-notion-sync.conf"

EVENT_STATUSES = ("confirmed", "tentative", "cancelled")
VISIBILITIES = ("public", "private", "default")


class Source(str, Enum):
    """Remote system a payload came from."""

    GCAL = "gcal"
    NOTION = "notion"


class SyncDirection(str, Enum):
    NOTION_TO_GCAL = "notion_to_gcal"
    GCAL_TO_NOTION = "gcal_to_notion"


class SyncOperation(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class SyncStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_utc_midnight(value: datetime) -> bool:
    return value.astimezone(timezone.utc).time() == time(0, 0)


@dataclass
class Event:
    """
    Neutral unit of synchronization.

    Built fresh from a remote payload on every fetch and discarded once the
    triggering sync operation finishes. ``id`` is the id on the system the
    event was read from; ``gcal_event_id``/``notion_page_id`` carry identity
    on each side.
    """

    id: str
    title: str
    start_time: datetime
    end_time: datetime
    description: str | None = None
    location: str | None = None
    status: str = "confirmed"
    reminders: int | None = None
    attendees: list[str] = field(default_factory=list)
    organizer: str | None = None
    conference_link: str | None = None
    recurrence: str | None = None
    color: str | None = None
    visibility: str | None = None
    gcal_event_id: str | None = None
    notion_page_id: str | None = None
    recurring_event_id: str | None = None

    @property
    def is_all_day(self) -> bool:
        """True when both instants fall exactly on a UTC midnight boundary."""
        return _is_utc_midnight(self.start_time) and _is_utc_midnight(self.end_time)

    @property
    def is_linked(self) -> bool:
        return bool(self.gcal_event_id and self.notion_page_id)


@dataclass
class SyncCursor:
    """Opaque incremental-sync token plus the time it was obtained."""

    token: str
    last_sync: datetime


@dataclass
class SyncResult:
    """Outcome of a single Reconciliation Engine call."""

    operation: SyncOperation
    status: SyncStatus
    gcal_event_id: str | None = None
    notion_page_id: str | None = None


@dataclass
class SyncLogEntry:
    direction: SyncDirection
    operation: SyncOperation
    status: SyncStatus
    event_title: str | None = None
    gcal_event_id: str | None = None
    notion_page_id: str | None = None
    error: str | None = None
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class WebhookLogEntry:
    type: str  # 'notification', 'renewal', 'setup', 'error'
    source: str  # 'gcal', 'notion'
    action: str
    status: str
    detail: str | None = None
    processing_ms: int | None = None
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class SyncStats:
    """Statistics for a polling sync run."""

    created: int = 0
    updated: int = 0
    deleted: int = 0
    skipped: int = 0
    errors: int = 0
