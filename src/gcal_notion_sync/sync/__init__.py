"""
SyncSession: client factory and entry point that wires the engine, the
coordinators and the channel manager for one configured calendar/database pair.
"""

import logging

from gcal_notion_sync.clients import CalendarClient
from gcal_notion_sync.clients import NotionClient
from gcal_notion_sync.config import AppConfig
from gcal_notion_sync.db import StateDatabase
from gcal_notion_sync.errors import ConfigurationError
from gcal_notion_sync.models import SyncStats
from gcal_notion_sync.sync.backfill import BackfillCoordinator
from gcal_notion_sync.sync.engine import SyncEngine
from gcal_notion_sync.sync.historical import HistoricalSyncCoordinator
from gcal_notion_sync.sync.incremental import poll_notion
from gcal_notion_sync.sync.incremental import process_calendar_changes
from gcal_notion_sync.sync.progress import ProgressStore
from gcal_notion_sync.sync_log import SyncLog
from gcal_notion_sync.webhooks.channels import ChannelManager


class SyncSession:
    """Lazily builds API clients from config.

    Clients passed to the constructor are used as-is, which is how tests
    substitute fakes. reset() drops cached clients so the next access rebuilds
    them from the (possibly new) configuration.
    """

    def __init__(
        self,
        config: AppConfig,
        state_db: StateDatabase,
        calendar: CalendarClient | None = None,
        notion: NotionClient | None = None,
    ):
        self.config = config
        self.state_db = state_db
        self.logger = logging.getLogger(__name__)
        self.sync_log = SyncLog(state_db)
        self.channels = ChannelManager(state_db)
        self._calendar = calendar
        self._notion = notion
        self._engine: SyncEngine | None = None

    @property
    def calendar(self) -> CalendarClient:
        if self._calendar is None:
            from gcal_notion_sync.gcal_api import GoogleCalendarClient

            google = self.config.google
            self._calendar = GoogleCalendarClient.from_token_file(
                google.token_file, google.calendar_id, self_email=google.self_email
            )
        return self._calendar

    @property
    def notion(self) -> NotionClient:
        if self._notion is None:
            from gcal_notion_sync.notion_api import NotionDatabaseClient

            notion = self.config.notion
            if not notion.token or not notion.database_id:
                raise ConfigurationError("Notion token and database_id must be configured")
            self._notion = NotionDatabaseClient(notion.token, notion.database_id)
        return self._notion

    @property
    def engine(self) -> SyncEngine:
        if self._engine is None:
            self._engine = SyncEngine(
                self.calendar,
                self.notion,
                mapping=self.config.fields,
                sync_log=self.sync_log,
                retry=self.config.retry_options(),
            )
        return self._engine

    def backfill(self) -> BackfillCoordinator:
        return BackfillCoordinator(
            self.calendar,
            self.notion,
            self.config.fields,
            self.state_db,
            retry=self.config.retry_options(),
            max_workers=self.config.sync.max_workers,
        )

    def historical(self) -> HistoricalSyncCoordinator:
        return HistoricalSyncCoordinator(
            self.calendar, self.engine, self.state_db, max_workers=self.config.sync.max_workers
        )

    def backfill_progress(self) -> ProgressStore:
        """Progress record only; usable without API credentials."""
        return BackfillCoordinator.progress_store(self.state_db)

    def historical_progress(self) -> ProgressStore:
        return HistoricalSyncCoordinator.progress_store(self.state_db)

    def reset(self, config: AppConfig | None = None):
        """Forget cached clients, optionally switching to a new configuration."""
        close = getattr(self._notion, "close", None)
        if callable(close):
            close()
        self._calendar = None
        self._notion = None
        self._engine = None
        if config is not None:
            self.config = config
        self.logger.debug("Sync session reset")

    def run(self, to_gcal: bool = True, to_notion: bool = True) -> SyncStats:
        """One polling pass: calendar changes to Notion, then Notion to calendar."""
        total = SyncStats()
        parts = []
        if to_notion:
            self.logger.info("Fetching calendar changes...")
            stats, _ = process_calendar_changes(self.engine, self.calendar, self.channels)
            parts.append(stats)
        if to_gcal:
            self.logger.info("Polling Notion database...")
            parts.append(poll_notion(self.engine, self.notion, self.calendar, self.config.fields))
        for stats in parts:
            total.created += stats.created
            total.updated += stats.updated
            total.deleted += stats.deleted
            total.skipped += stats.skipped
            total.errors += stats.errors
        return total
