"""
Historical sync: one-time import of past calendar events into Notion.
"""

import logging
import threading
from datetime import datetime
from datetime import timedelta

from gcal_notion_sync.clients import CalendarClient
from gcal_notion_sync.db import StateDatabase
from gcal_notion_sync.errors import JobAlreadyRunningError
from gcal_notion_sync.errors import ValidationError
from gcal_notion_sync.models import SyncOperation
from gcal_notion_sync.models import SyncStatus
from gcal_notion_sync.models import utcnow
from gcal_notion_sync.sync.engine import SyncEngine
from gcal_notion_sync.sync.progress import DEFAULT_MAX_WORKERS
from gcal_notion_sync.sync.progress import JobStatus
from gcal_notion_sync.sync.progress import ProgressStore
from gcal_notion_sync.sync.progress import process_in_batches
from gcal_notion_sync.translator import gcal_event_to_event

logger = logging.getLogger(__name__)

PROGRESS_KEY = "sync:historical:progress"
BATCH_SIZE = 50
MAX_HISTORICAL_DAYS = 365


class HistoricalSyncCoordinator:
    def __init__(
        self,
        calendar: CalendarClient,
        engine: SyncEngine,
        state_db: StateDatabase,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ):
        self.calendar = calendar
        self.engine = engine
        self.max_workers = max_workers
        self.progress = self.progress_store(state_db)

    @staticmethod
    def progress_store(state_db: StateDatabase) -> ProgressStore:
        return ProgressStore(
            state_db, PROGRESS_KEY, {"created": 0, "updated": 0, "skipped": 0, "days": 0}
        )

    def get_progress(self) -> dict:
        return self.progress.get()

    def cancel(self) -> bool:
        cancelled = self.progress.cancel()
        if cancelled:
            logger.info("Historical sync cancellation requested")
        return cancelled

    def reset(self):
        self.progress.reset()

    @staticmethod
    def _check_days(days: int):
        if not 1 <= days <= MAX_HISTORICAL_DAYS:
            raise ValidationError(f"Days must be between 1 and {MAX_HISTORICAL_DAYS}")

    def _fetch(self, days: int, now: datetime | None) -> list[dict]:
        now = now or utcnow()
        return self.calendar.list_events(now - timedelta(days=days), now)

    def get_preview(self, days: int, now: datetime | None = None) -> dict:
        """Classify the candidate events without touching either system."""
        self._check_days(days)
        new_events = already_synced = recurring = total = 0
        for item in self._fetch(days, now):
            event = gcal_event_to_event(item, is_self=self.calendar.is_self)
            if event is None:
                continue
            total += 1
            if event.notion_page_id:
                already_synced += 1
            else:
                new_events += 1
            if event.recurring_event_id or event.recurrence:
                recurring += 1
        return {
            "total": total,
            "new_events": new_events,
            "already_synced": already_synced,
            "recurring_instances": recurring,
        }

    def _validate(self, days: int):
        self._check_days(days)
        if self.progress.is_running():
            raise JobAlreadyRunningError("Historical sync is already running")

    def _begin(self, days: int):
        self.progress.begin("Historical sync is already running", days=days)
        logger.info(f"Starting historical sync for {days} days back")

    def start(self, days: int, now: datetime | None = None) -> dict:
        """Validate, then run the import in the calling thread."""
        self._validate(days)
        self._begin(days)
        return self._run(days, now)

    def start_in_background(self, days: int, now: datetime | None = None) -> threading.Thread:
        self._validate(days)
        self._begin(days)
        thread = threading.Thread(
            target=self._run_detached, args=(days, now), name="historical-sync", daemon=True
        )
        thread.start()
        return thread

    def _run_detached(self, days, now):
        try:
            self._run(days, now)
        except Exception:
            logger.exception("Historical sync failed")

    def _run(self, days: int, now: datetime | None) -> dict:
        try:
            items = self._fetch(days, now)
            self.progress.update(total=len(items))
            logger.info(f"Historical sync: {len(items)} events to process")

            def handle(item: dict) -> str:
                event = gcal_event_to_event(item, is_self=self.calendar.is_self)
                if event is None or event.status == "cancelled":
                    return "skipped"
                result = self.engine.sync_gcal_to_notion(event)
                if result.status != SyncStatus.SUCCESS:
                    return "skipped"
                return "created" if result.operation == SyncOperation.CREATE else "updated"

            finished = process_in_batches(
                items,
                BATCH_SIZE,
                handle,
                self.progress,
                max_workers=self.max_workers,
                label=lambda i: f"calendar event {i.get('id')}",
            )
        except Exception as e:
            logger.error(f"Historical sync failed: {e}")
            self.progress.finish(JobStatus.FAILED, error=str(e))
            raise

        if finished:
            progress = self.progress.finish(JobStatus.COMPLETED)
            logger.info(
                f"Historical sync completed: {progress['created']} created, "
                f"{progress['updated']} updated, {progress['skipped']} skipped, "
                f"{progress['errors']} errors"
            )
        return self.progress.get()
