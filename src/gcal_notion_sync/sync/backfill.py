"""
Backfill: populate newly-enabled optional fields on already-linked Notion pages.
"""

import logging
import threading
from collections.abc import Iterable
from datetime import datetime
from datetime import timedelta

from gcal_notion_sync.clients import CalendarClient
from gcal_notion_sync.clients import NotionClient
from gcal_notion_sync.db import StateDatabase
from gcal_notion_sync.errors import JobAlreadyRunningError
from gcal_notion_sync.errors import ValidationError
from gcal_notion_sync.fields import FieldMapping
from gcal_notion_sync.fields import OptionalField
from gcal_notion_sync.models import Event
from gcal_notion_sync.models import utcnow
from gcal_notion_sync.retry import RetryOptions
from gcal_notion_sync.sync.progress import DEFAULT_MAX_WORKERS
from gcal_notion_sync.sync.progress import JobStatus
from gcal_notion_sync.sync.progress import ProgressStore
from gcal_notion_sync.sync.progress import process_in_batches
from gcal_notion_sync.translator import gcal_event_to_event
from gcal_notion_sync.translator import optional_property

logger = logging.getLogger(__name__)

PROGRESS_KEY = "sync:backfill:progress"
BATCH_SIZE = 100
DEFAULT_LOOKAHEAD = timedelta(days=365)


def build_patch(event: Event, fields: Iterable[OptionalField], mapping: FieldMapping) -> dict:
    """Notion properties for the requested fields that are enabled and have a value."""
    patch = {}
    for opt in fields:
        if not mapping.is_enabled(opt):
            continue
        value = opt.extract(event)
        if value is None:
            continue
        name, prop = optional_property(mapping, opt, value)
        patch[name] = prop
    return patch


class BackfillCoordinator:
    def __init__(
        self,
        calendar: CalendarClient,
        notion: NotionClient,
        mapping: FieldMapping,
        state_db: StateDatabase,
        retry: RetryOptions | None = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
        lookahead: timedelta = DEFAULT_LOOKAHEAD,
    ):
        self.calendar = calendar
        self.notion = notion
        self.mapping = mapping
        self.retry = retry or RetryOptions()
        self.max_workers = max_workers
        self.lookahead = lookahead
        self.progress = self.progress_store(state_db)

    @staticmethod
    def progress_store(state_db: StateDatabase) -> ProgressStore:
        return ProgressStore(state_db, PROGRESS_KEY, {"fields": []})

    def get_progress(self) -> dict:
        return self.progress.get()

    def cancel(self) -> bool:
        cancelled = self.progress.cancel()
        if cancelled:
            logger.info("Backfill cancellation requested")
        return cancelled

    def reset(self):
        self.progress.reset()

    def _validate(self, fields) -> list[OptionalField]:
        if self.progress.is_running():
            raise JobAlreadyRunningError("Backfill is already running")
        if not fields:
            raise ValidationError("No fields specified for backfill")
        return [f if isinstance(f, OptionalField) else OptionalField.from_key(f) for f in fields]

    def _begin(self, selected: list[OptionalField]):
        self.progress.begin("Backfill is already running", fields=[f.key for f in selected])
        logger.info(f"Starting backfill for fields: {', '.join(f.key for f in selected)}")

    def start(self, fields, now: datetime | None = None) -> dict:
        """Validate, then run the backfill in the calling thread."""
        selected = self._validate(fields)
        self._begin(selected)
        return self._run(selected, now)

    def start_in_background(self, fields, now: datetime | None = None) -> threading.Thread:
        """Validate, then run the backfill on a daemon thread.

        Progress is polled with get_progress().
        """
        selected = self._validate(fields)
        self._begin(selected)
        thread = threading.Thread(
            target=self._run_detached, args=(selected, now), name="backfill", daemon=True
        )
        thread.start()
        return thread

    def _run_detached(self, selected, now):
        try:
            self._run(selected, now)
        except Exception:
            logger.exception("Backfill failed")

    def _run(self, selected: list[OptionalField], now: datetime | None) -> dict:
        now = now or utcnow()
        try:
            items = self.calendar.list_events(now, now + self.lookahead)
            events = [
                e
                for e in (gcal_event_to_event(i, is_self=self.calendar.is_self) for i in items)
                if e is not None and e.notion_page_id
            ]
            self.progress.update(total=len(events))
            logger.info(f"Backfill: {len(events)} linked events of {len(items)} fetched")

            def handle(event: Event):
                patch = build_patch(event, selected, self.mapping)
                if not patch:
                    return None
                self.retry.run(lambda: self.notion.update_page(event.notion_page_id, patch))
                return None

            finished = process_in_batches(
                events,
                BATCH_SIZE,
                handle,
                self.progress,
                max_workers=self.max_workers,
                label=lambda e: f"'{e.title}' ({e.notion_page_id})",
            )
        except Exception as e:
            logger.error(f"Backfill failed: {e}")
            self.progress.finish(JobStatus.FAILED, error=str(e))
            raise

        if finished:
            self.progress.finish(JobStatus.COMPLETED)
            logger.info("Backfill completed")
        return self.progress.get()
