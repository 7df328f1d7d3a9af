"""
Reconciliation engine: directional sync between Google Calendar and Notion.

Loop prevention: every create stamps the new record with the originating
system's id before returning, so the next pass over either side sees a linked
pair and updates instead of creating a duplicate.
"""

import logging
import threading
from contextlib import contextmanager

from gcal_notion_sync.clients import CalendarClient
from gcal_notion_sync.clients import NotionClient
from gcal_notion_sync.errors import ReadOnlyEventError
from gcal_notion_sync.errors import TargetArchivedError
from gcal_notion_sync.errors import ValidationError
from gcal_notion_sync.fields import FieldMapping
from gcal_notion_sync.models import Event
from gcal_notion_sync.models import SyncDirection
from gcal_notion_sync.models import SyncLogEntry
from gcal_notion_sync.models import SyncOperation
from gcal_notion_sync.models import SyncResult
from gcal_notion_sync.models import SyncStatus
from gcal_notion_sync.retry import RetryOptions
from gcal_notion_sync.sync_log import SyncLog
from gcal_notion_sync.translator import event_to_gcal_body
from gcal_notion_sync.translator import event_to_notion_properties
from gcal_notion_sync.translator import link_body
from gcal_notion_sync.translator import link_property

logger = logging.getLogger(__name__)


class SyncEngine:
    """Directional sync and delete propagation for one calendar/database pair."""

    def __init__(
        self,
        calendar: CalendarClient,
        notion: NotionClient,
        mapping: FieldMapping | None = None,
        sync_log: SyncLog | None = None,
        retry: RetryOptions | None = None,
    ):
        self.calendar = calendar
        self.notion = notion
        self.mapping = mapping or FieldMapping()
        self.sync_log = sync_log
        self.retry = retry or RetryOptions()
        self._locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    def reconfigure(
        self,
        calendar: CalendarClient | None = None,
        notion: NotionClient | None = None,
        mapping: FieldMapping | None = None,
    ):
        if calendar is not None:
            self.calendar = calendar
        if notion is not None:
            self.notion = notion
        if mapping is not None:
            self.mapping = mapping

    # ------------------------------------------------------------------ #
    # Internal helpers                                                     #
    # ------------------------------------------------------------------ #

    @contextmanager
    def _pair_lock(self, *ids: str | None):
        """Serialize operations touching any of ``ids``.

        Locks are taken in sorted order so two callers holding overlapping id
        sets cannot deadlock.
        """
        keys = sorted({i for i in ids if i})
        with self._locks_guard:
            locks = [self._locks.setdefault(k, threading.RLock()) for k in keys]
        for lock in locks:
            lock.acquire()
        try:
            yield
        finally:
            for lock in reversed(locks):
                lock.release()

    def _run(self, operation, label: str):
        def on_retry(exc, attempt):
            logger.info(f"Retrying {label} (attempt {attempt}): {exc}")

        return self.retry.run(operation, on_retry=on_retry)

    def _log(
        self,
        direction: SyncDirection,
        operation: SyncOperation,
        status: SyncStatus,
        title: str | None,
        gcal_event_id: str | None,
        notion_page_id: str | None,
        error: Exception | None = None,
    ) -> SyncResult:
        if self.sync_log is not None:
            self.sync_log.record(
                SyncLogEntry(
                    direction=direction,
                    operation=operation,
                    status=status,
                    event_title=title,
                    gcal_event_id=gcal_event_id,
                    notion_page_id=notion_page_id,
                    error=str(error) if error else None,
                )
            )
        return SyncResult(operation, status, gcal_event_id, notion_page_id)

    # ------------------------------------------------------------------ #
    # Notion → Google Calendar                                             #
    # ------------------------------------------------------------------ #

    def sync_notion_to_gcal(self, event: Event) -> SyncResult:
        """Push a Notion page to Google Calendar, creating and linking if needed."""
        direction = SyncDirection.NOTION_TO_GCAL
        if not event.notion_page_id:
            raise ValidationError(f"Event '{event.title}' has no Notion page id")

        with self._pair_lock(event.notion_page_id, event.gcal_event_id):
            body = event_to_gcal_body(event, self.mapping)

            if event.gcal_event_id:
                gcal_id = event.gcal_event_id
                try:
                    self._run(lambda: self.calendar.patch_event(gcal_id, body), f"update {gcal_id}")
                except ReadOnlyEventError as e:
                    logger.warning(f"Skipping read-only calendar event '{event.title}': {e}")
                    return self._log(
                        direction,
                        SyncOperation.UPDATE,
                        SyncStatus.SKIPPED,
                        event.title,
                        gcal_id,
                        event.notion_page_id,
                        e,
                    )
                except Exception as e:
                    logger.error(f"Failed to update calendar event {gcal_id}: {e}")
                    self._log(
                        direction,
                        SyncOperation.UPDATE,
                        SyncStatus.FAILURE,
                        event.title,
                        gcal_id,
                        event.notion_page_id,
                        e,
                    )
                    raise
                logger.info(f"[NOTION→GCAL] Updated '{event.title}'")
                return self._log(
                    direction,
                    SyncOperation.UPDATE,
                    SyncStatus.SUCCESS,
                    event.title,
                    gcal_id,
                    event.notion_page_id,
                )

            gcal_id = None
            try:
                created = self._run(
                    lambda: self.calendar.insert_event(body), f"create '{event.title}'"
                )
                gcal_id = created["id"]
                self._run(
                    lambda: self.notion.update_page(
                        event.notion_page_id, link_property(self.mapping, gcal_id)
                    ),
                    f"link page {event.notion_page_id}",
                )
            except Exception as e:
                logger.error(f"Failed to create calendar event for '{event.title}': {e}")
                self._log(
                    direction,
                    SyncOperation.CREATE,
                    SyncStatus.FAILURE,
                    event.title,
                    gcal_id,
                    event.notion_page_id,
                    e,
                )
                raise
            logger.info(f"[NOTION→GCAL] Created '{event.title}' -> {gcal_id}")
            return self._log(
                direction,
                SyncOperation.CREATE,
                SyncStatus.SUCCESS,
                event.title,
                gcal_id,
                event.notion_page_id,
            )

    # ------------------------------------------------------------------ #
    # Google Calendar → Notion                                             #
    # ------------------------------------------------------------------ #

    def _create_page(self, event: Event) -> str:
        """Create the Notion page, then stamp its id onto the calendar event."""
        props = event_to_notion_properties(event, self.mapping)
        page = self._run(lambda: self.notion.create_page(props), f"create page '{event.title}'")
        page_id = page["id"]
        self._run(
            lambda: self.calendar.patch_event(event.gcal_event_id, link_body(page_id)),
            f"link event {event.gcal_event_id}",
        )
        return page_id

    def sync_gcal_to_notion(self, event: Event) -> SyncResult:
        """Push a calendar event to Notion, creating and linking if needed.

        If the linked page was archived or deleted, a new page is created and
        re-linked; the log records that as a successful create.
        """
        direction = SyncDirection.GCAL_TO_NOTION
        if not event.gcal_event_id:
            raise ValidationError(f"Event '{event.title}' has no calendar event id")

        with self._pair_lock(event.gcal_event_id, event.notion_page_id):
            if event.notion_page_id:
                page_id = event.notion_page_id
                props = event_to_notion_properties(event, self.mapping)
                try:
                    self._run(lambda: self.notion.update_page(page_id, props), f"update page {page_id}")
                except TargetArchivedError:
                    logger.info(f"Notion page {page_id} is archived; re-creating '{event.title}'")
                except Exception as e:
                    logger.error(f"Failed to update Notion page {page_id}: {e}")
                    self._log(
                        direction,
                        SyncOperation.UPDATE,
                        SyncStatus.FAILURE,
                        event.title,
                        event.gcal_event_id,
                        page_id,
                        e,
                    )
                    raise
                else:
                    logger.info(f"[GCAL→NOTION] Updated '{event.title}'")
                    return self._log(
                        direction,
                        SyncOperation.UPDATE,
                        SyncStatus.SUCCESS,
                        event.title,
                        event.gcal_event_id,
                        page_id,
                    )

            try:
                page_id = self._create_page(event)
            except Exception as e:
                logger.error(f"Failed to create Notion page for '{event.title}': {e}")
                self._log(
                    direction,
                    SyncOperation.CREATE,
                    SyncStatus.FAILURE,
                    event.title,
                    event.gcal_event_id,
                    None,
                    e,
                )
                raise
            logger.info(f"[GCAL→NOTION] Created '{event.title}' -> {page_id}")
            return self._log(
                direction,
                SyncOperation.CREATE,
                SyncStatus.SUCCESS,
                event.title,
                event.gcal_event_id,
                page_id,
            )

    # ------------------------------------------------------------------ #
    # Delete propagation                                                   #
    # ------------------------------------------------------------------ #

    def delete_from_gcal(
        self,
        gcal_event_id: str,
        notion_page_id: str | None = None,
        title: str | None = None,
    ) -> SyncResult:
        """Delete the calendar event linked to a removed Notion page."""
        direction = SyncDirection.NOTION_TO_GCAL
        with self._pair_lock(gcal_event_id, notion_page_id):
            try:
                self._run(lambda: self.calendar.delete_event(gcal_event_id), f"delete {gcal_event_id}")
            except Exception as e:
                logger.error(f"Failed to delete calendar event {gcal_event_id}: {e}")
                self._log(
                    direction,
                    SyncOperation.DELETE,
                    SyncStatus.FAILURE,
                    title,
                    gcal_event_id,
                    notion_page_id,
                    e,
                )
                raise
            logger.info(f"[NOTION→GCAL] Deleted {title or gcal_event_id}")
            return self._log(
                direction, SyncOperation.DELETE, SyncStatus.SUCCESS, title, gcal_event_id, notion_page_id
            )

    def delete_from_notion(
        self,
        notion_page_id: str,
        gcal_event_id: str | None = None,
        title: str | None = None,
    ) -> SyncResult:
        """Archive the Notion page linked to a removed calendar event."""
        direction = SyncDirection.GCAL_TO_NOTION
        with self._pair_lock(gcal_event_id, notion_page_id):
            try:
                self._run(lambda: self.notion.archive_page(notion_page_id), f"archive {notion_page_id}")
            except Exception as e:
                logger.error(f"Failed to archive Notion page {notion_page_id}: {e}")
                self._log(
                    direction,
                    SyncOperation.DELETE,
                    SyncStatus.FAILURE,
                    title,
                    gcal_event_id,
                    notion_page_id,
                    e,
                )
                raise
            logger.info(f"[GCAL→NOTION] Archived {title or notion_page_id}")
            return self._log(
                direction, SyncOperation.DELETE, SyncStatus.SUCCESS, title, gcal_event_id, notion_page_id
            )
