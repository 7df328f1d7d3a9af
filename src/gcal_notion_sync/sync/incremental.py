"""
Incremental calendar fetch driven by the stored sync cursor, plus the Notion
polling fallback used when webhooks are unavailable or missed.
"""

import logging
from dataclasses import dataclass
from dataclasses import field
from datetime import datetime
from datetime import timedelta

from gcal_notion_sync.clients import CalendarClient
from gcal_notion_sync.clients import NotionClient
from gcal_notion_sync.errors import SyncError
from gcal_notion_sync.errors import SyncTokenInvalidError
from gcal_notion_sync.fields import FieldMapping
from gcal_notion_sync.models import SyncCursor
from gcal_notion_sync.models import SyncOperation
from gcal_notion_sync.models import SyncStats
from gcal_notion_sync.models import SyncStatus
from gcal_notion_sync.models import SyncResult
from gcal_notion_sync.models import utcnow
from gcal_notion_sync.sync.engine import SyncEngine
from gcal_notion_sync.translator import NOTION_LINK_KEY
from gcal_notion_sync.translator import gcal_event_to_event
from gcal_notion_sync.translator import notion_page_to_event
from gcal_notion_sync.webhooks.channels import ChannelManager

logger = logging.getLogger(__name__)

# Look-back window for full fetches when no usable cursor exists.
FULL_FETCH_WINDOW = timedelta(days=30)
LOOKAHEAD_WINDOW = timedelta(days=365)


@dataclass
class FetchResult:
    events: list[dict] = field(default_factory=list)
    next_cursor: str | None = None
    cursor_invalid: bool = False


def establish_cursor(calendar: CalendarClient, manager: ChannelManager) -> SyncCursor | None:
    """List without a token to obtain a fresh nextSyncToken and store it."""
    token = _fresh_token(calendar)
    return manager.save_cursor(token) if token else None


def _fresh_token(calendar: CalendarClient) -> str | None:
    _, token = calendar.list_changes(None)
    if not token:
        logger.warning("Calendar did not return a sync token")
    return token


def _full_fetch(calendar: CalendarClient, now: datetime) -> list[dict]:
    return calendar.list_events(now - FULL_FETCH_WINDOW, now + LOOKAHEAD_WINDOW)


def fetch_events_since(
    calendar: CalendarClient, manager: ChannelManager, now: datetime | None = None
) -> FetchResult:
    """Fetch calendar changes since the stored cursor.

    The next cursor is returned, not stored; callers save it once the items
    have been applied. A rejected cursor is cleared before the full-range
    fallback fetch.
    """
    now = now or utcnow()
    cursor = manager.get_cursor()

    if cursor is None:
        logger.info("No sync cursor stored; performing full fetch")
        items = _full_fetch(calendar, now)
        return FetchResult(items, _fresh_token(calendar), False)

    try:
        items, token = calendar.list_changes(cursor.token)
    except SyncTokenInvalidError as e:
        logger.warning(f"Sync cursor rejected ({e}); falling back to full fetch")
        manager.clear_cursor()
        items = _full_fetch(calendar, now)
        return FetchResult(items, _fresh_token(calendar), True)

    logger.debug(f"Fetched {len(items)} calendar changes since {cursor.last_sync}")
    return FetchResult(items, token, False)


def _count(stats: SyncStats, result: SyncResult):
    if result.status == SyncStatus.SKIPPED:
        stats.skipped += 1
    elif result.operation == SyncOperation.CREATE:
        stats.created += 1
    elif result.operation == SyncOperation.UPDATE:
        stats.updated += 1
    else:
        stats.deleted += 1


def apply_calendar_items(engine: SyncEngine, calendar: CalendarClient, items: list[dict], stats: SyncStats):
    """Propagate fetched calendar items to Notion, one engine call per item."""
    for item in items:
        try:
            if item.get("status") == "cancelled":
                private = (item.get("extendedProperties") or {}).get("private") or {}
                notion_page_id = private.get(NOTION_LINK_KEY)
                if not notion_page_id:
                    stats.skipped += 1
                    continue
                _count(
                    stats,
                    engine.delete_from_notion(
                        notion_page_id, gcal_event_id=item.get("id"), title=item.get("summary")
                    ),
                )
                continue

            event = gcal_event_to_event(item, is_self=calendar.is_self)
            if event is None:
                stats.skipped += 1
                continue
            _count(stats, engine.sync_gcal_to_notion(event))
        except Exception as e:
            logger.error(f"Failed to sync calendar event {item.get('id')}: {e}")
            stats.errors += 1


def process_calendar_changes(
    engine: SyncEngine,
    calendar: CalendarClient,
    manager: ChannelManager,
    now: datetime | None = None,
) -> tuple[SyncStats, FetchResult]:
    now = now or utcnow()
    stats = SyncStats()
    result = fetch_events_since(calendar, manager, now)
    apply_calendar_items(engine, calendar, result.events, stats)
    if result.next_cursor:
        manager.save_cursor(result.next_cursor, now)
    logger.info(
        f"Calendar changes: {stats.created} created, {stats.updated} updated, "
        f"{stats.deleted} deleted, {stats.skipped} skipped, {stats.errors} errors"
    )
    return stats, result


def poll_notion(
    engine: SyncEngine,
    notion: NotionClient,
    calendar: CalendarClient,
    mapping: FieldMapping,
    now: datetime | None = None,
) -> SyncStats:
    """
    Push every Notion page to the calendar, then delete calendar events whose
    linked page no longer exists.

    Deletion detection only looks at calendar events from the last 30 days
    onward. A failing Notion query raises before anything is deleted.
    """
    now = now or utcnow()
    stats = SyncStats()
    pages = notion.query_pages()
    live_ids = set()

    for page in pages:
        if page.get("archived") or page.get("in_trash"):
            continue
        live_ids.add(page["id"])
        event = notion_page_to_event(page, mapping)
        if event is None:
            stats.skipped += 1
            continue
        try:
            _count(stats, engine.sync_notion_to_gcal(event))
        except SyncError as e:
            logger.error(f"Failed to sync Notion page '{event.title}': {e}")
            stats.errors += 1

    for item in _full_fetch(calendar, now):
        private = (item.get("extendedProperties") or {}).get("private") or {}
        notion_page_id = private.get(NOTION_LINK_KEY)
        if not notion_page_id or notion_page_id in live_ids:
            continue
        logger.info(
            f"Notion page {notion_page_id} no longer exists; deleting '{item.get('summary')}'"
        )
        try:
            _count(
                stats,
                engine.delete_from_gcal(item["id"], notion_page_id=notion_page_id, title=item.get("summary")),
            )
        except SyncError as e:
            logger.error(f"Failed to delete calendar event {item['id']}: {e}")
            stats.errors += 1

    logger.info(
        f"Notion poll: {stats.created} created, {stats.updated} updated, "
        f"{stats.deleted} deleted, {stats.skipped} skipped, {stats.errors} errors"
    )
    return stats
