"""
Inbound notification processing for both webhook sources.

These functions are what an HTTP endpoint calls with the raw request headers
and body; they return a small JSON-serializable dict for the response.
"""

import json
import logging
import threading
import time
from collections.abc import Mapping
from typing import TYPE_CHECKING

from gcal_notion_sync.errors import WebhookError
from gcal_notion_sync.models import WebhookLogEntry
from gcal_notion_sync.sync.incremental import process_calendar_changes
from gcal_notion_sync.webhooks.channels import normalize_notion_id
from gcal_notion_sync.translator import notion_page_to_event

if TYPE_CHECKING:
    from gcal_notion_sync.sync import SyncSession

logger = logging.getLogger(__name__)

MESSAGE_TTL = 300.0
PAGE_SYNC_EVENTS = frozenset({"page.created", "page.content_updated", "page.properties_updated"})
PAGE_DELETE_EVENTS = frozenset({"page.deleted"})


class MessageDeduplicator:
    """Remembers recently seen message keys for ``ttl`` seconds."""

    def __init__(self, ttl: float = MESSAGE_TTL, clock=time.monotonic):
        self.ttl = ttl
        self.clock = clock
        self._seen: dict[str, float] = {}
        self._lock = threading.Lock()

    def seen(self, key: str) -> bool:
        """Return True if ``key`` was seen within the TTL; otherwise remember it."""
        now = self.clock()
        with self._lock:
            self._seen = {k: exp for k, exp in self._seen.items() if exp > now}
            if key in self._seen:
                return True
            self._seen[key] = now + self.ttl
            return False


_deduplicator = MessageDeduplicator()


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def _record(session: "SyncSession", type_: str, source: str, action: str, status: str, start: float, detail=None):
    session.sync_log.record_webhook(
        WebhookLogEntry(
            type=type_,
            source=source,
            action=action,
            status=status,
            detail=detail,
            processing_ms=_elapsed_ms(start),
        )
    )


def handle_calendar_notification(
    session: "SyncSession",
    headers: Mapping[str, str],
    deduplicator: MessageDeduplicator | None = None,
) -> dict:
    """Process a Google Calendar push notification."""
    start = time.monotonic()
    deduplicator = deduplicator or _deduplicator
    h = {k.lower(): v for k, v in headers.items()}
    channel_id = h.get("x-goog-channel-id")
    resource_state = h.get("x-goog-resource-state")
    message_number = h.get("x-goog-message-number")

    channel = session.channels.get_channel()
    if channel is None or channel_id != channel.channel_id:
        logger.warning(f"Ignoring notification for unknown channel {channel_id}")
        _record(session, "notification", "gcal", "unknown_channel", "ignored", start, channel_id)
        return {"status": "ignored", "reason": "unknown channel"}

    if message_number and deduplicator.seen(f"{channel_id}:{message_number}"):
        logger.debug(f"Duplicate notification {channel_id}#{message_number}")
        return {"status": "duplicate"}

    if resource_state == "sync":
        logger.info(f"Channel {channel_id} handshake received")
        _record(session, "notification", "gcal", "sync", "success", start)
        return {"status": "ok", "action": "sync"}

    if resource_state == "not_exists":
        logger.warning(f"Channel {channel_id} reports resource no longer exists")
        _record(session, "notification", "gcal", "stopped", "success", start)
        return {"status": "ok", "action": "stopped"}

    if resource_state != "exists":
        _record(session, "notification", "gcal", f"state:{resource_state}", "ignored", start)
        return {"status": "ignored", "reason": f"unhandled resource state {resource_state}"}

    try:
        stats, fetch = process_calendar_changes(session.engine, session.calendar, session.channels)
    except Exception as e:
        logger.error(f"Failed to process calendar changes: {e}")
        _record(session, "error", "gcal", "incremental_sync", "failure", start, str(e))
        raise

    _record(
        session,
        "notification",
        "gcal",
        "incremental_sync",
        "success" if stats.errors == 0 else "partial",
        start,
        f"{len(fetch.events)} changes" + (" (cursor reset)" if fetch.cursor_invalid else ""),
    )
    return {
        "status": "ok",
        "action": "synced",
        "created": stats.created,
        "updated": stats.updated,
        "deleted": stats.deleted,
        "errors": stats.errors,
        "cursor_invalid": fetch.cursor_invalid,
    }


def handle_notion_notification(session: "SyncSession", body: bytes, signature: str | None) -> dict:
    """Process a Notion webhook delivery.

    The first delivery carries a verification token, which is stored. Every
    later delivery must be signed with that token; the first correctly signed
    one marks the subscription verified.
    """
    start = time.monotonic()
    try:
        payload = json.loads(body)
    except ValueError as e:
        raise WebhookError(f"Malformed Notion webhook body: {e}") from e

    if "verification_token" in payload:
        if not session.channels.accepts_verification_token():
            logger.warning("Ignoring verification token for an already verified Notion subscription")
            _record(session, "setup", "notion", "verification_token", "ignored", start, "already verified")
            return {"status": "ignored", "reason": "subscription already verified"}
        session.channels.record_verification_token(
            payload["verification_token"], database_id=session.config.notion.database_id
        )
        logger.info("Received Notion webhook verification token")
        _record(session, "setup", "notion", "verification_token", "success", start)
        return {"status": "verification_received"}

    if not session.channels.verify_signature(body, signature):
        _record(session, "error", "notion", "signature", "failure", start, "invalid signature")
        raise WebhookError("Invalid Notion webhook signature", status_code=401)

    subscription = session.channels.get_subscription()
    if subscription and not subscription.verified:
        session.channels.mark_verified()

    event_type = payload.get("type", "")
    entity = payload.get("entity") or {}
    page_id = entity.get("id") if entity.get("type", "page") == "page" else None
    parent_id = ((payload.get("data") or {}).get("parent") or {}).get("id")
    database_id = session.config.notion.database_id
    if parent_id and database_id and normalize_notion_id(parent_id) != normalize_notion_id(database_id):
        _record(session, "notification", "notion", event_type, "ignored", start, "other database")
        return {"status": "ignored", "reason": "page belongs to another database"}

    if not page_id or event_type not in PAGE_SYNC_EVENTS | PAGE_DELETE_EVENTS:
        _record(session, "notification", "notion", event_type or "unknown", "ignored", start)
        return {"status": "ignored", "reason": f"unhandled event {event_type}"}

    try:
        if event_type in PAGE_DELETE_EVENTS:
            result = _delete_linked_event(session, page_id)
        else:
            page = session.notion.retrieve_page(page_id)
            if page.get("archived") or page.get("in_trash"):
                result = _delete_linked_event(session, page_id)
            else:
                event = notion_page_to_event(page, session.config.fields)
                if event is None:
                    _record(session, "notification", "notion", event_type, "ignored", start, page_id)
                    return {"status": "ignored", "reason": "page is missing required fields"}
                sync_result = session.engine.sync_notion_to_gcal(event)
                result = {
                    "status": "ok",
                    "action": sync_result.operation.value,
                    "result": sync_result.status.value,
                    "gcal_event_id": sync_result.gcal_event_id,
                }
    except Exception as e:
        logger.error(f"Failed to process Notion {event_type} for {page_id}: {e}")
        _record(session, "error", "notion", event_type, "failure", start, str(e))
        raise

    _record(session, "notification", "notion", event_type, "success", start, page_id)
    return result


def _delete_linked_event(session: "SyncSession", page_id: str) -> dict:
    item = session.calendar.find_by_notion_page_id(page_id)
    if item is None:
        logger.info(f"No calendar event linked to deleted page {page_id}")
        return {"status": "ok", "action": "delete", "result": "not_found"}
    session.engine.delete_from_gcal(item["id"], notion_page_id=page_id, title=item.get("summary"))
    return {"status": "ok", "action": "delete", "result": "success", "gcal_event_id": item["id"]}
