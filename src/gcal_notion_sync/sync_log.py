"""
Append-only audit trail of sync operations and webhook activity.
"""

import logging
from datetime import datetime
from datetime import timedelta

from gcal_notion_sync.db import StateDatabase
from gcal_notion_sync.models import SyncDirection
from gcal_notion_sync.models import SyncLogEntry
from gcal_notion_sync.models import SyncOperation
from gcal_notion_sync.models import SyncStatus
from gcal_notion_sync.models import WebhookLogEntry
from gcal_notion_sync.models import utcnow

logger = logging.getLogger(__name__)


class SyncLog:
    """Sync Log sink backed by the state database."""

    def __init__(self, state_db: StateDatabase):
        self.state_db = state_db

    def record(self, entry: SyncLogEntry):
        self.state_db.insert_sync_log(
            {
                "timestamp": entry.timestamp.isoformat(),
                "direction": entry.direction.value,
                "operation": entry.operation.value,
                "status": entry.status.value,
                "event_title": entry.event_title,
                "gcal_event_id": entry.gcal_event_id,
                "notion_page_id": entry.notion_page_id,
                "error": entry.error,
            }
        )
        logger.debug(
            f"[{entry.direction.value}] {entry.operation.value} {entry.status.value}: "
            f"{entry.event_title or entry.gcal_event_id or entry.notion_page_id}"
        )

    def record_webhook(self, entry: WebhookLogEntry):
        self.state_db.insert_webhook_log(
            {
                "timestamp": entry.timestamp.isoformat(),
                "type": entry.type,
                "source": entry.source,
                "action": entry.action,
                "status": entry.status,
                "detail": entry.detail,
                "processing_ms": entry.processing_ms,
            }
        )

    def recent(self, limit: int = 50) -> list[SyncLogEntry]:
        """Most recent entries first."""
        return [
            SyncLogEntry(
                direction=SyncDirection(row["direction"]),
                operation=SyncOperation(row["operation"]),
                status=SyncStatus(row["status"]),
                event_title=row["event_title"],
                gcal_event_id=row["gcal_event_id"],
                notion_page_id=row["notion_page_id"],
                error=row["error"],
                timestamp=datetime.fromisoformat(row["timestamp"]),
            )
            for row in self.state_db.recent_sync_log(limit)
        ]

    def metrics(self, window: timedelta | None = timedelta(hours=24)) -> dict:
        since = (utcnow() - window).isoformat() if window else None
        counts = self.state_db.sync_log_counts(since)
        total = sum(counts.values())
        success = counts.get(SyncStatus.SUCCESS.value, 0)
        return {
            "total": total,
            "success": success,
            "failure": counts.get(SyncStatus.FAILURE.value, 0),
            "skipped": counts.get(SyncStatus.SKIPPED.value, 0),
            "success_rate": round(success / total * 100, 1) if total else None,
        }

    def clear(self) -> int:
        return self.state_db.clear_sync_log()
