"""
SQLite state persistence: JSON state records, the sync log and the webhook log.
"""

import json
import sqlite3
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from gcal_notion_sync.errors import ConfigurationError


class StateDatabase:
    """Manages the SQLite state database.

    A single connection is shared between threads; every statement runs under
    ``self._lock`` so read-merge-write cycles on a state record never
    interleave.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def connect(self):
        """Initialize and connect to the state database."""
        if str(self.db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self):
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS kv_state (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at INTEGER NOT NULL
            );
            CREATE TABLE IF NOT EXISTS sync_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                direction TEXT NOT NULL,
                operation TEXT NOT NULL,
                status TEXT NOT NULL,
                event_title TEXT,
                gcal_event_id TEXT,
                notion_page_id TEXT,
                error TEXT
            );
            CREATE INDEX IF NOT EXISTS idx_sync_log_timestamp ON sync_log(timestamp);
            CREATE TABLE IF NOT EXISTS webhook_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                type TEXT NOT NULL,
                source TEXT NOT NULL,
                action TEXT NOT NULL,
                status TEXT NOT NULL,
                detail TEXT,
                processing_ms INTEGER
            );
        """)
        self.conn.commit()

    def _require_conn(self) -> sqlite3.Connection:
        if self.conn is None:
            raise ConfigurationError(f"State database {self.db_path} is not connected")
        return self.conn

    # ------------------------------------------------------------------ #
    # JSON state records                                                   #
    # ------------------------------------------------------------------ #

    def get_json(self, key: str, default: Any = None) -> Any:
        with self._lock:
            row = self._require_conn().execute(
                "SELECT value FROM kv_state WHERE key = ?", (key,)
            ).fetchone()
        return json.loads(row["value"]) if row else default

    def set_json(self, key: str, value: Any):
        with self._lock:
            conn = self._require_conn()
            conn.execute(
                "INSERT INTO kv_state (key, value, updated_at) VALUES (?, ?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value, "
                "updated_at = excluded.updated_at",
                (key, json.dumps(value), int(time.time())),
            )
            conn.commit()

    def update_json(self, key: str, fn: Callable[[Any], Any], default: Any = None) -> Any:
        """Apply ``fn`` to the latest stored value and persist its result.

        Runs as one transaction under the lock. If ``fn`` raises, nothing is
        written and the exception propagates.
        """
        with self._lock:
            conn = self._require_conn()
            row = conn.execute("SELECT value FROM kv_state WHERE key = ?", (key,)).fetchone()
            current = json.loads(row["value"]) if row else default
            new_value = fn(current)
            conn.execute(
                "INSERT INTO kv_state (key, value, updated_at) VALUES (?, ?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value, "
                "updated_at = excluded.updated_at",
                (key, json.dumps(new_value), int(time.time())),
            )
            conn.commit()
            return new_value

    def merge_json(self, key: str, partial: dict, default: dict | None = None) -> dict:
        """Read-merge-write ``partial`` into the dict stored at ``key``."""
        return self.update_json(key, lambda cur: {**(cur or default or {}), **partial})

    def delete(self, key: str) -> bool:
        with self._lock:
            conn = self._require_conn()
            cursor = conn.execute("DELETE FROM kv_state WHERE key = ?", (key,))
            conn.commit()
            return cursor.rowcount > 0

    # ------------------------------------------------------------------ #
    # Sync log                                                             #
    # ------------------------------------------------------------------ #

    def insert_sync_log(self, row: dict):
        with self._lock:
            conn = self._require_conn()
            conn.execute(
                "INSERT INTO sync_log "
                "(timestamp, direction, operation, status, event_title, "
                " gcal_event_id, notion_page_id, error) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    row["timestamp"],
                    row["direction"],
                    row["operation"],
                    row["status"],
                    row.get("event_title"),
                    row.get("gcal_event_id"),
                    row.get("notion_page_id"),
                    row.get("error"),
                ),
            )
            conn.commit()

    def recent_sync_log(self, limit: int = 50) -> list[sqlite3.Row]:
        with self._lock:
            return self._require_conn().execute(
                "SELECT * FROM sync_log ORDER BY id DESC LIMIT ?", (limit,)
            ).fetchall()

    def sync_log_counts(self, since: str | None = None) -> dict[str, int]:
        """Return {status: count} for entries at or after the ISO timestamp ``since``."""
        query = "SELECT status, COUNT(*) AS count FROM sync_log"
        params: tuple = ()
        if since:
            query += " WHERE timestamp >= ?"
            params = (since,)
        query += " GROUP BY status"
        with self._lock:
            rows = self._require_conn().execute(query, params).fetchall()
        return {row["status"]: row["count"] for row in rows}

    def clear_sync_log(self) -> int:
        with self._lock:
            conn = self._require_conn()
            cursor = conn.execute("DELETE FROM sync_log")
            conn.commit()
            return cursor.rowcount

    # ------------------------------------------------------------------ #
    # Webhook log                                                          #
    # ------------------------------------------------------------------ #

    def insert_webhook_log(self, row: dict):
        with self._lock:
            conn = self._require_conn()
            conn.execute(
                "INSERT INTO webhook_log "
                "(timestamp, type, source, action, status, detail, processing_ms) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    row["timestamp"],
                    row["type"],
                    row["source"],
                    row["action"],
                    row["status"],
                    row.get("detail"),
                    row.get("processing_ms"),
                ),
            )
            conn.commit()

    def recent_webhook_log(self, limit: int = 50) -> list[sqlite3.Row]:
        with self._lock:
            return self._require_conn().execute(
                "SELECT * FROM webhook_log ORDER BY id DESC LIMIT ?", (limit,)
            ).fetchall()

    def commit(self):
        """Commit pending transactions."""
        if self.conn:
            self.conn.commit()

    def close(self):
        """Close the database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
