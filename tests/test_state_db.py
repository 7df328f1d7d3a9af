"""
Unit tests for StateDatabase: JSON state records and the two log tables.
"""

import threading

import pytest

from gcal_notion_sync.db import StateDatabase
from gcal_notion_sync.errors import ConfigurationError


class TestJsonRecords:
    def test_get_missing_returns_default(self, state_db):
        assert state_db.get_json("nope") is None
        assert state_db.get_json("nope", {"a": 1}) == {"a": 1}

    def test_set_overwrites(self, state_db):
        state_db.set_json("k", {"a": 1})
        state_db.set_json("k", {"b": 2})
        assert state_db.get_json("k") == {"b": 2}

    def test_merge_keeps_other_keys(self, state_db):
        state_db.set_json("k", {"a": 1, "b": 2})
        merged = state_db.merge_json("k", {"b": 3, "c": 4})
        assert merged == {"a": 1, "b": 3, "c": 4}
        assert state_db.get_json("k") == merged

    def test_merge_onto_missing_uses_default(self, state_db):
        assert state_db.merge_json("k", {"b": 3}, default={"a": 0}) == {"a": 0, "b": 3}

    def test_update_is_not_written_when_fn_raises(self, state_db):
        state_db.set_json("k", {"n": 1})

        def boom(current):
            raise ValueError("rejected")

        with pytest.raises(ValueError):
            state_db.update_json("k", boom)
        assert state_db.get_json("k") == {"n": 1}

    def test_concurrent_updates_are_not_lost(self, state_db):
        state_db.set_json("counter", {"n": 0})

        def bump():
            for _ in range(50):
                state_db.update_json("counter", lambda cur: {"n": cur["n"] + 1})

        threads = [threading.Thread(target=bump) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert state_db.get_json("counter") == {"n": 200}

    def test_delete(self, state_db):
        state_db.set_json("k", 1)
        assert state_db.delete("k") is True
        assert state_db.delete("k") is False
        assert state_db.get_json("k") is None

    def test_persists_across_connections(self, db_path):
        with StateDatabase(db_path) as db:
            db.set_json("k", ["x"])
        with StateDatabase(db_path) as db:
            assert db.get_json("k") == ["x"]


class TestLogTables:
    def _sync_row(self, status="success", timestamp="2026-03-01T09:00:00+00:00"):
        return {
            "timestamp": timestamp,
            "direction": "gcal_to_notion",
            "operation": "create",
            "status": status,
            "event_title": "Standup",
        }

    def test_recent_sync_log_newest_first(self, state_db):
        state_db.insert_sync_log(self._sync_row(status="success"))
        state_db.insert_sync_log(self._sync_row(status="failure"))
        rows = state_db.recent_sync_log(limit=1)
        assert len(rows) == 1
        assert rows[0]["status"] == "failure"
        assert rows[0]["gcal_event_id"] is None

    def test_counts_respect_since(self, state_db):
        state_db.insert_sync_log(self._sync_row(timestamp="2026-02-01T00:00:00+00:00"))
        state_db.insert_sync_log(self._sync_row())
        state_db.insert_sync_log(self._sync_row(status="skipped"))
        assert state_db.sync_log_counts() == {"success": 2, "skipped": 1}
        assert state_db.sync_log_counts(since="2026-03-01T00:00:00+00:00") == {"success": 1, "skipped": 1}

    def test_clear_sync_log(self, state_db):
        state_db.insert_sync_log(self._sync_row())
        assert state_db.clear_sync_log() == 1
        assert state_db.recent_sync_log() == []

    def test_webhook_log(self, state_db):
        state_db.insert_webhook_log(
            {
                "timestamp": "2026-03-01T09:00:00+00:00",
                "type": "notification",
                "source": "gcal",
                "action": "synced",
                "status": "success",
                "processing_ms": 12,
            }
        )
        [row] = state_db.recent_webhook_log()
        assert row["source"] == "gcal"
        assert row["processing_ms"] == 12
        assert row["detail"] is None


class TestConnection:
    def test_closed_database_raises(self, db_path):
        db = StateDatabase(db_path)
        with pytest.raises(ConfigurationError):
            db.get_json("k")

    def test_creates_parent_directory(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "state.db"
        with StateDatabase(path) as db:
            db.set_json("k", 1)
        assert path.exists()
