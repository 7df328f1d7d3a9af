"""
Shared pytest fixtures and payload helpers.
"""

from datetime import datetime
from datetime import timezone

import pytest

from gcal_notion_sync.config import AppConfig
from gcal_notion_sync.config import NotionSettings
from gcal_notion_sync.db import StateDatabase
from gcal_notion_sync.fields import FieldMapping
from gcal_notion_sync.retry import RetryOptions
from gcal_notion_sync.sync import SyncSession
from gcal_notion_sync.sync.engine import SyncEngine
from gcal_notion_sync.sync_log import SyncLog
from tests.fake_client import FakeCalendarClient
from tests.fake_client import FakeNotionClient

DATABASE_ID = "db-test"
NOW = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def make_gcal_item(
    event_id: str = "evt-1",
    summary: str = "Standup",
    start: str = "2026-03-01T10:00:00Z",
    end: str = "2026-03-01T11:00:00Z",
    notion_page_id: str | None = None,
    **extra,
) -> dict:
    """Return a minimal Calendar v3 event resource.

    Date-only ``start``/``end`` strings produce an all-day event.
    """
    key = "date" if len(start) == 10 else "dateTime"
    item = {
        "id": event_id,
        "status": "confirmed",
        "summary": summary,
        "start": {key: start},
        "end": {key: end},
    }
    if notion_page_id:
        item["extendedProperties"] = {"private": {"notion_page_id": notion_page_id}}
    item.update(extra)
    return item


def make_cancelled_item(event_id: str, notion_page_id: str | None = None) -> dict:
    """Return what the incremental feed reports for a deleted event."""
    item = {"id": event_id, "status": "cancelled"}
    if notion_page_id:
        item["extendedProperties"] = {"private": {"notion_page_id": notion_page_id}}
    return item


def _text(value: str, ptype: str = "rich_text") -> dict:
    return {
        "type": ptype,
        ptype: [{"type": "text", "text": {"content": value}, "plain_text": value}],
    }


def make_notion_page(
    page_id: str = "page-a",
    title: str = "Standup",
    start: str = "2026-03-01T10:00:00.000Z",
    end: str | None = "2026-03-01T11:00:00.000Z",
    gcal_event_id: str | None = None,
    archived: bool = False,
    **properties,
) -> dict:
    """Return a Notion page object in the shape a database query returns."""
    props = {
        "Title": _text(title, "title"),
        "Date": {"type": "date", "date": {"start": start, "end": end, "time_zone": None}},
        "Description": {"type": "rich_text", "rich_text": []},
        "Location": {"type": "rich_text", "rich_text": []},
        "GCal Event ID": _text(gcal_event_id) if gcal_event_id else {"type": "rich_text", "rich_text": []},
    }
    props.update(properties)
    return {"object": "page", "id": page_id, "archived": archived, "in_trash": archived, "properties": props}


def text_property(value: str) -> dict:
    return _text(value)


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "test_state.db"


@pytest.fixture
def state_db(db_path):
    with StateDatabase(db_path) as db:
        yield db


@pytest.fixture
def sync_log(state_db):
    return SyncLog(state_db)


@pytest.fixture
def field_mapping():
    return FieldMapping()


@pytest.fixture
def fake_calendar():
    return FakeCalendarClient()


@pytest.fixture
def fake_notion():
    return FakeNotionClient(database_id=DATABASE_ID)


@pytest.fixture
def sleeps():
    """Delays requested by the retry policy, recorded instead of slept."""
    return []


@pytest.fixture
def retry(sleeps):
    return RetryOptions(max_retries=3, initial_delay=1.0, max_delay=10.0, sleep=sleeps.append)


@pytest.fixture
def engine(fake_calendar, fake_notion, field_mapping, sync_log, retry):
    return SyncEngine(fake_calendar, fake_notion, mapping=field_mapping, sync_log=sync_log, retry=retry)


@pytest.fixture
def app_config(db_path):
    return AppConfig(
        notion=NotionSettings(token="secret_test", database_id=DATABASE_ID),
        state_db_path=db_path,
    )


@pytest.fixture
def session(app_config, state_db, fake_calendar, fake_notion, retry):
    s = SyncSession(app_config, state_db, calendar=fake_calendar, notion=fake_notion)
    # Use the no-sleep retry policy everywhere the session builds components.
    app_config.retry_options = lambda: retry
    return s
