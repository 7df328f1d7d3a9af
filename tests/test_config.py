"""
Tests for INI configuration loading.
"""

from pathlib import Path

import pytest

from gcal_notion_sync.config import DEFAULT_TOKEN_FILE
from gcal_notion_sync.config import load_config
from gcal_notion_sync.errors import ConfigurationError
from gcal_notion_sync.fields import OptionalField

CONFIG = """
[google]
calendar_id = work@example.com
token_file = /tmp/gcal-token.json
webhook_url = https://sync.example.com/webhooks/google-calendar
self_email = me@example.com

[notion]
token = secret_from_file
database_id = db-123

[sync]
max_workers = 2
max_retries = 5

[fields]
reminders = on
attendees = yes
conference-link = true

[properties]
title = Name
attendees = Guests
"""


@pytest.fixture(autouse=True)
def no_env_token(monkeypatch):
    monkeypatch.delenv("NOTION_TOKEN", raising=False)


@pytest.fixture
def write_config(tmp_path):
    def write(text: str) -> Path:
        path = tmp_path / "config.ini"
        path.write_text(text)
        return path

    return write


def test_full_file(write_config, tmp_path):
    cfg = load_config(write_config(CONFIG), tmp_path / "state.db")

    assert cfg.google.calendar_id == "work@example.com"
    assert cfg.google.token_file == Path("/tmp/gcal-token.json")
    assert cfg.google.self_email == "me@example.com"
    assert cfg.notion.token == "secret_from_file"
    assert cfg.notion.database_id == "db-123"
    assert cfg.sync.max_workers == 2
    assert cfg.retry_options().max_retries == 5
    assert cfg.state_db_path == tmp_path / "state.db"
    assert cfg.missing() == []


def test_field_toggles_and_names(write_config):
    mapping = load_config(write_config(CONFIG)).fields
    assert mapping.optional[OptionalField.REMINDERS].enabled
    assert mapping.optional[OptionalField.ATTENDEES].enabled
    assert mapping.optional[OptionalField.ATTENDEES].property_name == "Guests"
    assert mapping.optional[OptionalField.CONFERENCE_LINK].enabled
    assert not mapping.optional[OptionalField.COLOR].enabled
    assert mapping.core["title"].property_name == "Name"


def test_missing_file_yields_defaults(tmp_path):
    cfg = load_config(tmp_path / "absent.ini")
    assert cfg.google.calendar_id == "primary"
    assert cfg.google.token_file == DEFAULT_TOKEN_FILE
    assert cfg.missing() == ["notion.token", "notion.database_id"]


def test_env_token_overrides_file(write_config, monkeypatch):
    monkeypatch.setenv("NOTION_TOKEN", "secret_from_env")
    assert load_config(write_config(CONFIG)).notion.token == "secret_from_env"


@pytest.mark.parametrize(
    "text",
    [
        "[fields]\nmood = on\n",
        "[fields]\nreminders = sometimes\n",
        "[properties]\nmood = Mood\n",
        "[sync]\nmax_workers = many\n",
    ],
)
def test_invalid_settings(write_config, text):
    with pytest.raises(ConfigurationError):
        load_config(write_config(text))
