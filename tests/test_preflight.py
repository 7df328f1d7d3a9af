"""
Tests for the preflight checks run before mutating commands.
"""

import io

import pytest
from rich.console import Console

from gcal_notion_sync.config import AppConfig
from gcal_notion_sync.config import GoogleSettings
from gcal_notion_sync.config import NotionSettings
from gcal_notion_sync.preflight import run_preflight_checks


@pytest.fixture
def console():
    return Console(file=io.StringIO(), width=200)


@pytest.fixture
def token_file(tmp_path):
    path = tmp_path / "token.json"
    path.write_text("{}")
    return path


def _config(tmp_path, token_file, **notion) -> AppConfig:
    return AppConfig(
        google=GoogleSettings(token_file=token_file),
        notion=NotionSettings(**notion),
        state_db_path=tmp_path / "data" / "state.db",
    )


def test_passes_when_configured(tmp_path, token_file, console):
    cfg = _config(tmp_path, token_file, token="secret_x", database_id="db")
    assert run_preflight_checks(cfg, console) is True
    assert console.file.getvalue() == ""
    assert (tmp_path / "data").is_dir()


def test_reports_missing_settings(tmp_path, token_file, console):
    cfg = _config(tmp_path, token_file)
    assert run_preflight_checks(cfg, console) is False
    output = console.file.getvalue()
    assert "Preflight checks failed" in output
    assert "notion.token is not set" in output
    assert "NOTION_TOKEN" in output


def test_reports_missing_token_file(tmp_path, console):
    cfg = _config(tmp_path, tmp_path / "absent.json", token="secret_x", database_id="db")
    assert run_preflight_checks(cfg, console) is False
    assert "Token file not found" in console.file.getvalue()


def test_scoped_checks(tmp_path, console):
    """Notion-only commands do not need the Google token, and vice versa."""
    notion_only = _config(tmp_path, tmp_path / "absent.json", token="secret_x", database_id="db")
    assert run_preflight_checks(notion_only, console, need_google=False) is True

    google_only = _config(tmp_path, tmp_path / "absent.json")
    assert run_preflight_checks(google_only, console, need_notion=False) is False
    assert "notion.token" not in console.file.getvalue()


def test_existing_database_is_checked(tmp_path, token_file, console, db_path):
    cfg = _config(tmp_path, token_file, token="secret_x", database_id="db")
    cfg.state_db_path = db_path
    db_path.write_bytes(b"this is not a sqlite database\n" * 400)
    assert run_preflight_checks(cfg, console) is False
    assert "State database" in console.file.getvalue()
