"""
Tests for the Google Calendar client's error translation and pagination,
using a stand-in for the discovery-built service object.
"""

import json
import threading

import pytest
from google.auth.exceptions import RefreshError
from googleapiclient.errors import HttpError

from gcal_notion_sync.errors import AuthenticationError
from gcal_notion_sync.errors import NetworkError
from gcal_notion_sync.errors import RateLimitError
from gcal_notion_sync.errors import ReadOnlyEventError
from gcal_notion_sync.errors import SyncTokenInvalidError
from gcal_notion_sync.errors import TargetArchivedError
from gcal_notion_sync.errors import ValidationError
from gcal_notion_sync.gcal_api import GoogleCalendarClient
from gcal_notion_sync.gcal_api import translate_http_error
from gcal_notion_sync.gcal_api import translate_refresh_error


class _Resp(dict):
    """Minimal httplib2.Response look-alike."""

    def __init__(self, status: int, **headers):
        super().__init__(headers)
        self.status = status
        self.reason = "error"


def http_error(status: int, message: str = "failed", reason: str = "", **headers) -> HttpError:
    body = {"error": {"code": status, "message": message, "errors": [{"reason": reason, "message": message}]}}
    return HttpError(_Resp(status, **headers), json.dumps(body).encode())


class _Request:
    def __init__(self, outcome):
        self.outcome = outcome

    def execute(self):
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


class _Events:
    def __init__(self, service):
        self.service = service

    def list(self, **params):
        self.service.calls.append(("list", params))
        return _Request(self.service.responses.pop(0))

    def delete(self, **params):
        self.service.calls.append(("delete", params))
        return _Request(self.service.responses.pop(0))


class FakeService:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def events(self):
        return _Events(self)


class TestTranslateHttpError:
    @pytest.mark.parametrize(
        "status, reason, message, operation, expected",
        [
            (429, "", "slow down", "list_events", RateLimitError),
            (403, "rateLimitExceeded", "Rate Limit Exceeded", "insert_event", RateLimitError),
            (503, "", "backend", "patch_event", NetworkError),
            (410, "fullSyncRequired", "Sync token is no longer valid", "list_changes", SyncTokenInvalidError),
            (410, "deleted", "Resource has been deleted", "patch_event", TargetArchivedError),
            (404, "notFound", "Not Found", "patch_event", TargetArchivedError),
            (401, "authError", "Invalid Credentials", "list_events", AuthenticationError),
            (400, "invalid", "Event type cannot be changed", "patch_event", ReadOnlyEventError),
            (400, "invalid", "Invalid start time", "insert_event", ValidationError),
        ],
    )
    def test_mapping(self, status, reason, message, operation, expected):
        error = translate_http_error(http_error(status, message, reason), operation)
        assert type(error) is expected
        assert error.status_code == status

    def test_retry_after_header(self):
        error = translate_http_error(http_error(429, **{"retry-after": "7"}), "list_events")
        assert error.retry_after == 7.0

    def test_non_json_body(self):
        error = translate_http_error(HttpError(_Resp(502), b"<html>Bad Gateway</html>"), "watch")
        assert isinstance(error, NetworkError)


class TestTranslateRefreshError:
    def test_structured_code_wins(self):
        error = translate_refresh_error(RefreshError("Token has been revoked", {"error": "invalid_grant"}))
        assert isinstance(error, AuthenticationError)
        assert error.reason == "invalid_grant"

    def test_message_fallback(self):
        error = translate_refresh_error(RefreshError("invalid_client: The OAuth client was not found."))
        assert error.reason == "invalid_client"

    def test_retryable_refresh_is_network_error(self):
        assert isinstance(translate_refresh_error(RefreshError("timeout", retryable=True)), NetworkError)


class TestClient:
    def test_list_changes_follows_pages(self):
        service = FakeService(
            {"items": [{"id": "a"}], "nextPageToken": "p2"},
            {"items": [{"id": "b"}], "nextSyncToken": "sync-2"},
        )
        client = GoogleCalendarClient("primary", service=service)

        items, token = client.list_changes("sync-1")

        assert [i["id"] for i in items] == ["a", "b"]
        assert token == "sync-2"
        assert service.calls[0][1]["syncToken"] == "sync-1"
        assert service.calls[1][1]["pageToken"] == "p2"

    def test_list_changes_translates_expired_token(self):
        client = GoogleCalendarClient("primary", service=FakeService(http_error(410, reason="fullSyncRequired")))
        with pytest.raises(SyncTokenInvalidError):
            client.list_changes("sync-1")

    def test_delete_of_missing_event_is_quiet(self):
        client = GoogleCalendarClient("primary", service=FakeService(http_error(410, reason="deleted")))
        client.delete_event("gone")

    def test_find_by_notion_page_id(self):
        service = FakeService({"items": [{"id": "evt-1"}]})
        client = GoogleCalendarClient("primary", service=service)
        assert client.find_by_notion_page_id("page-a") == {"id": "evt-1"}
        assert service.calls[0][1]["privateExtendedProperty"] == "notion_page_id=page-a"

    def test_is_self(self):
        client = GoogleCalendarClient("primary", service=FakeService(), self_email="Me@Example.com")
        assert client.is_self({"email": "me@example.com"})
        assert client.is_self({"self": True})
        assert not client.is_self({"email": "other@example.com"})

    def test_each_thread_builds_its_own_service(self, monkeypatch):
        built = []

        def fake_build(*args, **kwargs):
            service = FakeService()
            built.append(service)
            return service

        monkeypatch.setattr("gcal_notion_sync.gcal_api.build", fake_build)
        client = GoogleCalendarClient("primary", credentials=object())
        seen = {}

        def grab(name):
            seen[name] = (client.service, client.service)

        threads = [threading.Thread(target=grab, args=(n,)) for n in ("a", "b")]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(built) == 2
        assert seen["a"][0] is seen["a"][1]
        assert seen["a"][0] is not seen["b"][0]
