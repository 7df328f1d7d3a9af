"""
Google Calendar API client.

Wraps googleapiclient and translates its HttpError/RefreshError into the
package's error taxonomy so the retry policy and the engine can classify them.
"""

import json
import logging
import threading
import time
from datetime import datetime
from datetime import timezone
from pathlib import Path

from google.auth.exceptions import RefreshError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from gcal_notion_sync.errors import AuthenticationError
from gcal_notion_sync.errors import ConfigurationError
from gcal_notion_sync.errors import NetworkError
from gcal_notion_sync.errors import RateLimitError
from gcal_notion_sync.errors import ReadOnlyEventError
from gcal_notion_sync.errors import SyncError
from gcal_notion_sync.errors import SyncTokenInvalidError
from gcal_notion_sync.errors import TargetArchivedError
from gcal_notion_sync.errors import ValidationError
from gcal_notion_sync.translator import NOTION_LINK_KEY

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/calendar"]

_RATE_LIMIT_REASONS = frozenset({"rateLimitExceeded", "userRateLimitExceeded", "quotaExceeded"})
_READ_ONLY_MARKERS = ("eventtype", "event type", "birthday")
_AUTH_REASONS = ("invalid_grant", "invalid_client")


def _http_error_details(e: HttpError) -> tuple[str, str]:
    """Return (reason, message) from the JSON error body, if any."""
    try:
        payload = json.loads(e.content.decode("utf-8") if isinstance(e.content, bytes) else e.content)
    except (ValueError, AttributeError, TypeError):
        return "", str(e)
    error = payload.get("error") or {}
    if not isinstance(error, dict):
        return str(error), str(e)
    errors = error.get("errors") or [{}]
    return errors[0].get("reason", ""), error.get("message", "") or str(e)


def translate_http_error(e: HttpError, operation: str) -> SyncError:
    """Map an HttpError from ``operation`` onto our error taxonomy."""
    status = int(e.resp.status)
    reason, message = _http_error_details(e)
    context = {"operation": operation, "reason": reason}
    text = f"Google Calendar {operation} failed ({status}): {message}"

    if status == 429 or reason in _RATE_LIMIT_REASONS:
        retry_after = e.resp.get("retry-after") if hasattr(e.resp, "get") else None
        return RateLimitError(
            text,
            retry_after=float(retry_after) if retry_after else None,
            status_code=status,
            context=context,
        )
    if status >= 500:
        return NetworkError(text, status_code=status, context=context)
    if status == 410 and operation == "list_changes":
        return SyncTokenInvalidError(text, status_code=status, context=context)
    if status in (404, 410):
        return TargetArchivedError(text, status_code=status, context=context)
    if status == 401:
        return AuthenticationError(text, status_code=status, context=context)
    if status == 400:
        lowered = message.lower()
        if any(marker in lowered for marker in _READ_ONLY_MARKERS):
            return ReadOnlyEventError(text, status_code=status, context=context)
        return ValidationError(text, status_code=status, context=context)
    return SyncError(text, code="GCAL_ERROR", status_code=status, context=context)


def translate_refresh_error(e: RefreshError) -> SyncError:
    """Classify an OAuth refresh failure.

    The structured OAuth error code in the response payload is preferred; the
    message text is only consulted when no payload is attached.
    """
    if getattr(e, "retryable", False):
        return NetworkError(f"Google token refresh failed: {e}")
    reason = None
    for arg in e.args:
        if isinstance(arg, dict) and arg.get("error"):
            reason = str(arg["error"])
            break
    if reason is None:
        lowered = str(e).lower()
        reason = next((r for r in _AUTH_REASONS if r in lowered), None)
    return AuthenticationError(
        f"Google credentials rejected ({reason or 'unknown'}); re-authorize the account",
        reason=reason,
    )


class GoogleCalendarClient:
    """Calendar v3 client bound to one calendar."""

    def __init__(self, calendar_id: str, credentials=None, service=None, self_email: str | None = None):
        self.calendar_id = calendar_id
        self.self_email = self_email
        self._credentials = credentials
        self._service = service
        self._local = threading.local()

    @classmethod
    def from_token_file(cls, token_file: Path, calendar_id: str, self_email: str | None = None):
        """Load an already-authorized user token written by the OAuth flow."""
        if not token_file.exists():
            raise ConfigurationError(f"Google token file not found: {token_file}")
        credentials = Credentials.from_authorized_user_file(str(token_file), SCOPES)
        return cls(calendar_id, credentials=credentials, self_email=self_email)

    @property
    def service(self):
        """The discovery service for the calling thread.

        An httplib2 transport must not be shared between threads, so each
        thread builds its own service over the shared credentials.
        """
        if self._service is not None:
            return self._service
        service = getattr(self._local, "service", None)
        if service is None:
            service = build("calendar", "v3", credentials=self._credentials, cache_discovery=False)
            self._local.service = service
        return service

    def _execute(self, request, operation: str):
        try:
            return request.execute()
        except HttpError as e:
            raise translate_http_error(e, operation) from e
        except RefreshError as e:
            raise translate_refresh_error(e) from e

    # ------------------------------------------------------------------ #
    # Reads                                                                #
    # ------------------------------------------------------------------ #

    def list_events(self, time_min: datetime | None = None, time_max: datetime | None = None) -> list[dict]:
        """All event instances in the window, recurring events expanded."""
        events = []
        page_token = None
        while True:
            params = {
                "calendarId": self.calendar_id,
                "singleEvents": True,
                "orderBy": "startTime",
                "maxResults": 250,
            }
            if time_min:
                params["timeMin"] = time_min.astimezone(timezone.utc).isoformat()
            if time_max:
                params["timeMax"] = time_max.astimezone(timezone.utc).isoformat()
            if page_token:
                params["pageToken"] = page_token
            result = self._execute(self.service.events().list(**params), "list_events")
            events.extend(result.get("items", []))
            page_token = result.get("nextPageToken")
            if not page_token:
                return events

    def list_changes(self, sync_token: str | None) -> tuple[list[dict], str | None]:
        items = []
        page_token = None
        next_sync_token = None
        while True:
            params = {"calendarId": self.calendar_id, "singleEvents": True, "maxResults": 2500}
            if sync_token:
                params["syncToken"] = sync_token
            if page_token:
                params["pageToken"] = page_token
            result = self._execute(self.service.events().list(**params), "list_changes")
            items.extend(result.get("items", []))
            page_token = result.get("nextPageToken")
            next_sync_token = result.get("nextSyncToken") or next_sync_token
            if not page_token:
                return items, next_sync_token

    def find_by_notion_page_id(self, notion_page_id: str) -> dict | None:
        result = self._execute(
            self.service.events().list(
                calendarId=self.calendar_id,
                privateExtendedProperty=f"{NOTION_LINK_KEY}={notion_page_id}",
                maxResults=1,
            ),
            "find_event",
        )
        items = result.get("items", [])
        return items[0] if items else None

    # ------------------------------------------------------------------ #
    # Mutations                                                            #
    # ------------------------------------------------------------------ #

    def insert_event(self, body: dict) -> dict:
        return self._execute(
            self.service.events().insert(calendarId=self.calendar_id, body=body), "insert_event"
        )

    def patch_event(self, event_id: str, body: dict) -> dict:
        return self._execute(
            self.service.events().patch(calendarId=self.calendar_id, eventId=event_id, body=body),
            "patch_event",
        )

    def delete_event(self, event_id: str) -> None:
        try:
            self._execute(
                self.service.events().delete(calendarId=self.calendar_id, eventId=event_id),
                "delete_event",
            )
        except TargetArchivedError:
            logger.debug(f"Calendar event {event_id} already deleted")

    # ------------------------------------------------------------------ #
    # Push notifications                                                   #
    # ------------------------------------------------------------------ #

    def watch(self, webhook_url: str) -> dict:
        body = {
            "id": f"gcal-sync-{int(time.time() * 1000)}",
            "type": "web_hook",
            "address": webhook_url,
        }
        return self._execute(
            self.service.events().watch(calendarId=self.calendar_id, body=body), "watch"
        )

    def stop_watch(self, channel_id: str, resource_id: str) -> None:
        self._execute(
            self.service.channels().stop(body={"id": channel_id, "resourceId": resource_id}),
            "stop_watch",
        )

    def is_self(self, attendee: dict) -> bool:
        if attendee.get("self"):
            return True
        email = (attendee.get("email") or "").lower()
        return bool(self.self_email and email == self.self_email.lower())
