"""
Notion REST API client for a single database.
"""

import logging

import httpx

from gcal_notion_sync.errors import AuthenticationError
from gcal_notion_sync.errors import NetworkError
from gcal_notion_sync.errors import RateLimitError
from gcal_notion_sync.errors import SyncError
from gcal_notion_sync.errors import TargetArchivedError
from gcal_notion_sync.errors import ValidationError

logger = logging.getLogger(__name__)

NOTION_API_URL = "https://api.notion.com/v1"
NOTION_VERSION = "2022-06-28"

WEBHOOK_EVENT_TYPES = [
    "page.created",
    "page.content_updated",
    "page.properties_updated",
    "page.deleted",
]


def translate_response_error(response: httpx.Response, operation: str) -> SyncError:
    """Map a failed Notion response onto our error taxonomy using its ``code`` field."""
    try:
        payload = response.json()
    except ValueError:
        payload = {}
    code = payload.get("code", "") if isinstance(payload, dict) else ""
    message = (payload.get("message") if isinstance(payload, dict) else None) or response.text
    status = response.status_code
    text = f"Notion {operation} failed ({status} {code}): {message}"
    context = {"operation": operation, "code": code}

    if status == 429 or code == "rate_limited":
        retry_after = response.headers.get("Retry-After")
        return RateLimitError(
            text,
            retry_after=float(retry_after) if retry_after else None,
            status_code=status,
            context=context,
        )
    if status >= 500 or code in ("service_unavailable", "internal_server_error"):
        return NetworkError(text, status_code=status, context=context)
    if code == "conflict_error":
        return SyncError(text, code="NOTION_CONFLICT", status_code=status, retryable=True, context=context)
    if status == 404 or code == "object_not_found":
        return TargetArchivedError(text, status_code=status, context=context)
    if code == "validation_error" and "archived" in message.lower():
        return TargetArchivedError(text, status_code=status, context=context)
    if status == 401 or code == "unauthorized":
        return AuthenticationError(text, reason=code or None, status_code=status, context=context)
    if status == 400 or code == "validation_error":
        return ValidationError(text, status_code=status, context=context)
    return SyncError(text, code="NOTION_ERROR", status_code=status, context=context)


class NotionDatabaseClient:
    """
    Notion client bound to one database.

    Usage:
        notion = NotionDatabaseClient(token, database_id)
        pages = notion.query_pages()
        notion.update_page(page_id, properties)
    """

    def __init__(
        self,
        token: str,
        database_id: str,
        http: httpx.Client | None = None,
        timeout: float = 30.0,
    ):
        self.database_id = database_id
        self.client = http or httpx.Client(
            base_url=NOTION_API_URL,
            headers={
                "Authorization": f"Bearer {token}",
                "Notion-Version": NOTION_VERSION,
                "Content-Type": "application/json",
            },
            timeout=timeout,
        )

    def close(self):
        self.client.close()

    def _request(self, method: str, path: str, operation: str, body: dict | None = None) -> dict:
        try:
            response = self.client.request(method, path, json=body)
        except httpx.TimeoutException as e:
            raise NetworkError(f"Notion {operation} timed out: {e}") from e
        except httpx.TransportError as e:
            raise NetworkError(f"Notion {operation} network error: {e}") from e
        if response.is_success:
            return response.json() if response.content else {}
        raise translate_response_error(response, operation)

    def create_page(self, properties: dict) -> dict:
        return self._request(
            "POST",
            "/pages",
            "create_page",
            {"parent": {"database_id": self.database_id}, "properties": properties},
        )

    def update_page(self, page_id: str, properties: dict) -> dict:
        return self._request("PATCH", f"/pages/{page_id}", "update_page", {"properties": properties})

    def archive_page(self, page_id: str) -> None:
        try:
            self._request("PATCH", f"/pages/{page_id}", "archive_page", {"archived": True})
        except TargetArchivedError:
            logger.debug(f"Notion page {page_id} already archived")

    def retrieve_page(self, page_id: str) -> dict:
        return self._request("GET", f"/pages/{page_id}", "retrieve_page")

    def query_pages(self, filter: dict | None = None) -> list[dict]:
        """All pages of the database, following pagination."""
        results = []
        start_cursor = None
        while True:
            body = {"page_size": 100}
            if filter:
                body["filter"] = filter
            if start_cursor:
                body["start_cursor"] = start_cursor
            data = self._request("POST", f"/databases/{self.database_id}/query", "query_pages", body)
            results.extend(data.get("results", []))
            if not data.get("has_more"):
                return results
            start_cursor = data.get("next_cursor")

    def create_webhook(self, url: str) -> dict:
        return self._request(
            "POST",
            "/webhooks",
            "create_webhook",
            {"url": url, "event_types": WEBHOOK_EVENT_TYPES, "database_id": self.database_id},
        )
