"""
Contracts the engine expects from the two remote API clients.
"""

from datetime import datetime
from typing import Protocol


class CalendarClient(Protocol):
    calendar_id: str

    def list_events(self, time_min: datetime | None = None, time_max: datetime | None = None) -> list[dict]:
        """All event instances in the window, recurring events expanded."""
        ...

    def list_changes(self, sync_token: str | None) -> tuple[list[dict], str | None]:
        """Changes since ``sync_token`` (everything when None) and the next token.

        Raises SyncTokenInvalidError when the token has expired.
        """
        ...

    def insert_event(self, body: dict) -> dict: ...

    def patch_event(self, event_id: str, body: dict) -> dict: ...

    def delete_event(self, event_id: str) -> None: ...

    def find_by_notion_page_id(self, notion_page_id: str) -> dict | None: ...

    def watch(self, webhook_url: str) -> dict:
        """Open a push channel; returns {id, resourceId, expiration}."""
        ...

    def stop_watch(self, channel_id: str, resource_id: str) -> None: ...

    def is_self(self, attendee: dict) -> bool:
        """True if ``attendee`` is the authenticated identity."""
        ...


class NotionClient(Protocol):
    database_id: str

    def create_page(self, properties: dict) -> dict: ...

    def update_page(self, page_id: str, properties: dict) -> dict: ...

    def archive_page(self, page_id: str) -> None: ...

    def retrieve_page(self, page_id: str) -> dict: ...

    def query_pages(self, filter: dict | None = None) -> list[dict]: ...

    def create_webhook(self, url: str) -> dict: ...
