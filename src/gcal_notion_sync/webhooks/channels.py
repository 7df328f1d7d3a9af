"""
Persisted lifecycle state for push-notification subscriptions on both sides.

The manager answers questions about stored state (expired? due for renewal?
verified?) and performs CRUD on it. Scheduling renewals is the caller's job.
"""

import hashlib
import hmac
import logging
from dataclasses import asdict
from dataclasses import dataclass
from datetime import datetime
from datetime import timedelta
from datetime import timezone

from gcal_notion_sync.db import StateDatabase
from gcal_notion_sync.models import SyncCursor
from gcal_notion_sync.models import utcnow

logger = logging.getLogger(__name__)

CHANNEL_KEY = "webhook:gcal:channel"
CURSOR_KEY = "webhook:gcal:sync_state"
SUBSCRIPTION_KEY = "webhook:notion:subscription"

RENEWAL_THRESHOLD = timedelta(hours=6)
PENDING_TOKEN = "pending"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def normalize_notion_id(value: str | None) -> str:
    """Notion ids appear both with and without dashes."""
    return (value or "").replace("-", "").lower()


def expiration_from_ms(value) -> datetime:
    """Google reports channel expiration as epoch milliseconds (often a string)."""
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)


@dataclass
class WebhookChannel:
    channel_id: str
    resource_id: str
    expiration: datetime
    calendar_id: str
    created_at: datetime
    last_renewed_at: datetime | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        for name in ("expiration", "created_at", "last_renewed_at"):
            data[name] = _iso(data[name])
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "WebhookChannel":
        return cls(
            channel_id=data["channel_id"],
            resource_id=data["resource_id"],
            expiration=_parse(data["expiration"]),
            calendar_id=data["calendar_id"],
            created_at=_parse(data["created_at"]),
            last_renewed_at=_parse(data.get("last_renewed_at")),
        )


@dataclass
class NotionSubscription:
    subscription_id: str | None
    database_id: str | None
    verification_token: str | None
    verified: bool
    created_at: datetime

    def to_dict(self) -> dict:
        data = asdict(self)
        data["created_at"] = _iso(self.created_at)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "NotionSubscription":
        return cls(
            subscription_id=data.get("subscription_id"),
            database_id=data.get("database_id"),
            verification_token=data.get("verification_token"),
            verified=bool(data.get("verified")),
            created_at=_parse(data.get("created_at")) or utcnow(),
        )


class ChannelManager:
    def __init__(self, state_db: StateDatabase):
        self.state_db = state_db

    # ------------------------------------------------------------------ #
    # Google Calendar channel                                              #
    # ------------------------------------------------------------------ #

    def get_channel(self) -> WebhookChannel | None:
        data = self.state_db.get_json(CHANNEL_KEY)
        return WebhookChannel.from_dict(data) if data else None

    def save_channel(self, channel: WebhookChannel):
        self.state_db.set_json(CHANNEL_KEY, channel.to_dict())
        logger.debug(f"Saved channel {channel.channel_id} (expires {channel.expiration})")

    def delete_channel(self) -> bool:
        return self.state_db.delete(CHANNEL_KEY)

    @staticmethod
    def is_expired(channel: WebhookChannel, now: datetime | None = None) -> bool:
        return (now or utcnow()) >= channel.expiration

    @staticmethod
    def needs_renewal(channel: WebhookChannel, now: datetime | None = None) -> bool:
        """True when less than six hours remain (expired channels included)."""
        return channel.expiration - (now or utcnow()) < RENEWAL_THRESHOLD

    @staticmethod
    def time_until_expiration(channel: WebhookChannel, now: datetime | None = None) -> timedelta:
        return channel.expiration - (now or utcnow())

    # ------------------------------------------------------------------ #
    # Google Calendar sync cursor                                          #
    # ------------------------------------------------------------------ #

    def get_cursor(self) -> SyncCursor | None:
        data = self.state_db.get_json(CURSOR_KEY)
        if not data or not data.get("token"):
            return None
        return SyncCursor(token=data["token"], last_sync=_parse(data["last_sync"]))

    def save_cursor(self, token: str, now: datetime | None = None) -> SyncCursor:
        cursor = SyncCursor(token=token, last_sync=now or utcnow())
        self.state_db.set_json(CURSOR_KEY, {"token": cursor.token, "last_sync": _iso(cursor.last_sync)})
        return cursor

    def clear_cursor(self) -> bool:
        return self.state_db.delete(CURSOR_KEY)

    # ------------------------------------------------------------------ #
    # Notion subscription                                                  #
    # ------------------------------------------------------------------ #

    def get_subscription(self) -> NotionSubscription | None:
        data = self.state_db.get_json(SUBSCRIPTION_KEY)
        return NotionSubscription.from_dict(data) if data else None

    def save_subscription(self, subscription: NotionSubscription):
        self.state_db.set_json(SUBSCRIPTION_KEY, subscription.to_dict())

    def delete_subscription(self) -> bool:
        return self.state_db.delete(SUBSCRIPTION_KEY)

    def record_verification_token(self, token: str, database_id: str | None = None) -> NotionSubscription:
        """Store the token Notion sends during the handshake.

        The existing subscription id and verified flag are kept as they are.
        """

        def apply(cur):
            current = cur or {"verified": False, "created_at": _iso(utcnow())}
            updated = {**current, "verification_token": token}
            if database_id and not updated.get("database_id"):
                updated["database_id"] = database_id
            return updated

        return NotionSubscription.from_dict(self.state_db.update_json(SUBSCRIPTION_KEY, apply))

    def accepts_verification_token(self) -> bool:
        """A handshake token may only be (re)set before the subscription is confirmed.

        A verified subscription without a usable token (registered by id)
        still takes one.
        """
        subscription = self.get_subscription()
        if subscription is None or not subscription.verified:
            return True
        return subscription.verification_token in (None, PENDING_TOKEN)

    def mark_verified(self) -> NotionSubscription | None:
        """Flip ``verified`` to True. There is no way back."""

        if self.get_subscription() is None:
            return None
        data = self.state_db.update_json(SUBSCRIPTION_KEY, lambda cur: {**(cur or {}), "verified": True})
        logger.info("Notion webhook subscription verified")
        return NotionSubscription.from_dict(data)

    def verify_signature(self, body: bytes, signature: str | None) -> bool:
        """Check an ``X-Notion-Signature`` header (``sha256=<hex>``) against ``body``."""
        subscription = self.get_subscription()
        token = subscription.verification_token if subscription else None
        if not signature or not token or token == PENDING_TOKEN:
            return False
        expected = "sha256=" + hmac.new(token.encode(), body, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature)

    # ------------------------------------------------------------------ #
    # Status                                                               #
    # ------------------------------------------------------------------ #

    def google_status(self, configured_calendar_id: str, now: datetime | None = None) -> dict:
        now = now or utcnow()
        channel = self.get_channel()
        if channel is None:
            return {"state": "inactive", "reason": "No webhook channel registered"}
        if channel.calendar_id != configured_calendar_id:
            return {
                "state": "inactive",
                "reason": f"Channel is tied to a different calendar ({channel.calendar_id})",
                "channel_id": channel.channel_id,
            }
        if self.is_expired(channel, now):
            return {
                "state": "inactive",
                "reason": "Channel expired",
                "channel_id": channel.channel_id,
                "expired_at": _iso(channel.expiration),
            }
        remaining = self.time_until_expiration(channel, now)
        return {
            "state": "active",
            "channel_id": channel.channel_id,
            "expires_at": _iso(channel.expiration),
            "expires_in_hours": round(remaining.total_seconds() / 3600, 1),
            "needs_renewal": self.needs_renewal(channel, now),
        }

    def notion_status(self, configured_database_id: str | None = None) -> dict:
        subscription = self.get_subscription()
        if subscription is None:
            return {"state": "inactive", "reason": "No Notion webhook subscription"}
        if (
            configured_database_id
            and subscription.database_id
            and normalize_notion_id(subscription.database_id) != normalize_notion_id(configured_database_id)
        ):
            return {
                "state": "inactive",
                "reason": f"Subscription is tied to a different database ({subscription.database_id})",
                "subscription_id": subscription.subscription_id,
            }
        if subscription.verified:
            return {"state": "active", "subscription_id": subscription.subscription_id}
        token = subscription.verification_token
        return {
            "state": "verification_required",
            "subscription_id": subscription.subscription_id,
            "verification_token": token if token and token != PENDING_TOKEN else None,
        }
