"""
Creating, renewing and tearing down push subscriptions.

Google channels expire after roughly a week and must be re-created before
then; `renew_calendar_channel` is meant to be run from a scheduler (cron,
systemd timer) via ``gcal-notion-sync webhook renew``.
"""

import logging
from datetime import datetime
from typing import TYPE_CHECKING
from urllib.parse import urlparse

from gcal_notion_sync.errors import ConfigurationError
from gcal_notion_sync.errors import SyncError
from gcal_notion_sync.models import WebhookLogEntry
from gcal_notion_sync.models import utcnow
from gcal_notion_sync.sync.incremental import establish_cursor
from gcal_notion_sync.webhooks.channels import PENDING_TOKEN
from gcal_notion_sync.webhooks.channels import NotionSubscription
from gcal_notion_sync.webhooks.channels import WebhookChannel
from gcal_notion_sync.webhooks.channels import expiration_from_ms

if TYPE_CHECKING:
    from gcal_notion_sync.sync import SyncSession

logger = logging.getLogger(__name__)

LOCAL_HOSTS = {"localhost", "127.0.0.1", "::1", "0.0.0.0"}


def validate_webhook_url(url: str | None) -> str:
    """Both providers only deliver to publicly reachable HTTPS endpoints."""
    if not url:
        raise ConfigurationError("No webhook URL configured")
    parsed = urlparse(url)
    if parsed.scheme != "https":
        raise ConfigurationError(f"Webhook URL must use https: {url}")
    host = (parsed.hostname or "").lower()
    if not host or host in LOCAL_HOSTS or host.endswith(".localhost"):
        raise ConfigurationError(f"Webhook URL must be publicly reachable: {url}")
    return url


def _log(session: "SyncSession", type_: str, source: str, action: str, status: str, detail=None):
    session.sync_log.record_webhook(
        WebhookLogEntry(type=type_, source=source, action=action, status=status, detail=detail)
    )


def _stop_quietly(session: "SyncSession", channel: WebhookChannel):
    try:
        session.calendar.stop_watch(channel.channel_id, channel.resource_id)
        logger.info(f"Stopped channel {channel.channel_id}")
    except SyncError as e:
        # Expired or already-stopped channels are rejected by the API.
        logger.warning(f"Could not stop channel {channel.channel_id}: {e}")


def _watch(session: "SyncSession", webhook_url: str, created_at: datetime, renewed_at: datetime | None):
    response = session.config.retry_options().run(lambda: session.calendar.watch(webhook_url))
    return WebhookChannel(
        channel_id=response["id"],
        resource_id=response["resourceId"],
        expiration=expiration_from_ms(response["expiration"]),
        calendar_id=session.config.google.calendar_id,
        created_at=created_at,
        last_renewed_at=renewed_at,
    )


# ------------------------------------------------------------------ #
# Google Calendar                                                      #
# ------------------------------------------------------------------ #


def setup_calendar_channel(
    session: "SyncSession", webhook_url: str | None = None, now: datetime | None = None
) -> WebhookChannel:
    url = validate_webhook_url(webhook_url or session.config.google.webhook_url)
    now = now or utcnow()

    existing = session.channels.get_channel()
    if existing is not None:
        _stop_quietly(session, existing)

    try:
        channel = _watch(session, url, created_at=now, renewed_at=None)
    except SyncError as e:
        _log(session, "error", "gcal", "channel_setup", "failure", str(e))
        raise
    session.channels.save_channel(channel)
    establish_cursor(session.calendar, session.channels)
    _log(session, "setup", "gcal", "channel_created", "success", channel.channel_id)
    logger.info(f"Watching calendar {channel.calendar_id} via channel {channel.channel_id}")
    return channel


def renew_calendar_channel(
    session: "SyncSession",
    webhook_url: str | None = None,
    force: bool = False,
    now: datetime | None = None,
) -> WebhookChannel | None:
    """Replace the channel if it is close to expiry.

    Returns the new channel, or None when no renewal was needed. With no
    stored channel at all, a fresh one is set up.
    """
    now = now or utcnow()
    current = session.channels.get_channel()
    if current is None:
        logger.info("No channel stored; setting one up")
        return setup_calendar_channel(session, webhook_url, now)

    if not force and not session.channels.needs_renewal(current, now):
        remaining = session.channels.time_until_expiration(current, now)
        logger.debug(f"Channel {current.channel_id} has {remaining} left; not renewing")
        return None

    url = validate_webhook_url(webhook_url or session.config.google.webhook_url)
    _stop_quietly(session, current)
    try:
        channel = _watch(session, url, created_at=current.created_at, renewed_at=now)
    except SyncError as e:
        _log(session, "error", "gcal", "channel_renewal", "failure", str(e))
        raise
    session.channels.save_channel(channel)
    establish_cursor(session.calendar, session.channels)
    _log(
        session,
        "renewal",
        "gcal",
        "channel_renewed",
        "success",
        f"{current.channel_id} -> {channel.channel_id}",
    )
    logger.info(f"Renewed channel {current.channel_id} as {channel.channel_id}")
    return channel


def stop_calendar_channel(session: "SyncSession") -> bool:
    """Stop and forget the stored channel. Returns False if there was none."""
    channel = session.channels.get_channel()
    if channel is None:
        return False
    _stop_quietly(session, channel)
    session.channels.delete_channel()
    _log(session, "setup", "gcal", "channel_stopped", "success", channel.channel_id)
    return True


# ------------------------------------------------------------------ #
# Notion                                                               #
# ------------------------------------------------------------------ #


def setup_notion_subscription(
    session: "SyncSession",
    webhook_url: str | None = None,
    subscription_id: str | None = None,
    now: datetime | None = None,
) -> NotionSubscription:
    """Register a Notion webhook subscription.

    With ``subscription_id`` the subscription was created in Notion's UI and
    is stored as verified. Otherwise it is created through the API and stays
    unverified until the handshake token arrives and is confirmed.
    """
    now = now or utcnow()
    database_id = session.config.notion.database_id
    existing = session.channels.get_subscription()
    token = existing.verification_token if existing else None

    if subscription_id:
        subscription = NotionSubscription(
            subscription_id=subscription_id,
            database_id=database_id,
            verification_token=token,
            verified=True,
            created_at=now,
        )
        session.channels.save_subscription(subscription)
        _log(session, "setup", "notion", "subscription_registered", "success", subscription_id)
        return subscription

    url = validate_webhook_url(webhook_url or session.config.notion.webhook_url)
    try:
        response = session.notion.create_webhook(url)
    except SyncError as e:
        _log(session, "error", "notion", "subscription_setup", "failure", str(e))
        raise
    subscription = NotionSubscription(
        subscription_id=response.get("id"),
        database_id=database_id,
        verification_token=PENDING_TOKEN,
        verified=False,
        created_at=now,
    )
    session.channels.save_subscription(subscription)
    _log(session, "setup", "notion", "subscription_created", "success", subscription.subscription_id)
    logger.info("Notion subscription created; waiting for verification token")
    return subscription


def confirm_notion_verification(session: "SyncSession") -> NotionSubscription:
    subscription = session.channels.mark_verified()
    if subscription is None:
        raise ConfigurationError("No Notion subscription to verify; run 'webhook notion-setup' first")
    _log(session, "setup", "notion", "subscription_verified", "success", subscription.subscription_id)
    return subscription
