"""
Tests for push-subscription setup, renewal and teardown.
"""

from datetime import timedelta

import pytest

from gcal_notion_sync.errors import ConfigurationError
from gcal_notion_sync.errors import NetworkError
from gcal_notion_sync.webhooks.channels import PENDING_TOKEN
from gcal_notion_sync.webhooks.channels import WebhookChannel
from gcal_notion_sync.webhooks.lifecycle import confirm_notion_verification
from gcal_notion_sync.webhooks.lifecycle import renew_calendar_channel
from gcal_notion_sync.webhooks.lifecycle import setup_calendar_channel
from gcal_notion_sync.webhooks.lifecycle import setup_notion_subscription
from gcal_notion_sync.webhooks.lifecycle import stop_calendar_channel
from gcal_notion_sync.webhooks.lifecycle import validate_webhook_url
from tests.conftest import NOW

URL = "https://sync.example.com/webhooks/google-calendar"


def _store_channel(session, expires_in: timedelta) -> WebhookChannel:
    channel = WebhookChannel(
        channel_id="channel-old",
        resource_id="resource-old",
        expiration=NOW + expires_in,
        calendar_id="primary",
        created_at=NOW - timedelta(days=6),
    )
    session.channels.save_channel(channel)
    return channel


class TestValidateUrl:
    @pytest.mark.parametrize(
        "url",
        [
            None,
            "",
            "http://sync.example.com/hook",
            "https://localhost/hook",
            "https://127.0.0.1:8443/hook",
            "https://app.localhost/hook",
        ],
    )
    def test_rejected(self, url):
        with pytest.raises(ConfigurationError):
            validate_webhook_url(url)

    def test_accepted(self):
        assert validate_webhook_url(URL) == URL


class TestCalendarChannel:
    def test_setup_stores_channel_and_cursor(self, session, fake_calendar, state_db):
        channel = setup_calendar_channel(session, URL, now=NOW)

        assert fake_calendar.watches == [URL]
        assert session.channels.get_channel() == channel
        assert channel.created_at == NOW
        assert channel.last_renewed_at is None
        assert session.channels.get_cursor() is not None
        assert state_db.recent_webhook_log()[0]["action"] == "channel_created"

    def test_setup_replaces_existing(self, session, fake_calendar):
        _store_channel(session, timedelta(days=3))
        setup_calendar_channel(session, URL, now=NOW)
        assert fake_calendar.stops == [("channel-old", "resource-old")]

    def test_setup_failure_is_logged(self, session, fake_calendar, state_db, retry):
        fake_calendar.failures = [NetworkError("down")] * (retry.max_retries + 1)
        with pytest.raises(NetworkError):
            setup_calendar_channel(session, URL, now=NOW)
        assert session.channels.get_channel() is None
        assert state_db.recent_webhook_log()[0]["status"] == "failure"

    def test_renew_not_needed(self, session, fake_calendar):
        _store_channel(session, timedelta(days=3))
        assert renew_calendar_channel(session, URL, now=NOW) is None
        assert fake_calendar.watches == []

    def test_renew_close_to_expiry(self, session, fake_calendar, state_db):
        old = _store_channel(session, timedelta(hours=2))

        channel = renew_calendar_channel(session, URL, now=NOW)

        assert channel.channel_id != old.channel_id
        assert channel.created_at == old.created_at
        assert channel.last_renewed_at == NOW
        assert fake_calendar.stops == [("channel-old", "resource-old")]
        row = state_db.recent_webhook_log()[0]
        assert (row["type"], row["action"]) == ("renewal", "channel_renewed")

    def test_forced_renewal(self, session, fake_calendar):
        _store_channel(session, timedelta(days=3))
        assert renew_calendar_channel(session, URL, force=True, now=NOW) is not None
        assert len(fake_calendar.watches) == 1

    def test_renew_without_channel_sets_up(self, session, fake_calendar):
        channel = renew_calendar_channel(session, URL, now=NOW)
        assert channel.last_renewed_at is None
        assert fake_calendar.watches == [URL]

    def test_stop(self, session, fake_calendar):
        assert stop_calendar_channel(session) is False
        _store_channel(session, timedelta(days=3))
        assert stop_calendar_channel(session) is True
        assert fake_calendar.stops == [("channel-old", "resource-old")]
        assert session.channels.get_channel() is None


class TestNotionSubscription:
    def test_created_through_api_is_pending(self, session, fake_notion):
        subscription = setup_notion_subscription(session, "https://sync.example.com/webhooks/notion", now=NOW)

        assert fake_notion.webhooks == ["https://sync.example.com/webhooks/notion"]
        assert subscription.subscription_id == "subscription-1"
        assert subscription.verification_token == PENDING_TOKEN
        assert subscription.verified is False
        assert session.channels.notion_status()["state"] == "verification_required"

    def test_registered_by_id_is_verified(self, session, fake_notion):
        session.channels.record_verification_token("secret_tok")

        subscription = setup_notion_subscription(session, subscription_id="sub-ui", now=NOW)

        assert fake_notion.webhooks == []
        assert subscription.verified is True
        assert subscription.verification_token == "secret_tok"
        assert session.channels.get_subscription().subscription_id == "sub-ui"

    def test_confirm_verification(self, session):
        with pytest.raises(ConfigurationError):
            confirm_notion_verification(session)
        setup_notion_subscription(session, "https://sync.example.com/webhooks/notion", now=NOW)
        assert confirm_notion_verification(session).verified is True
