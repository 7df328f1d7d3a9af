"""
Tests for ChannelManager: stored channel, cursor and subscription state.
"""

import hashlib
import hmac
from datetime import timedelta

import pytest

from gcal_notion_sync.webhooks.channels import PENDING_TOKEN
from gcal_notion_sync.webhooks.channels import ChannelManager
from gcal_notion_sync.webhooks.channels import NotionSubscription
from gcal_notion_sync.webhooks.channels import WebhookChannel
from gcal_notion_sync.webhooks.channels import expiration_from_ms
from tests.conftest import NOW


@pytest.fixture
def channels(state_db):
    return ChannelManager(state_db)


def _channel(expires_in: timedelta = timedelta(days=7), calendar_id: str = "primary") -> WebhookChannel:
    return WebhookChannel(
        channel_id="channel-1",
        resource_id="resource-1",
        expiration=NOW + expires_in,
        calendar_id=calendar_id,
        created_at=NOW,
    )


def _sign(token: str, body: bytes) -> str:
    return "sha256=" + hmac.new(token.encode(), body, hashlib.sha256).hexdigest()


class TestChannel:
    def test_round_trip(self, channels):
        assert channels.get_channel() is None
        channels.save_channel(_channel())
        stored = channels.get_channel()
        assert stored == _channel()
        assert channels.delete_channel() is True
        assert channels.get_channel() is None
        assert channels.delete_channel() is False

    def test_expiration_from_ms(self):
        assert expiration_from_ms(str(int(NOW.timestamp() * 1000))) == NOW

    @pytest.mark.parametrize(
        "remaining, expired, renew",
        [
            (timedelta(days=2), False, False),
            (timedelta(hours=6), False, False),
            (timedelta(hours=5, minutes=59), False, True),
            (timedelta(0), True, True),
            (timedelta(hours=-1), True, True),
        ],
    )
    def test_expiry_and_renewal(self, remaining, expired, renew):
        channel = _channel(expires_in=remaining)
        assert ChannelManager.is_expired(channel, NOW) is expired
        assert ChannelManager.needs_renewal(channel, NOW) is renew


class TestCursor:
    def test_save_and_clear(self, channels):
        assert channels.get_cursor() is None
        cursor = channels.save_cursor("tok-1", now=NOW)
        assert cursor.token == "tok-1"
        assert channels.get_cursor() == cursor
        assert channels.clear_cursor() is True
        assert channels.get_cursor() is None


class TestSubscription:
    def test_verification_token_preserves_existing_state(self, channels):
        channels.save_subscription(
            NotionSubscription(
                subscription_id="sub-1",
                database_id="db-test",
                verification_token=PENDING_TOKEN,
                verified=True,
                created_at=NOW,
            )
        )
        updated = channels.record_verification_token("secret_tok", database_id="db-other")
        assert updated.verification_token == "secret_tok"
        assert updated.subscription_id == "sub-1"
        assert updated.verified is True
        assert updated.database_id == "db-test"

    def test_verification_token_without_subscription(self, channels):
        created = channels.record_verification_token("secret_tok", database_id="db-test")
        assert created.verified is False
        assert created.subscription_id is None
        assert created.database_id == "db-test"

    def test_mark_verified(self, channels):
        assert channels.mark_verified() is None
        channels.record_verification_token("secret_tok")
        assert channels.mark_verified().verified is True
        assert channels.get_subscription().verification_token == "secret_tok"


class TestSignature:
    BODY = b'{"type": "page.created"}'

    def test_valid_signature(self, channels):
        channels.record_verification_token("secret_tok")
        assert channels.verify_signature(self.BODY, _sign("secret_tok", self.BODY))

    def test_rejects_bad_or_missing(self, channels):
        assert not channels.verify_signature(self.BODY, _sign("secret_tok", self.BODY))
        channels.record_verification_token("secret_tok")
        assert not channels.verify_signature(self.BODY, None)
        assert not channels.verify_signature(self.BODY, _sign("other", self.BODY))
        assert not channels.verify_signature(b"tampered", _sign("secret_tok", self.BODY))

    def test_pending_token_never_verifies(self, channels):
        channels.record_verification_token(PENDING_TOKEN)
        assert not channels.verify_signature(self.BODY, _sign(PENDING_TOKEN, self.BODY))


class TestStatus:
    def test_google_inactive_states(self, channels):
        assert channels.google_status("primary", NOW)["reason"] == "No webhook channel registered"

        channels.save_channel(_channel(calendar_id="work@example.com"))
        status = channels.google_status("primary", NOW)
        assert status["state"] == "inactive"
        assert "different calendar" in status["reason"]

        channels.save_channel(_channel(expires_in=timedelta(hours=-1)))
        assert channels.google_status("primary", NOW)["reason"] == "Channel expired"

    def test_google_active(self, channels):
        channels.save_channel(_channel(expires_in=timedelta(hours=3)))
        status = channels.google_status("primary", NOW)
        assert status["state"] == "active"
        assert status["expires_in_hours"] == 3.0
        assert status["needs_renewal"] is True

    def test_notion_states(self, channels):
        assert channels.notion_status()["state"] == "inactive"

        channels.record_verification_token(PENDING_TOKEN)
        status = channels.notion_status()
        assert status["state"] == "verification_required"
        assert status["verification_token"] is None

        channels.record_verification_token("secret_tok")
        assert channels.notion_status()["verification_token"] == "secret_tok"

        channels.mark_verified()
        assert channels.notion_status()["state"] == "active"

    def test_notion_status_checks_database(self, channels):
        channels.record_verification_token("secret_tok", database_id="aaaa-bbbb")
        channels.mark_verified()

        assert channels.notion_status("aaaabbbb")["state"] == "active"
        status = channels.notion_status("cccc-dddd")
        assert status["state"] == "inactive"
        assert "different database" in status["reason"]

    def test_verification_token_only_accepted_before_verification(self, channels):
        assert channels.accepts_verification_token()
        channels.record_verification_token("secret_tok")
        assert channels.accepts_verification_token()

        channels.mark_verified()
        assert not channels.accepts_verification_token()

    def test_registered_subscription_still_takes_a_token(self, channels):
        channels.save_subscription(
            NotionSubscription(subscription_id="sub-1", database_id="db", verification_token=None, verified=True, created_at=NOW)
        )
        assert channels.accepts_verification_token()
