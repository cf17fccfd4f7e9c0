"""
Tests for the Slack Socket Mode transport and the transport factory.
No network: the Slack clients are mocked.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from slack_sdk.errors import SlackApiError

from app.config import Settings
from app.errors import AuthError, TransportError
from app.integrations.registry import build_transport
from app.integrations.slack.socket import SlackSocketTransport
from app.integrations.transport import MemoryTransport, WorkspaceIdentity
from app.models.enums import SourceType


def _request(payload, req_type="events_api", envelope_id="env-1"):
    req = MagicMock()
    req.type = req_type
    req.envelope_id = envelope_id
    req.payload = payload
    return req


@pytest.fixture
def transport():
    transport = SlackSocketTransport(bot_token="xoxb-test", app_token="xapp-test")
    transport.identity = WorkspaceIdentity(
        workspace_id="T1", workspace_name="Acme", bot_user_id="U_BOT"
    )
    transport.workspace_url = "https://acme.slack.com/"
    return transport


class TestToDelivery:
    def test_user_message(self, transport):
        delivery = transport._to_delivery(
            _request(
                {
                    "event": {
                        "type": "message",
                        "channel": "C1",
                        "user": "U_DANA",
                        "text": "Deploy freeze starts Friday",
                        "ts": "1700000000.000100",
                    }
                }
            )
        )

        assert delivery.skip is False
        assert delivery.delivery_id == "env-1"
        assert delivery.external_id == "C1:1700000000.000100"
        assert delivery.content == "Deploy freeze starts Friday"
        assert delivery.extra["user_id"] == "U_DANA"
        assert delivery.extra["permalink"] == (
            "https://acme.slack.com/archives/C1/p1700000000000100"
        )
        assert delivery.occurred_at.year == 2023

    @pytest.mark.parametrize(
        "event",
        [
            {"type": "message", "channel": "C1", "bot_id": "B1", "text": "beep", "ts": "1.0"},
            {"type": "message", "channel": "C1", "user": "U_BOT", "text": "me", "ts": "1.0"},
            {"type": "message", "subtype": "channel_join", "channel": "C1", "ts": "1.0"},
            {"type": "reaction_added", "user": "U_DANA"},
        ],
    )
    def test_skipped_events(self, transport, event):
        assert transport._to_delivery(_request({"event": event})).skip is True

    def test_non_events_api_envelopes_are_skipped(self, transport):
        delivery = transport._to_delivery(_request({}, req_type="hello"))

        assert delivery.skip is True
        assert delivery.delivery_id == "env-1"


class TestEnrich:
    EVENT = {
        "type": "message",
        "channel": "C1",
        "user": "U_DANA",
        "text": "Then let's freeze deploys from Friday",
        "ts": "1700000300.000200",
        "thread_ts": "1700000000.000100",
    }

    @pytest.fixture
    def slack(self, transport):
        web = transport.web_client
        web.users_info = AsyncMock(
            return_value={
                "user": {"profile": {"real_name": "Dana Reyes", "title": "SRE Lead"}}
            }
        )
        web.conversations_info = AsyncMock(
            return_value={"channel": {"id": "C1", "name": "platform-eng"}}
        )
        web.conversations_replies = AsyncMock(
            return_value={
                "messages": [
                    {"ts": "1700000000.000100", "text": "Is staging stable enough?"},
                    {"ts": "1700000100.000100", "text": "Not before the release"},
                    {"ts": "1700000300.000200", "text": "Then let's freeze deploys from Friday"},
                ]
            }
        )
        transport.client = MagicMock()
        return web

    async def _receive(self, transport, event):
        await transport.queue.put(_request({"event": event}))
        return await transport.receive(timeout=1)

    @pytest.mark.asyncio
    async def test_author_channel_and_thread(self, transport, slack):
        delivery = await self._receive(transport, self.EVENT)

        assert delivery.extra["user_name"] == "Dana Reyes"
        assert delivery.extra["user_title"] == "SRE Lead"
        assert delivery.extra["channel_name"] == "platform-eng"
        assert delivery.extra["thread_context"] == [
            "Is staging stable enough?",
            "Not before the release",
        ]
        assert delivery.channel == "C1"
        slack.users_info.assert_awaited_once_with(user="U_DANA")
        slack.conversations_replies.assert_awaited_once_with(
            channel="C1", ts="1700000000.000100", limit=3
        )

    @pytest.mark.asyncio
    async def test_lookups_are_cached(self, transport, slack):
        await self._receive(transport, self.EVENT)
        await self._receive(transport, {**self.EVENT, "ts": "1700000400.000300"})

        assert slack.users_info.await_count == 1
        assert slack.conversations_info.await_count == 1

    @pytest.mark.asyncio
    async def test_failed_lookups_still_deliver(self, transport, slack):
        error = SlackApiError("failed", {"ok": False, "error": "missing_scope"})
        slack.users_info.side_effect = error
        slack.conversations_info.side_effect = error
        slack.conversations_replies.side_effect = error

        delivery = await self._receive(transport, self.EVENT)

        assert delivery.skip is False
        assert delivery.content == "Then let's freeze deploys from Friday"
        assert delivery.extra["user_name"] is None
        assert delivery.extra["channel_name"] is None
        assert "thread_context" not in delivery.extra

    @pytest.mark.asyncio
    async def test_skipped_deliveries_are_not_looked_up(self, transport, slack):
        delivery = await self._receive(transport, {**self.EVENT, "bot_id": "B1"})

        assert delivery.skip is True
        slack.users_info.assert_not_awaited()
        slack.conversations_replies.assert_not_awaited()


class TestAuthorize:
    def test_tokens_are_required(self):
        with pytest.raises(AuthError):
            SlackSocketTransport(bot_token="", app_token="xapp-test")

    @pytest.mark.asyncio
    async def test_identity_from_auth_test(self):
        transport = SlackSocketTransport(bot_token="xoxb-test", app_token="xapp-test")
        transport.web_client.auth_test = AsyncMock(
            return_value={
                "team_id": "T1",
                "team": "Acme",
                "user_id": "U_BOT",
                "url": "https://acme.slack.com/",
            }
        )

        identity = await transport.authorize()

        assert identity == WorkspaceIdentity("T1", "Acme", "U_BOT")
        assert transport.workspace_url == "https://acme.slack.com/"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error,expected", [("invalid_auth", AuthError), ("ratelimited", TransportError)]
    )
    async def test_slack_errors_are_mapped(self, error, expected):
        transport = SlackSocketTransport(bot_token="xoxb-test", app_token="xapp-test")
        transport.web_client.auth_test = AsyncMock(
            side_effect=SlackApiError("failed", {"ok": False, "error": error})
        )

        with pytest.raises(expected):
            await transport.authorize()


class TestRegistry:
    @pytest.fixture
    def settings(self):
        return Settings(_env_file=None, slack_bot_token="xoxb-default", slack_app_token="xapp-default")

    def test_slack_falls_back_to_configured_tokens(self, settings):
        transport = build_transport(SourceType.SLACK, {"bot_token": "xoxb-team"}, settings)

        assert isinstance(transport, SlackSocketTransport)
        assert transport.bot_token == "xoxb-team"
        assert transport.app_token == "xapp-default"

    def test_simulated(self, settings):
        assert isinstance(build_transport(SourceType.SIMULATED, {}, settings), MemoryTransport)

    def test_sources_without_live_transport(self, settings):
        with pytest.raises(ValueError):
            build_transport(SourceType.ZOOM, {}, settings)
