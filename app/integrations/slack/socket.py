"""
Slack Socket Mode Transport

Receives Events API deliveries over a Socket Mode websocket (aiohttp) and
acknowledges each envelope only when the Connection Manager asks for it.
Messages are enriched with author, channel name and thread context through
the Web API before they are handed over.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from slack_sdk.errors import SlackApiError
from slack_sdk.socket_mode.aiohttp import SocketModeClient
from slack_sdk.socket_mode.request import SocketModeRequest
from slack_sdk.socket_mode.response import SocketModeResponse
from slack_sdk.web.async_client import AsyncWebClient

from app.errors import AuthError, TransportError
from app.integrations.slack.parser import build_permalink
from app.integrations.transport import Delivery, SourceTransport, WorkspaceIdentity
from app.models.enums import SourceType

logger = logging.getLogger(__name__)

# Slack API errors that mean the token itself is bad
AUTH_ERRORS = {
    "invalid_auth",
    "not_authed",
    "token_revoked",
    "token_expired",
    "account_inactive",
    "missing_scope",
}

# Message subtypes that carry a human-written message
_MESSAGE_SUBTYPES = {None, "thread_broadcast", "file_share"}

# Earlier thread messages passed to extraction as context
THREAD_CONTEXT_LIMIT = 3


def _raise_for_slack_error(e: SlackApiError, action: str) -> None:
    error = e.response.get("error") if e.response is not None else None
    if error in AUTH_ERRORS:
        raise AuthError(f"Slack {action} rejected credentials: {error}") from e
    raise TransportError(f"Slack {action} failed: {error or e}") from e


class SlackSocketTransport(SourceTransport):
    """One Socket Mode connection for one team's Slack workspace."""

    source_type = SourceType.SLACK

    def __init__(self, bot_token: str, app_token: str):
        if not bot_token or not app_token:
            raise AuthError("Slack bot token and app-level token are both required")
        self.bot_token = bot_token
        self.app_token = app_token
        self.web_client = AsyncWebClient(token=bot_token)
        self.client: Optional[SocketModeClient] = None
        self.queue: "asyncio.Queue[SocketModeRequest]" = asyncio.Queue()
        self.identity: Optional[WorkspaceIdentity] = None
        self.workspace_url: Optional[str] = None
        self._users: Dict[str, Dict[str, Any]] = {}
        self._channels: Dict[str, Optional[str]] = {}

    async def authorize(self) -> WorkspaceIdentity:
        try:
            response = await self.web_client.auth_test()
        except SlackApiError as e:
            _raise_for_slack_error(e, "auth.test")

        self.workspace_url = response.get("url")
        self.identity = WorkspaceIdentity(
            workspace_id=response["team_id"],
            workspace_name=response.get("team"),
            bot_user_id=response.get("user_id"),
        )
        logger.info(f"Slack credentials valid for workspace {self.identity.workspace_name}")
        return self.identity

    async def open(self) -> None:
        if self.identity is None:
            await self.authorize()

        await self.close()
        self.queue = asyncio.Queue()
        # Reconnects are owned by the Connection Manager
        self.client = SocketModeClient(
            app_token=self.app_token,
            web_client=self.web_client,
            auto_reconnect_enabled=False,
        )
        self.client.socket_mode_request_listeners.append(self._on_request)
        try:
            await self.client.connect()
        except SlackApiError as e:
            _raise_for_slack_error(e, "apps.connections.open")
        except Exception as e:
            raise TransportError(f"Socket Mode connect failed: {e}") from e
        logger.info(f"Socket Mode connected for workspace {self.identity.workspace_id}")

    async def _on_request(self, client: SocketModeClient, req: SocketModeRequest) -> None:
        await self.queue.put(req)

    async def receive(self, timeout: float) -> Optional[Delivery]:
        if self.client is None:
            raise TransportError("Socket Mode client is not open")
        try:
            req = await asyncio.wait_for(self.queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            if not await self.client.is_connected():
                raise TransportError("Socket Mode connection closed")
            return None
        delivery = self._to_delivery(req)
        if not delivery.skip:
            await self._enrich(delivery)
        return delivery

    async def _enrich(self, delivery: Delivery) -> None:
        """
        Add author, channel name and thread context to a delivery.

        Each lookup is best effort: a failed Slack call leaves its fields
        unset and the message is still delivered.
        """
        extra = delivery.extra
        channel = delivery.channel
        user_id = extra.get("user_id")
        thread_ts = extra.get("thread_ts")

        if user_id:
            profile = await self._lookup_user(user_id)
            extra["user_name"] = profile.get("real_name") or profile.get("display_name")
            extra["user_title"] = profile.get("title") or None

        if channel:
            extra["channel_name"] = await self._lookup_channel(channel)

        if channel and thread_ts:
            try:
                response = await self.web_client.conversations_replies(
                    channel=channel, ts=thread_ts, limit=THREAD_CONTEXT_LIMIT
                )
            except SlackApiError as e:
                logger.warning(f"Could not read thread {channel}/{thread_ts}: {e}")
            else:
                own_ts = delivery.external_id.split(":", 1)[-1]
                extra["thread_context"] = [
                    m["text"]
                    for m in response.get("messages") or []
                    if m.get("ts") != own_ts and m.get("text")
                ] or None

    async def _lookup_user(self, user_id: str) -> Dict[str, Any]:
        if user_id not in self._users:
            try:
                response = await self.web_client.users_info(user=user_id)
            except SlackApiError as e:
                logger.warning(f"Could not look up Slack user {user_id}: {e}")
                return {}
            user = response.get("user") or {}
            self._users[user_id] = user.get("profile") or {}
        return self._users[user_id]

    async def _lookup_channel(self, channel_id: str) -> Optional[str]:
        if channel_id not in self._channels:
            try:
                response = await self.web_client.conversations_info(channel=channel_id)
            except SlackApiError as e:
                logger.warning(f"Could not look up Slack channel {channel_id}: {e}")
                return None
            self._channels[channel_id] = (response.get("channel") or {}).get("name")
        return self._channels[channel_id]

    def _to_delivery(self, req: SocketModeRequest) -> Delivery:
        if req.type != "events_api":
            return Delivery(delivery_id=req.envelope_id, skip=True)

        event: Dict[str, Any] = (req.payload or {}).get("event") or {}
        if event.get("type") != "message" or event.get("subtype") not in _MESSAGE_SUBTYPES:
            return Delivery(delivery_id=req.envelope_id, skip=True)

        is_bot = bool(event.get("bot_id")) or (
            self.identity is not None and event.get("user") == self.identity.bot_user_id
        )
        channel = event.get("channel")
        ts = event.get("ts", "")
        occurred_at = (
            datetime.fromtimestamp(float(ts), tz=timezone.utc).replace(tzinfo=None) if ts else None
        )

        return Delivery(
            delivery_id=req.envelope_id,
            external_id=f"{channel}:{ts}",
            content=event.get("text", ""),
            channel=channel,
            occurred_at=occurred_at,
            skip=is_bot,
            extra={
                "user_id": event.get("user"),
                "thread_ts": event.get("thread_ts"),
                "permalink": build_permalink(self.workspace_url, channel, ts),
            },
        )

    async def ack(self, delivery: Delivery) -> None:
        if self.client is None:
            raise TransportError("Socket Mode client is not open")
        try:
            await self.client.send_socket_mode_response(
                SocketModeResponse(envelope_id=delivery.delivery_id)
            )
        except Exception as e:
            raise TransportError(f"Failed to ack envelope {delivery.delivery_id}: {e}") from e

    async def close(self) -> None:
        client, self.client = self.client, None
        if client is None:
            return
        try:
            await client.close()
        except Exception as e:
            logger.warning(f"Error closing Socket Mode client: {e}")
