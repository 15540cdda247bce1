"""
SlackConnector — OAuth2 (v2) for Slack workspaces with a user token.

Slack reports failures as HTTP 200 with ``{"ok": false}``, so both token and
API responses are checked for the ``ok`` flag.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from connectors.base import BaseConnector
from utils.errors import ProviderAPIError, ReauthRequiredError
from utils.schemas import ActivityItem

logger = logging.getLogger(__name__)

_SLACK_API = "https://slack.com/api"
_MAX_CHANNELS = 20

_AUTH_ERRORS = {"invalid_auth", "token_revoked", "token_expired", "account_inactive", "not_authed"}


class SlackConnector(BaseConnector):
    """OAuth2 connector for Slack."""

    provider_name = "slack"
    display_name = "Slack"
    scopes = [
        "channels:history",
        "channels:read",
        "users:read",
        "team:read",
        "im:history",
        "reactions:read",
    ]
    scope_separator = ","

    auth_url = "https://slack.com/oauth/v2/authorize"
    token_url = f"{_SLACK_API}/oauth.v2.access"
    revoke_url = f"{_SLACK_API}/auth.revoke"
    supports_refresh = True

    def scope_params(self) -> Dict[str, str]:
        # Request a user token rather than a bot token
        return {"user_scope": self.scope_separator.join(self.scopes)}

    def token_error(self, data: Dict[str, Any]) -> Optional[str]:
        if not data.get("ok", False):
            return str(data.get("error") or "unknown_error")
        return None

    def extract_token_fields(self, data: Dict[str, Any]) -> Dict[str, Any]:
        authed_user = data.get("authed_user") or {}
        if authed_user.get("access_token"):
            return authed_user
        return data

    async def revoke_token(self, access_token: str) -> bool:
        async with self._client() as client:
            resp = await client.post(self.revoke_url, data={"token": access_token})
        return resp.is_success and bool(resp.json().get("revoked"))

    async def _slack_get(self, client: httpx.AsyncClient, method: str, access_token: str, **params: Any) -> Dict[str, Any]:
        data = await self.api_request(client, "GET", f"{_SLACK_API}/{method}", access_token, params=params)
        if not data.get("ok", False):
            error = data.get("error", "unknown_error")
            if error in _AUTH_ERRORS:
                raise ReauthRequiredError(f"Slack {method}: {error}", provider=self.provider_name)
            raise ProviderAPIError(
                f"Slack {method}: {error}",
                provider=self.provider_name,
                retryable=error == "ratelimited",
            )
        return data

    async def fetch_activity(self, access_token: str, since: datetime) -> List[ActivityItem]:
        """Messages posted since ``since`` in the user's public channels."""
        items: List[ActivityItem] = []
        async with self._client() as client:
            channels = await self._slack_get(
                client,
                "conversations.list",
                access_token,
                types="public_channel",
                exclude_archived="true",
                limit=_MAX_CHANNELS,
            )
            for channel in channels.get("channels", []):
                if not channel.get("is_member"):
                    continue
                history = await self._slack_get(
                    client,
                    "conversations.history",
                    access_token,
                    channel=channel["id"],
                    oldest=str(since.timestamp()),
                    limit=100,
                )
                for message in history.get("messages", []):
                    if message.get("subtype"):
                        continue
                    ts = message["ts"]
                    items.append(
                        ActivityItem(
                            external_id=f"{channel['id']}-{ts}",
                            type="message",
                            title=f"Message in #{channel.get('name', channel['id'])}",
                            description=message.get("text"),
                            occurred_at=datetime.fromtimestamp(float(ts), tz=timezone.utc),
                            metadata={
                                "channel_id": channel["id"],
                                "channel_name": channel.get("name"),
                                "user": message.get("user"),
                                "reply_count": message.get("reply_count", 0),
                            },
                        )
                    )
        logger.debug("Slack returned %d messages since %s", len(items), since.isoformat())
        return items
