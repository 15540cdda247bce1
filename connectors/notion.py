"""
NotionConnector — OAuth2 for Notion workspaces.

Notion access tokens are long-lived, have no refresh grant and no revocation
endpoint; disconnecting only removes the local credential.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List

import httpx

from connectors.base import BaseConnector, parse_timestamp
from utils.schemas import ActivityItem

_NOTION_API = "https://api.notion.com/v1"
_NOTION_VERSION = "2022-06-28"


class NotionConnector(BaseConnector):
    """OAuth2 connector for Notion."""

    provider_name = "notion"
    display_name = "Notion"
    scopes = ["read_content", "read_user"]

    auth_url = f"{_NOTION_API}/oauth/authorize"
    token_url = f"{_NOTION_API}/oauth/token"
    supports_refresh = False

    def scope_params(self) -> Dict[str, str]:
        # Capabilities are fixed on the integration; Notion ignores a scope param
        return {}

    def extra_auth_params(self) -> Dict[str, str]:
        return {"owner": "user"}

    async def post_token_request(self, client: httpx.AsyncClient, payload: Dict[str, str]) -> httpx.Response:
        """Notion wants HTTP basic client auth and a JSON body."""
        return await client.post(
            self.token_url,
            json=payload,
            auth=(self.client_id, self.client_secret),
            headers={"Accept": "application/json", "Notion-Version": _NOTION_VERSION},
        )

    def auth_headers(self, access_token: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {access_token}",
            "Notion-Version": _NOTION_VERSION,
            "Content-Type": "application/json",
        }

    @staticmethod
    def _page_title(page: Dict[str, Any]) -> str:
        for prop in (page.get("properties") or {}).values():
            if prop.get("type") == "title":
                return "".join(part.get("plain_text", "") for part in prop.get("title", []))
        return "Untitled"

    async def fetch_activity(self, access_token: str, since: datetime) -> List[ActivityItem]:
        """Pages edited since ``since``, newest first."""
        async with self._client() as client:
            data = await self.api_request(
                client,
                "POST",
                f"{_NOTION_API}/search",
                access_token,
                json={
                    "filter": {"property": "object", "value": "page"},
                    "sort": {"direction": "descending", "timestamp": "last_edited_time"},
                    "page_size": 100,
                },
            )

        items: List[ActivityItem] = []
        for page in data.get("results", []):
            edited = parse_timestamp(page.get("last_edited_time"))
            if edited is None or edited < since:
                # Results are sorted, nothing older is relevant
                break
            items.append(
                ActivityItem(
                    external_id=page["id"],
                    type="page",
                    title=self._page_title(page),
                    external_url=page.get("url"),
                    occurred_at=edited,
                    metadata={"created_time": page.get("created_time")},
                )
            )
        return items
