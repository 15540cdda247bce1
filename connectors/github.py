"""
GitHubConnector — OAuth2 for GitHub (source-control activity).

Classic OAuth App tokens do not expire and cannot be refreshed; an expired
or revoked token means the user must reconnect.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, List

from connectors.base import BaseConnector, parse_timestamp
from utils.schemas import ActivityItem

logger = logging.getLogger(__name__)

# GitHub OAuth2 endpoints
_GH_AUTH_URL = "https://github.com/login/oauth/authorize"
_GH_TOKEN_URL = "https://github.com/login/oauth/access_token"
_GH_API = "https://api.github.com"


class GitHubConnector(BaseConnector):
    """OAuth2 connector for GitHub."""

    provider_name = "github"
    display_name = "GitHub"
    scopes = ["repo", "read:user", "read:org"]

    auth_url = _GH_AUTH_URL
    token_url = _GH_TOKEN_URL
    revoke_url = f"{_GH_API}/applications/{{client_id}}/token"
    supports_refresh = False

    def code_payload(self, code: str) -> Dict[str, str]:
        # GitHub takes no grant_type on the code exchange
        return {"code": code, "redirect_uri": self.redirect_uri}

    async def revoke_token(self, access_token: str) -> bool:
        """Revoke the token via GitHub's OAuth application API."""
        async with self._client() as client:
            resp = await client.request(
                "DELETE",
                self.revoke_url.format(client_id=self.client_id),
                auth=(self.client_id, self.client_secret),
                json={"access_token": access_token},
                headers={"Accept": "application/vnd.github+json"},
            )
        return resp.status_code == 204

    def auth_headers(self, access_token: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/vnd.github+json",
        }

    async def fetch_activity(self, access_token: str, since: datetime) -> List[ActivityItem]:
        """Issues and pull requests involving the user, updated since ``since``."""
        async with self._client() as client:
            issues = await self.api_request(
                client,
                "GET",
                f"{_GH_API}/issues",
                access_token,
                params={
                    "filter": "all",
                    "state": "all",
                    "since": since.isoformat(),
                    "per_page": 100,
                },
            )

        items: List[ActivityItem] = []
        for issue in issues:
            is_pr = "pull_request" in issue
            repo = (issue.get("repository") or {}).get("full_name", "")
            items.append(
                ActivityItem(
                    external_id=f"{'pr' if is_pr else 'issue'}-{issue['id']}",
                    type="pull_request" if is_pr else "issue",
                    title=issue.get("title") or "",
                    description=issue.get("body"),
                    external_url=issue.get("html_url"),
                    occurred_at=parse_timestamp(issue.get("updated_at") or issue.get("created_at")),
                    metadata={
                        "repository": repo,
                        "number": issue.get("number"),
                        "state": issue.get("state"),
                    },
                )
            )
        logger.debug("GitHub returned %d items since %s", len(items), since.isoformat())
        return items
