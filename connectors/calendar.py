"""
GoogleCalendarConnector — OAuth2 for Google Calendar (read-only).

Requests offline access with forced consent so Google always issues a
refresh token; access tokens last an hour.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List

from connectors.base import BaseConnector, parse_timestamp
from utils.schemas import ActivityItem

_GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
_GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
_GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"
_CALENDAR_API = "https://www.googleapis.com/calendar/v3"


class GoogleCalendarConnector(BaseConnector):
    """OAuth2 connector for Google Calendar."""

    provider_name = "calendar"
    display_name = "Google Calendar"
    scopes = [
        "https://www.googleapis.com/auth/calendar.readonly",
        "https://www.googleapis.com/auth/calendar.events.readonly",
    ]

    auth_url = _GOOGLE_AUTH_URL
    token_url = _GOOGLE_TOKEN_URL
    revoke_url = _GOOGLE_REVOKE_URL
    supports_refresh = True

    def extra_auth_params(self) -> Dict[str, str]:
        return {"access_type": "offline", "prompt": "consent"}

    async def revoke_token(self, access_token: str) -> bool:
        async with self._client() as client:
            resp = await client.post(
                self.revoke_url,
                data={"token": access_token},
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        return resp.is_success

    @staticmethod
    def _event_start(event: Dict[str, Any]) -> str:
        start = event.get("start") or {}
        return start.get("dateTime") or start.get("date") or ""

    async def fetch_activity(self, access_token: str, since: datetime) -> List[ActivityItem]:
        """Events on the primary calendar updated since ``since``."""
        async with self._client() as client:
            data = await self.api_request(
                client,
                "GET",
                f"{_CALENDAR_API}/calendars/primary/events",
                access_token,
                params={
                    "updatedMin": since.isoformat(),
                    "singleEvents": "true",
                    "orderBy": "updated",
                    "maxResults": 250,
                },
            )

        items: List[ActivityItem] = []
        for event in data.get("items", []):
            if event.get("status") == "cancelled":
                continue
            items.append(
                ActivityItem(
                    external_id=event["id"],
                    type="event",
                    title=event.get("summary") or "(no title)",
                    description=event.get("description"),
                    external_url=event.get("htmlLink"),
                    occurred_at=parse_timestamp(event.get("updated") or event.get("created")),
                    metadata={
                        "start": self._event_start(event),
                        "location": event.get("location"),
                        "attendees": len(event.get("attendees") or []),
                    },
                )
            )
        return items
