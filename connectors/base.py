"""
BaseConnector — shared OAuth2 mechanics for all provider connectors.

Subclasses declare their endpoints, scopes and refresh capability as class
attributes and override the few hooks where a provider deviates from plain
RFC 6749 (token request encoding, token response shape, revocation, and the
activity fetch adapter).
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx

from config.settings import Settings, config
from utils.errors import OAuthExchangeError, ProviderAPIError, ReauthRequiredError
from utils.schemas import ActivityItem, OAuthTokens

logger = logging.getLogger(__name__)


class BaseConnector(ABC):
    """Abstract base for all OAuth2 connectors."""

    # ── Identity ────────────────────────────────────────────────────────
    provider_name: str = ""
    display_name: str = ""
    scopes: List[str] = []
    scope_separator: str = " "

    # ── Endpoints & capabilities ────────────────────────────────────────
    auth_url: str = ""
    token_url: str = ""
    revoke_url: Optional[str] = None
    supports_refresh: bool = False

    def __init__(
        self,
        settings: Settings = config,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._settings = settings
        self._transport = transport

    # ── Configuration ───────────────────────────────────────────────────

    @property
    def client_id(self) -> str:
        return self._settings.provider_credentials(self.provider_name)[0]

    @property
    def client_secret(self) -> str:
        return self._settings.provider_credentials(self.provider_name)[1]

    @property
    def redirect_uri(self) -> str:
        return self._settings.get_callback_url(self.provider_name)

    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._settings.provider_timeout_seconds,
            transport=self._transport,
        )

    # ── Authorization URL ───────────────────────────────────────────────

    def extra_auth_params(self) -> Dict[str, str]:
        """Provider-specific query parameters for the authorization URL."""
        return {}

    def scope_params(self) -> Dict[str, str]:
        return {"scope": self.scope_separator.join(self.scopes)}

    def get_auth_url(self, state: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "state": state,
        }
        params.update(self.scope_params())
        params.update(self.extra_auth_params())
        return f"{self.auth_url}?{urlencode(params)}"

    # ── Token endpoint ──────────────────────────────────────────────────

    def code_payload(self, code: str) -> Dict[str, str]:
        return {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
        }

    async def post_token_request(self, client: httpx.AsyncClient, payload: Dict[str, str]) -> httpx.Response:
        """POST to the token endpoint; client credentials go in the form body."""
        data = {"client_id": self.client_id, "client_secret": self.client_secret, **payload}
        return await client.post(self.token_url, data=data, headers={"Accept": "application/json"})

    def token_error(self, data: Dict[str, Any]) -> Optional[str]:
        """Return an error description if a 2xx body still signals failure."""
        if "error" in data:
            return str(data.get("error_description") or data["error"])
        return None

    def extract_token_fields(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return data

    async def _call_token_endpoint(self, payload: Dict[str, str], action: str) -> Dict[str, Any]:
        try:
            async with self._client() as client:
                resp = await self.post_token_request(client, payload)
        except httpx.HTTPError as exc:
            raise OAuthExchangeError(
                f"{self.display_name} {action} failed: {exc}",
                provider=self.provider_name,
            ) from exc

        body = resp.text
        if not resp.is_success:
            raise OAuthExchangeError(
                f"{self.display_name} {action} failed with HTTP {resp.status_code}",
                provider=self.provider_name,
                status=resp.status_code,
                body=body,
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise OAuthExchangeError(
                f"{self.display_name} {action} returned a non-JSON body",
                provider=self.provider_name,
                status=resp.status_code,
                body=body,
            ) from exc

        error = self.token_error(data)
        if error:
            raise OAuthExchangeError(
                f"{self.display_name} {action} error: {error}",
                provider=self.provider_name,
                status=resp.status_code,
                body=body,
            )
        return self.extract_token_fields(data)

    def parse_tokens(self, data: Dict[str, Any], *, previous_refresh_token: Optional[str] = None) -> OAuthTokens:
        """Normalise a token response. A missing refresh token keeps the previous one."""
        access_token = data.get("access_token")
        if not access_token:
            raise OAuthExchangeError(
                f"{self.display_name} token response has no access_token",
                provider=self.provider_name,
            )
        expires_at = None
        if data.get("expires_in"):
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(data["expires_in"]))
        scope = data.get("scope") or ""
        if isinstance(scope, list):
            scope = self.scope_separator.join(scope)
        return OAuthTokens(
            access_token=access_token,
            refresh_token=data.get("refresh_token") or previous_refresh_token,
            expires_at=expires_at,
            scope=scope,
            token_type=data.get("token_type") or "Bearer",
        )

    async def handle_callback(self, code: str) -> OAuthTokens:
        """Exchange the authorization code for tokens. One request, never retried."""
        data = await self._call_token_endpoint(self.code_payload(code), "token exchange")
        return self.parse_tokens(data)

    async def refresh_access_token(self, refresh_token: str) -> OAuthTokens:
        if not self.supports_refresh:
            raise ReauthRequiredError(
                f"{self.display_name} tokens cannot be refreshed",
                provider=self.provider_name,
            )
        payload = {"grant_type": "refresh_token", "refresh_token": refresh_token}
        data = await self._call_token_endpoint(payload, "token refresh")
        return self.parse_tokens(data, previous_refresh_token=refresh_token)

    async def revoke_token(self, access_token: str) -> bool:
        """
        Revoke the token at the provider.
        Returns False if the provider has no revocation endpoint.
        """
        return False

    # ── Activity fetch adapter ──────────────────────────────────────────

    @abstractmethod
    async def fetch_activity(self, access_token: str, since: datetime) -> List[ActivityItem]:
        """Return items created or updated at or after ``since``."""
        ...

    def auth_headers(self, access_token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}

    def check_api_response(self, resp: httpx.Response) -> None:
        """Map a provider API response onto the error taxonomy."""
        if resp.status_code == 401:
            raise ReauthRequiredError(
                f"{self.display_name} rejected the access token",
                provider=self.provider_name,
            )
        if not resp.is_success:
            raise ProviderAPIError(
                f"{self.display_name} API returned HTTP {resp.status_code}",
                provider=self.provider_name,
                status=resp.status_code,
            )

    async def api_request(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        access_token: str,
        **kwargs: Any,
    ) -> Any:
        headers = {**self.auth_headers(access_token), **kwargs.pop("headers", {})}
        try:
            resp = await client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            raise ProviderAPIError(
                f"{self.display_name} API request failed: {exc}",
                provider=self.provider_name,
                retryable=True,
            ) from exc
        self.check_api_response(resp)
        return resp.json()


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (``Z`` suffix allowed) into an aware datetime."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
