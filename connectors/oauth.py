"""
OAuthCoordinator — provider-agnostic entry point for the OAuth2 lifecycle.

Looks up the connector for a provider slug and delegates.  Unknown providers
are a caller error (``ValidationError``).  Revocation is best effort and
never raises.
"""

from __future__ import annotations

import logging
from typing import Optional

from connectors.base import BaseConnector
from connectors.registry import ConnectorRegistry
from utils.errors import ReauthRequiredError, ValidationError
from utils.schemas import OAuthTokens

logger = logging.getLogger(__name__)


class OAuthCoordinator:
    def __init__(self, registry: ConnectorRegistry) -> None:
        self._registry = registry

    @property
    def registry(self) -> ConnectorRegistry:
        return self._registry

    def connector(self, provider: str) -> BaseConnector:
        conn = self._registry.get(provider)
        if conn is None:
            raise ValidationError(f"Unsupported provider: {provider}", provider=provider)
        return conn

    def get_authorization_url(self, provider: str, state: str) -> str:
        return self.connector(provider).get_auth_url(state)

    async def exchange_code_for_tokens(self, provider: str, code: str) -> OAuthTokens:
        tokens = await self.connector(provider).handle_callback(code)
        logger.info("Exchanged authorization code for %s tokens", provider)
        return tokens

    def supports_refresh(self, provider: str) -> bool:
        return self.connector(provider).supports_refresh

    async def refresh_access_token(self, provider: str, refresh_token: Optional[str]) -> OAuthTokens:
        conn = self.connector(provider)
        if not refresh_token:
            raise ReauthRequiredError(
                f"No refresh token stored for {provider}",
                provider=provider,
            )
        tokens = await conn.refresh_access_token(refresh_token)
        logger.info("Refreshed %s access token", provider)
        return tokens

    async def revoke_token(self, provider: str, token: str) -> bool:
        """Best-effort revocation; failures are logged and reported as False."""
        try:
            revoked = await self.connector(provider).revoke_token(token)
        except Exception as exc:
            logger.warning("Token revocation failed for %s: %s", provider, exc)
            return False
        if not revoked:
            logger.info("Provider %s did not revoke the token", provider)
        return revoked
