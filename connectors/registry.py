"""
ConnectorRegistry — builds and provides access to the enabled connectors.

The registry is assembled once at startup and treated as immutable.  An
enabled provider without a client id/secret is a deployment error and aborts
startup rather than failing later at the first connect attempt.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Type

import httpx

from config.settings import Settings, config
from connectors.base import BaseConnector
from connectors.calendar import GoogleCalendarConnector
from connectors.github import GitHubConnector
from connectors.notion import NotionConnector
from connectors.slack import SlackConnector
from utils.errors import ProviderConfigurationError

logger = logging.getLogger(__name__)

# ── All known connectors ──────────────────────────────────────────────────

_ALL_CONNECTORS: List[Type[BaseConnector]] = [
    GitHubConnector,
    NotionConnector,
    SlackConnector,
    GoogleCalendarConnector,
]


class ConnectorRegistry:
    """Registry of enabled OAuth connectors."""

    def __init__(
        self,
        settings: Settings = config,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._settings = settings
        self._transport = transport
        self._connectors: Dict[str, BaseConnector] = {}
        self._discovered = False

    def discover(self) -> None:
        """Register every enabled connector; raise if one is misconfigured."""
        if self._discovered:
            return
        known = {cls.provider_name: cls for cls in _ALL_CONNECTORS}
        for provider in self._settings.enabled_providers:
            cls = known.get(provider)
            if cls is None:
                raise ProviderConfigurationError(f"Unknown provider enabled: {provider}", provider=provider)
            conn = cls(self._settings, transport=self._transport)
            if not conn.is_configured():
                raise ProviderConfigurationError(
                    f"Provider {provider} is enabled but missing client_id/client_secret",
                    provider=provider,
                )
            self._connectors[provider] = conn
            logger.info("Connector registered: %s (%s)", conn.display_name, provider)
        self._discovered = True

    def get(self, provider: str) -> Optional[BaseConnector]:
        """Get a connector by provider name."""
        return self._connectors.get(provider)

    def list_providers(self) -> List[Dict[str, object]]:
        """Return info about all registered connectors."""
        return [
            {
                "provider": c.provider_name,
                "display_name": c.display_name,
                "scopes": list(c.scopes),
                "supports_refresh": c.supports_refresh,
            }
            for c in self._connectors.values()
        ]

    def list_configured(self) -> List[str]:
        """Return names of registered connectors."""
        return list(self._connectors.keys())
