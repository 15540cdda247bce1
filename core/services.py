"""
Service container — wires the integration components together once.

Built at startup and stored on ``app.state.services``; route dependencies
read from there, and tests build their own against a throwaway database.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.settings import Settings, config
from connectors.csrf import CSRFStateGuard
from connectors.encryption import TokenCipher
from connectors.oauth import OAuthCoordinator
from connectors.registry import ConnectorRegistry
from connectors.token_manager import CredentialVault
from core.analytics import ActivityAnalytics
from core.batch import BatchSyncRunner
from core.cron_monitoring import CronExecutionMonitor
from core.notifications import NotificationCenter
from core.rate_limiter import RateLimiter
from core.sync_service import SyncOrchestrator
from core.sync_tasks import SyncTaskSupervisor
from utils.cache import BoundedTTLCache
from utils.validators import validate_enabled_providers

logger = logging.getLogger(__name__)


@dataclass
class IntegrationServices:
    settings: Settings
    vault: CredentialVault
    csrf: CSRFStateGuard
    oauth: OAuthCoordinator
    notifications: NotificationCenter
    orchestrator: SyncOrchestrator
    tasks: SyncTaskSupervisor
    batch: BatchSyncRunner
    monitor: CronExecutionMonitor
    rate_limiter: RateLimiter
    analytics: ActivityAnalytics
    status_cache: BoundedTTLCache[Dict[str, Any]]
    analytics_cache: BoundedTTLCache[Dict[str, Any]]

    def invalidate_caches(self, user_id: str, provider: str) -> None:
        """Drop cached responses that a sync, connect or disconnect makes stale."""
        self.status_cache.invalidate((user_id, provider))
        self.analytics_cache.invalidate_where(lambda key: key[0] == user_id)


def build_services(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings = config,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> IntegrationServices:
    """Construct every component. Raises on a bad master key or provider config."""
    validate_enabled_providers(settings.enabled_providers)
    cipher = TokenCipher(settings.encryption_master_key)

    registry = ConnectorRegistry(settings, transport=transport)
    registry.discover()

    vault = CredentialVault(cipher, session_factory)
    oauth = OAuthCoordinator(registry)
    notifications = NotificationCenter(session_factory)
    monitor = CronExecutionMonitor(session_factory)
    orchestrator = SyncOrchestrator(vault, oauth, notifications, session_factory, settings)

    logger.info("Integration services ready (%s)", ", ".join(registry.list_configured()))
    return IntegrationServices(
        settings=settings,
        vault=vault,
        csrf=CSRFStateGuard(settings.oauth_state_ttl_seconds),
        oauth=oauth,
        notifications=notifications,
        orchestrator=orchestrator,
        tasks=SyncTaskSupervisor(orchestrator, settings.sync_task_history_size),
        batch=BatchSyncRunner(orchestrator, vault, monitor, settings),
        monitor=monitor,
        rate_limiter=RateLimiter(settings),
        analytics=ActivityAnalytics(session_factory, registry.list_configured()),
        status_cache=BoundedTTLCache(settings.status_cache_ttl_seconds, settings.status_cache_max_entries),
        analytics_cache=BoundedTTLCache(settings.analytics_cache_ttl_seconds, settings.analytics_cache_max_entries),
    )
