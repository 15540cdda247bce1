"""
Scheduled multi-tenant sync.

An external scheduler calls the cron endpoint with an interval; the interval
selects which providers run.  Each (user, provider) pair runs in isolation,
so one failing pair never stops the others.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import List, Optional, Tuple

from config.settings import Settings, config
from connectors.token_manager import CredentialVault
from core.cron_monitoring import CronExecutionMonitor
from core.sync_service import SyncOrchestrator
from utils.errors import ValidationError
from utils.schemas import ALL_PROVIDERS, BatchSyncSummary

logger = logging.getLogger(__name__)

SYNC_JOB_NAME = "sync-integrations"

# Fast-moving sources poll on the short interval
_SHORT_INTERVAL_PROVIDERS = ["github"]
_LONG_INTERVAL_PROVIDERS = ["notion", "slack", "calendar"]


def resolve_providers(interval: Optional[str], settings: Settings = config) -> List[str]:
    """Map a cron interval onto the providers it covers.

    No interval means every provider; an unknown interval is rejected.
    """
    if not interval:
        return list(ALL_PROVIDERS)
    if interval == settings.sync_interval_short:
        return list(_SHORT_INTERVAL_PROVIDERS)
    if interval == settings.sync_interval_long:
        return list(_LONG_INTERVAL_PROVIDERS)
    raise ValidationError(
        f"Unknown sync interval '{interval}'; expected "
        f"'{settings.sync_interval_short}' or '{settings.sync_interval_long}'"
    )


class BatchSyncRunner:
    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        vault: CredentialVault,
        monitor: CronExecutionMonitor,
        settings: Settings = config,
    ) -> None:
        self._orchestrator = orchestrator
        self._vault = vault
        self._monitor = monitor
        self._settings = settings

    async def _sync_pair(self, semaphore: asyncio.Semaphore, user_id: str, provider: str) -> bool:
        async with semaphore:
            try:
                result = await self._orchestrator.sync_provider(user_id, provider)
            except Exception as exc:
                logger.warning("Scheduled sync %s/%s failed: %s", provider, user_id, exc)
                return False
            return result.success

    async def run_scheduled_sync(self, interval: Optional[str] = None) -> BatchSyncSummary:
        providers = resolve_providers(interval, self._settings)
        started = time.monotonic()
        execution_id: Optional[str] = None

        def elapsed_ms() -> int:
            return int((time.monotonic() - started) * 1000)

        try:
            execution_id = await self._monitor.log_job_start(
                SYNC_JOB_NAME, {"interval": interval or "all", "providers": providers}
            )
            pairs: List[Tuple[str, str]] = await self._vault.list_users_with_connections(providers)
            semaphore = asyncio.Semaphore(self._settings.sync_batch_concurrency)
            outcomes = await asyncio.gather(
                *(self._sync_pair(semaphore, user_id, provider) for user_id, provider in pairs)
            )
        except asyncio.CancelledError:
            logger.warning("Scheduled sync (%s) cancelled", interval or "all")
            if execution_id is None:
                await self._monitor.log_job_failure(SYNC_JOB_NAME, "cancelled", elapsed_ms())
            else:
                await self._monitor.log_job_complete(
                    execution_id, status="failed", duration_ms=elapsed_ms(), error_message="cancelled"
                )
            raise
        except Exception as exc:
            if execution_id is None:
                await self._monitor.log_job_failure(SYNC_JOB_NAME, str(exc), elapsed_ms())
            else:
                await self._monitor.log_job_complete(
                    execution_id, status="failed", duration_ms=elapsed_ms(), error_message=str(exc)
                )
            raise

        success_count = sum(1 for ok in outcomes if ok)
        failure_count = len(outcomes) - success_count
        users = len({user_id for user_id, _ in pairs})
        duration_ms = elapsed_ms()
        await self._monitor.log_job_complete(
            execution_id,
            status="success",
            users_processed=users,
            providers_synced=len(pairs),
            success_count=success_count,
            failure_count=failure_count,
            duration_ms=duration_ms,
        )
        logger.info(
            "Scheduled sync (%s): %d users, %d pairs, %d ok, %d failed",
            interval or "all", users, len(pairs), success_count, failure_count,
        )
        return BatchSyncSummary(
            message="Sync completed",
            execution_id=execution_id,
            providers=providers,
            users_processed=users,
            providers_synced=len(pairs),
            success_count=success_count,
            failure_count=failure_count,
            duration_ms=duration_ms,
        )
