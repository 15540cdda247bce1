"""
SyncOrchestrator — runs one sync for a (user, provider) pair.

Flow for a single provider sync:
  1. Take the per-pair lock (a concurrent request gets ``SyncInProgressError``)
  2. Create SyncRun (status="running") and load the credential
  3. Refresh an expired access token, or fail with ``ReauthRequiredError``
  4. Fetch items since the last sync through the connector's fetch adapter
  5. Upsert items into the activity store keyed by external id
  6. Advance the last-sync watermark and finish the SyncRun

Failures in 2–6 finish the run as "failed", raise a notification and come
back in the ``SyncResult``; they are never raised to the caller and never
retried in-process.  Cancellation finishes the run and propagates.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.settings import Settings, config
from connectors.oauth import OAuthCoordinator
from connectors.token_manager import CredentialVault
from core.notifications import NotificationCenter
from database.helpers import as_utc, get_last_sync_at, set_last_sync_at, to_uuid, upsert_activities
from database.models import SyncRun
from utils.errors import (
    DecryptionError,
    IntegrationError,
    NotConnectedError,
    OAuthExchangeError,
    ProviderAPIError,
    ReauthRequiredError,
    SyncInProgressError,
)
from utils.schemas import (
    HealthIssue,
    IntegrationHealth,
    NotificationType,
    OAuthTokens,
    SyncResult,
    SyncRunOut,
    SyncStatus,
)

logger = logging.getLogger(__name__)

CONSECUTIVE_FAILURE_THRESHOLD = 3
EXPIRY_WARNING_WINDOW = timedelta(minutes=5)
_FAILURE_LOOKBACK_RUNS = 10


def sync_run_to_out(run: SyncRun) -> SyncRunOut:
    return SyncRunOut(
        id=str(run.run_id),
        status=run.status,
        items_synced=run.items_synced or 0,
        error=run.error_message,
        duration_ms=run.duration_ms,
        started_at=as_utc(run.started_at),
        completed_at=as_utc(run.completed_at),
    )


@dataclass
class _PairLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    holders: int = 0


class SyncOrchestrator:
    def __init__(
        self,
        vault: CredentialVault,
        oauth: OAuthCoordinator,
        notifications: NotificationCenter,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings = config,
    ) -> None:
        self._vault = vault
        self._oauth = oauth
        self._notifications = notifications
        self._session_factory = session_factory
        self._timeout = settings.provider_timeout_seconds
        self._lookback = timedelta(days=settings.sync_lookback_days)
        self._locks: Dict[Tuple[str, str], _PairLock] = {}

    # ── locking ────────────────────────────────────────────────────────

    def is_syncing(self, user_id: str, provider: str) -> bool:
        entry = self._locks.get((str(user_id), provider))
        return bool(entry and entry.lock.locked())

    @asynccontextmanager
    async def pair_lock(self, user_id: str, provider: str) -> AsyncIterator[None]:
        """Serialize work on one (user, provider) pair.

        Sync and disconnect both run under it, so a disconnect waits for an
        in-flight sync and a sync never starts halfway through a disconnect.
        """
        key = (str(user_id), provider)
        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = _PairLock()
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                self._locks.pop(key, None)

    async def sync_provider(self, user_id: str, provider: str) -> SyncResult:
        """Sync one provider for one user. See module docstring for the flow."""
        self._oauth.connector(provider)
        if self.is_syncing(user_id, provider):
            raise SyncInProgressError(
                f"Sync already running for {provider}/{user_id}",
                provider=provider,
            )
        async with self.pair_lock(user_id, provider):
            return await self._run(user_id, provider)

    async def disconnect(self, user_id: str, provider: str) -> bool:
        """Revoke at the provider (best effort), delete the credential, mark
        the connection disconnected and clear its notifications.

        Waits for any running sync on the pair. Returns whether the provider
        acknowledged the revocation.
        """
        self._oauth.connector(provider)
        async with self.pair_lock(user_id, provider):
            try:
                tokens = await self._vault.get_token(user_id, provider)
            except DecryptionError:
                logger.warning("Unreadable %s credential for user %s; skipping revoke", provider, user_id)
                tokens = None
            revoked = False
            if tokens is not None:
                revoked = await self._oauth.revoke_token(provider, tokens.access_token)
            await self._vault.delete_token(user_id, provider)
            await self._notifications.clear_provider_notifications(user_id, provider)
        logger.info("Disconnected %s for user %s (revoked=%s)", provider, user_id, revoked)
        return revoked

    # ── run bookkeeping ────────────────────────────────────────────────

    async def _start_run(self, user_id: str, provider: str) -> str:
        async with self._session_factory() as session:
            run = SyncRun(
                user_id=to_uuid(user_id),
                provider=provider,
                status="running",
                started_at=datetime.now(timezone.utc),
            )
            session.add(run)
            await session.commit()
            return str(run.run_id)

    async def _finish_run(
        self,
        run_id: str,
        *,
        status: str,
        items_synced: int = 0,
        error_message: Optional[str] = None,
        duration_ms: int = 0,
    ) -> None:
        async with self._session_factory() as session:
            run = await session.get(SyncRun, to_uuid(run_id))
            run.status = status
            run.items_synced = items_synced
            run.error_message = error_message
            run.duration_ms = duration_ms
            run.completed_at = datetime.now(timezone.utc)
            await session.commit()

    # ── credential freshness ───────────────────────────────────────────

    async def _fresh_access_token(self, user_id: str, provider: str, tokens: OAuthTokens) -> str:
        now = datetime.now(timezone.utc)
        if tokens.expires_at is None or tokens.expires_at > now:
            return tokens.access_token

        if not tokens.refresh_token or not self._oauth.supports_refresh(provider):
            raise ReauthRequiredError(
                f"{provider} access token expired and cannot be refreshed",
                provider=provider,
            )
        try:
            refreshed = await asyncio.wait_for(
                self._oauth.refresh_access_token(provider, tokens.refresh_token),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ProviderAPIError(
                f"{provider} token refresh timed out after {self._timeout}s",
                provider=provider,
                retryable=True,
            ) from exc
        except OAuthExchangeError as exc:
            if exc.status is not None and 400 <= exc.status < 500:
                raise ReauthRequiredError(
                    f"{provider} rejected the refresh token",
                    provider=provider,
                ) from exc
            raise
        if not await self._vault.update_token(user_id, provider, refreshed):
            raise NotConnectedError(f"{provider} was disconnected during sync", provider=provider)
        return refreshed.access_token

    # ── the run itself ─────────────────────────────────────────────────

    async def _run(self, user_id: str, provider: str) -> SyncResult:
        started = time.monotonic()
        run_id = await self._start_run(user_id, provider)

        def elapsed_ms() -> int:
            return int((time.monotonic() - started) * 1000)

        try:
            tokens = await self._vault.get_token(user_id, provider)
            if tokens is None:
                raise NotConnectedError(f"{provider} is not connected", provider=provider)
            access_token = await self._fresh_access_token(user_id, provider, tokens)

            async with self._session_factory() as session:
                since = await get_last_sync_at(session, user_id, provider)
            watermark = datetime.now(timezone.utc)
            if since is None:
                since = watermark - self._lookback

            connector = self._oauth.connector(provider)
            try:
                fetched = await asyncio.wait_for(
                    connector.fetch_activity(access_token, since),
                    timeout=self._timeout,
                )
            except asyncio.TimeoutError as exc:
                raise ProviderAPIError(
                    f"{provider} fetch timed out after {self._timeout}s",
                    provider=provider,
                    retryable=True,
                ) from exc

            async with self._session_factory() as session:
                items_synced = await upsert_activities(session, user_id, provider, fetched)
                await set_last_sync_at(session, user_id, provider, watermark)
                await session.commit()

        except asyncio.CancelledError:
            await self._finish_run(run_id, status="failed", error_message="cancelled", duration_ms=elapsed_ms())
            logger.warning("Sync cancelled: %s/%s", provider, user_id)
            raise
        except Exception as exc:
            duration_ms = elapsed_ms()
            detail = self._describe(exc)
            status_code, user_message = self._public_error(exc)
            await self._finish_run(run_id, status="failed", error_message=detail, duration_ms=duration_ms)
            await self._notify_failure(user_id, provider, exc, user_message)
            logger.warning("Sync failed: %s/%s: %s", provider, user_id, detail)
            return SyncResult(
                provider=provider,
                success=False,
                error=user_message,
                status_code=status_code,
                duration_ms=duration_ms,
            )

        duration_ms = elapsed_ms()
        await self._finish_run(run_id, status="success", items_synced=items_synced, duration_ms=duration_ms)
        await self._notifications.clear(user_id, provider, NotificationType.SYNC_FAILURES)
        logger.info("Synced %d %s items for user %s in %dms", items_synced, provider, user_id, duration_ms)
        return SyncResult(provider=provider, success=True, items_synced=items_synced, duration_ms=duration_ms)

    @staticmethod
    def _describe(exc: Exception) -> str:
        if isinstance(exc, ReauthRequiredError):
            return f"Reauthorization required: {exc.message}"
        if isinstance(exc, DecryptionError):
            return f"Reauthorization required: {exc.message}"
        return str(exc) or type(exc).__name__

    @staticmethod
    def _public_error(exc: Exception) -> Tuple[int, str]:
        """HTTP status and user-safe message for a failed run."""
        if isinstance(exc, DecryptionError):
            return ReauthRequiredError.status_code, ReauthRequiredError.default_user_message
        if isinstance(exc, IntegrationError):
            return exc.status_code, exc.user_message
        return 500, "Sync failed due to an unexpected error"

    async def _notify_failure(self, user_id: str, provider: str, exc: Exception, error: str) -> None:
        if isinstance(exc, (ReauthRequiredError, DecryptionError)):
            await self._notifications.notify_reauth_required(user_id, provider)
        failures = await self.count_consecutive_failures(user_id, provider)
        await self._notifications.notify_sync_failures(user_id, provider, failures, error)

    # ── status & health ────────────────────────────────────────────────

    async def _recent_runs(self, session: AsyncSession, user_id: str, provider: str, limit: int) -> List[SyncRun]:
        result = await session.execute(
            select(SyncRun)
            .where(SyncRun.user_id == to_uuid(user_id), SyncRun.provider == provider)
            .order_by(SyncRun.started_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def count_consecutive_failures(self, user_id: str, provider: str) -> int:
        async with self._session_factory() as session:
            runs = await self._recent_runs(session, user_id, provider, _FAILURE_LOOKBACK_RUNS)
        count = 0
        for run in runs:
            if run.status == "failed":
                count += 1
            elif run.status == "success":
                break
        return count

    async def get_recent_runs(self, user_id: str, provider: str, limit: int = 10) -> List[SyncRunOut]:
        async with self._session_factory() as session:
            runs = await self._recent_runs(session, user_id, provider, limit)
        return [sync_run_to_out(run) for run in runs]

    async def get_sync_status(self, user_id: str, provider: str) -> SyncStatus:
        async with self._session_factory() as session:
            last_sync = await get_last_sync_at(session, user_id, provider)
            runs = await self._recent_runs(session, user_id, provider, _FAILURE_LOOKBACK_RUNS)

        status = SyncStatus(provider=provider, last_sync=last_sync)
        if self.is_syncing(user_id, provider):
            status.status = "syncing"
        latest = next((r for r in runs if r.status != "running"), None)
        if latest is not None:
            status.items_synced = latest.items_synced or 0
            if status.status != "syncing":
                status.status = "success" if latest.status == "success" else "error"
            if latest.status == "failed":
                status.last_error = latest.error_message
        return status

    async def check_integration_health(self, user_id: str, provider: str) -> IntegrationHealth:
        issues: List[HealthIssue] = []

        failures = await self.count_consecutive_failures(user_id, provider)
        if failures >= CONSECUTIVE_FAILURE_THRESHOLD:
            issues.append(
                HealthIssue(
                    type="consecutive_failures",
                    severity="error",
                    message=f"{failures} consecutive sync failures detected",
                    details={"count": failures},
                )
            )
            await self._notifications.notify_sync_failures(user_id, provider, failures)

        try:
            tokens = await self._vault.get_token(user_id, provider)
        except DecryptionError:
            issues.append(
                HealthIssue(
                    type="reauth_required",
                    severity="warning",
                    message="Stored credentials are unreadable; reauthorization required",
                )
            )
            await self._notifications.notify_reauth_required(user_id, provider)
            tokens = None
        else:
            if tokens is None:
                issues.append(
                    HealthIssue(type="token_missing", severity="error", message="No stored credentials")
                )

        if tokens is not None and tokens.expires_at is not None:
            remaining = tokens.expires_at - datetime.now(timezone.utc)
            refreshable = bool(tokens.refresh_token) and self._oauth.supports_refresh(provider)
            if remaining < EXPIRY_WARNING_WINDOW and not refreshable:
                issues.append(
                    HealthIssue(
                        type="token_expired",
                        severity="error",
                        message="Access token has expired",
                        details={"expires_at": tokens.expires_at.isoformat()},
                    )
                )
                await self._notifications.notify_token_expired(user_id, provider)

        return IntegrationHealth(
            provider=provider,
            healthy=not issues,
            issues=issues,
            last_checked=datetime.now(timezone.utc),
        )

    async def sync_all_providers(self, user_id: str) -> List[SyncResult]:
        """Sync every connected provider for the user concurrently."""
        providers = [
            p for p in await self._vault.list_connected_providers(user_id)
            if self._oauth.registry.get(p) is not None
        ]

        async def one(provider: str) -> SyncResult:
            try:
                return await self.sync_provider(user_id, provider)
            except SyncInProgressError as exc:
                return SyncResult(
                    provider=provider, success=False, error=exc.user_message, status_code=exc.status_code
                )

        return list(await asyncio.gather(*(one(p) for p in providers)))
