"""
ActivityAnalytics — per-provider counts over the mirrored activity store and
per-provider sync statistics.

Periods are measured against ``Activity.occurred_at``: "last 7 days" means
items whose provider timestamp falls in the last 7 days, however recently
they were synced.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.sync_service import sync_run_to_out
from database.helpers import as_utc, get_last_sync_at, list_activities, to_uuid
from database.models import Activity, SyncRun
from utils.errors import ValidationError
from utils.schemas import (
    ActivityOut,
    AnalyticsPeriod,
    ProviderAnalytics,
    ProviderDistribution,
    SyncStatistics,
)

logger = logging.getLogger(__name__)

SYNC_STATS_WINDOW = 100

_PERIOD_DAYS = {AnalyticsPeriod.LAST_7_DAYS: 7, AnalyticsPeriod.LAST_30_DAYS: 30, AnalyticsPeriod.ALL: None}


def parse_period(value: str) -> AnalyticsPeriod:
    try:
        return AnalyticsPeriod(value)
    except ValueError:
        allowed = ", ".join(p.value for p in AnalyticsPeriod)
        raise ValidationError(f"Invalid period '{value}'; expected one of {allowed}") from None


def period_start(period: AnalyticsPeriod, now: Optional[datetime] = None) -> Optional[datetime]:
    days = _PERIOD_DAYS[period]
    if days is None:
        return None
    return (now or datetime.now(timezone.utc)) - timedelta(days=days)


class ActivityAnalytics:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], providers: Iterable[str]) -> None:
        self._session_factory = session_factory
        self._providers = list(providers)

    async def count_activities(self, user_id: str, provider: str, since: Optional[datetime] = None) -> int:
        stmt = select(func.count()).select_from(Activity).where(
            Activity.user_id == to_uuid(user_id),
            Activity.source == provider,
        )
        if since is not None:
            stmt = stmt.where(Activity.occurred_at >= since)
        async with self._session_factory() as session:
            return (await session.execute(stmt)).scalar_one()

    async def get_time_period_counts(self, user_id: str, provider: str) -> Dict[str, int]:
        now = datetime.now(timezone.utc)
        return {
            "last_7_days": await self.count_activities(user_id, provider, now - timedelta(days=7)),
            "last_30_days": await self.count_activities(user_id, provider, now - timedelta(days=30)),
            "all_time": await self.count_activities(user_id, provider),
        }

    async def get_activity_distribution(
        self, user_id: str, provider: str, since: Optional[datetime] = None
    ) -> Dict[str, int]:
        """Item counts keyed by activity type."""
        stmt = (
            select(Activity.type, func.count())
            .where(Activity.user_id == to_uuid(user_id), Activity.source == provider)
            .group_by(Activity.type)
        )
        if since is not None:
            stmt = stmt.where(Activity.occurred_at >= since)
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).all()
        return {type_ or "other": count for type_, count in rows}

    async def get_provider_analytics(self, user_id: str, provider: str) -> ProviderAnalytics:
        counts = await self.get_time_period_counts(user_id, provider)
        distribution = await self.get_activity_distribution(user_id, provider)
        async with self._session_factory() as session:
            last_sync = await get_last_sync_at(session, user_id, provider)
        return ProviderAnalytics(
            provider=provider,
            total_activities=counts["all_time"],
            last_sync=last_sync,
            distribution=distribution,
            **counts,
        )

    async def get_all_providers_analytics(self, user_id: str) -> List[ProviderAnalytics]:
        return [await self.get_provider_analytics(user_id, p) for p in self._providers]

    async def get_distribution_by_provider(self, user_id: str, period: str) -> ProviderDistribution:
        """Activity counts for every enabled provider over ``period`` (7d, 30d or all)."""
        parsed = parse_period(period)
        since = period_start(parsed)
        by_provider = {p: await self.count_activities(user_id, p, since) for p in self._providers}
        logger.debug("Activity distribution for %s over %s: %s", user_id, parsed.value, by_provider)
        return ProviderDistribution(
            period=parsed,
            total_activities=sum(by_provider.values()),
            by_provider=by_provider,
        )

    async def get_sync_statistics(self, user_id: str, provider: str, limit: int = 10) -> SyncStatistics:
        """Totals over the last 100 runs, plus the newest ``limit`` of them."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(SyncRun)
                .where(SyncRun.user_id == to_uuid(user_id), SyncRun.provider == provider)
                .order_by(SyncRun.started_at.desc())
                .limit(SYNC_STATS_WINDOW)
            )
            runs = list(result.scalars().all())

        durations = [r.duration_ms for r in runs if r.duration_ms]
        return SyncStatistics(
            provider=provider,
            total_syncs=len(runs),
            successful_syncs=sum(1 for r in runs if r.status == "success"),
            failed_syncs=sum(1 for r in runs if r.status == "failed"),
            average_duration_ms=sum(durations) / len(durations) if durations else 0.0,
            recent_syncs=[sync_run_to_out(r) for r in runs[:limit]],
        )

    async def get_recent_activities(
        self, user_id: str, provider: Optional[str] = None, limit: int = 50
    ) -> List[ActivityOut]:
        async with self._session_factory() as session:
            rows = await list_activities(session, user_id, provider, limit=limit)
        return [
            ActivityOut(
                id=str(row.activity_id),
                source=row.source,
                type=row.type,
                title=row.title,
                description=row.description,
                external_id=row.external_id,
                external_url=row.external_url,
                occurred_at=as_utc(row.occurred_at),
                metadata=row.metadata_ or {},
            )
            for row in rows
        ]
