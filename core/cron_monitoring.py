"""
CronExecutionMonitor — records scheduled batch runs and derives health stats.

Alert rules over the requested window:
  • failure rate above 50 % once a job has at least 5 executions
  • 3 or more failures in a row, counted from the latest execution
  • average duration above 5 minutes
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.helpers import as_utc, to_uuid
from database.models import CronJobExecution, SyncRun
from utils.errors import ValidationError
from utils.schemas import CronJobAlert, CronJobExecutionOut, CronJobStats, DashboardData

logger = logging.getLogger(__name__)

HIGH_FAILURE_RATE_THRESHOLD = 0.5
MIN_EXECUTIONS_FOR_RATE = 5
CONSECUTIVE_FAILURES_THRESHOLD = 3
LONG_DURATION_THRESHOLD_MS = 5 * 60 * 1000

MAX_TIME_RANGE_HOURS = 168
MAX_RETENTION_DAYS = 365


def _execution_to_out(row: CronJobExecution) -> CronJobExecutionOut:
    return CronJobExecutionOut(
        id=str(row.execution_id),
        job_name=row.job_name,
        started_at=as_utc(row.started_at),
        completed_at=as_utc(row.completed_at),
        status=row.status,
        users_processed=row.users_processed or 0,
        providers_synced=row.providers_synced or 0,
        success_count=row.success_count or 0,
        failure_count=row.failure_count or 0,
        error_message=row.error_message,
        duration_ms=row.duration_ms,
        metadata=row.metadata_ or {},
    )


def _validate_hours(hours: int) -> None:
    if not 1 <= hours <= MAX_TIME_RANGE_HOURS:
        raise ValidationError(f"time_range must be between 1 and {MAX_TIME_RANGE_HOURS} hours")


class CronExecutionMonitor:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    # ── recording ──────────────────────────────────────────────────────

    async def log_job_start(self, job_name: str, metadata: Optional[Dict[str, Any]] = None) -> str:
        async with self._session_factory() as session:
            row = CronJobExecution(
                job_name=job_name,
                started_at=datetime.now(timezone.utc),
                status="running",
                metadata_=metadata or {},
            )
            session.add(row)
            await session.commit()
            logger.info("Cron job started: %s (%s)", job_name, row.execution_id)
            return str(row.execution_id)

    async def log_job_complete(
        self,
        execution_id: str,
        *,
        status: str,
        users_processed: int = 0,
        providers_synced: int = 0,
        success_count: int = 0,
        failure_count: int = 0,
        duration_ms: int = 0,
        error_message: Optional[str] = None,
    ) -> None:
        async with self._session_factory() as session:
            row = await session.get(CronJobExecution, to_uuid(execution_id))
            if row is None:
                logger.error("Cron execution %s not found", execution_id)
                return
            row.status = status
            row.completed_at = datetime.now(timezone.utc)
            row.users_processed = users_processed
            row.providers_synced = providers_synced
            row.success_count = success_count
            row.failure_count = failure_count
            row.duration_ms = duration_ms
            row.error_message = error_message
            await session.commit()
        logger.info(
            "Cron job %s finished: %s (%d ok / %d failed, %dms)",
            execution_id, status, success_count, failure_count, duration_ms,
        )

    async def log_job_failure(self, job_name: str, error: str, duration_ms: int = 0) -> str:
        """Record a run that aborted before it had an execution row."""
        now = datetime.now(timezone.utc)
        async with self._session_factory() as session:
            row = CronJobExecution(
                job_name=job_name,
                started_at=now - timedelta(milliseconds=duration_ms),
                completed_at=now,
                status="failed",
                error_message=error,
                duration_ms=duration_ms,
                metadata_={},
            )
            session.add(row)
            await session.commit()
            logger.error("Cron job %s failed: %s", job_name, error)
            return str(row.execution_id)

    # ── stats ──────────────────────────────────────────────────────────

    async def _executions_since(self, session: AsyncSession, since: datetime, job_name: Optional[str] = None) -> List[CronJobExecution]:
        stmt = select(CronJobExecution).where(CronJobExecution.started_at >= since)
        if job_name is not None:
            stmt = stmt.where(CronJobExecution.job_name == job_name)
        result = await session.execute(stmt.order_by(CronJobExecution.started_at.desc()))
        return list(result.scalars().all())

    @staticmethod
    def _stats_for(job_name: str, executions: List[CronJobExecution]) -> CronJobStats:
        """``executions`` must be newest first."""
        total = len(executions)
        statuses = Counter(e.status for e in executions)
        durations = [e.duration_ms for e in executions if e.duration_ms is not None]

        recent_failures = 0
        for e in executions:
            if e.status == "failed":
                recent_failures += 1
            elif e.status == "success":
                break

        last = executions[0] if executions else None
        return CronJobStats(
            job_name=job_name,
            total_executions=total,
            success_count=statuses["success"],
            failure_count=statuses["failed"],
            success_rate=statuses["success"] / total if total else 0.0,
            average_duration_ms=sum(durations) / len(durations) if durations else 0.0,
            last_execution=as_utc(last.started_at) if last else None,
            last_status=last.status if last and last.status in ("success", "failed") else None,
            recent_failures=recent_failures,
        )

    async def get_job_stats(self, job_name: str, hours: int = 24) -> CronJobStats:
        _validate_hours(hours)
        since = datetime.now(timezone.utc) - timedelta(hours=hours)
        async with self._session_factory() as session:
            executions = await self._executions_since(session, since, job_name)
        return self._stats_for(job_name, executions)

    async def get_all_job_stats(self, hours: int = 24) -> List[CronJobStats]:
        _validate_hours(hours)
        since = datetime.now(timezone.utc) - timedelta(hours=hours)
        async with self._session_factory() as session:
            executions = await self._executions_since(session, since)
        by_job: Dict[str, List[CronJobExecution]] = {}
        for e in executions:
            by_job.setdefault(e.job_name, []).append(e)
        return [self._stats_for(name, rows) for name, rows in sorted(by_job.items())]

    async def get_recent_executions(self, job_name: str, limit: int = 10) -> List[CronJobExecutionOut]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(CronJobExecution)
                .where(CronJobExecution.job_name == job_name)
                .order_by(CronJobExecution.started_at.desc())
                .limit(limit)
            )
            return [_execution_to_out(row) for row in result.scalars().all()]

    # ── alerts & dashboard ─────────────────────────────────────────────

    @staticmethod
    def _alerts_for(stat: CronJobStats) -> List[CronJobAlert]:
        now = datetime.now(timezone.utc)
        alerts: List[CronJobAlert] = []
        failure_rate = 1 - stat.success_rate if stat.total_executions else 0.0
        if stat.total_executions >= MIN_EXECUTIONS_FOR_RATE and failure_rate > HIGH_FAILURE_RATE_THRESHOLD:
            alerts.append(
                CronJobAlert(
                    job_name=stat.job_name,
                    alert_type="high_failure_rate",
                    threshold=HIGH_FAILURE_RATE_THRESHOLD,
                    current_value=failure_rate,
                    message=(
                        f"High failure rate detected: {stat.failure_count / stat.total_executions * 100:.1f}% "
                        f"({stat.failure_count}/{stat.total_executions} executions failed)"
                    ),
                    severity="error",
                    triggered_at=now,
                )
            )
        if stat.recent_failures >= CONSECUTIVE_FAILURES_THRESHOLD:
            alerts.append(
                CronJobAlert(
                    job_name=stat.job_name,
                    alert_type="consecutive_failures",
                    threshold=CONSECUTIVE_FAILURES_THRESHOLD,
                    current_value=stat.recent_failures,
                    message=f"{stat.recent_failures} consecutive failures detected",
                    severity="error",
                    triggered_at=now,
                )
            )
        if stat.average_duration_ms > LONG_DURATION_THRESHOLD_MS:
            alerts.append(
                CronJobAlert(
                    job_name=stat.job_name,
                    alert_type="long_duration",
                    threshold=LONG_DURATION_THRESHOLD_MS,
                    current_value=stat.average_duration_ms,
                    message=f"Average execution time is high: {stat.average_duration_ms / 1000:.1f}s",
                    severity="warning",
                    triggered_at=now,
                )
            )
        return alerts

    async def check_for_alerts(self, hours: int = 24) -> List[CronJobAlert]:
        alerts: List[CronJobAlert] = []
        for stat in await self.get_all_job_stats(hours):
            alerts.extend(self._alerts_for(stat))
        for alert in alerts:
            logger.warning("[%s] %s: %s", alert.severity.upper(), alert.job_name, alert.message)
        return alerts

    async def get_dashboard_data(self, hours: int = 24) -> DashboardData:
        stats = await self.get_all_job_stats(hours)
        alerts: List[CronJobAlert] = []
        for stat in stats:
            alerts.extend(self._alerts_for(stat))
        recent = {stat.job_name: await self.get_recent_executions(stat.job_name, 5) for stat in stats}
        return DashboardData(
            stats=stats,
            alerts=alerts,
            recent_executions=recent,
            time_range_hours=hours,
            since=datetime.now(timezone.utc) - timedelta(hours=hours),
        )

    # ── retention ──────────────────────────────────────────────────────

    async def cleanup_old_logs(self, retention_days: int = 30) -> int:
        """Delete cron executions and sync runs older than the retention window."""
        if not 1 <= retention_days <= MAX_RETENTION_DAYS:
            raise ValidationError(f"retention_days must be between 1 and {MAX_RETENTION_DAYS}")
        cutoff = datetime.now(timezone.utc) - timedelta(days=retention_days)
        async with self._session_factory() as session:
            cron_result = await session.execute(
                delete(CronJobExecution).where(CronJobExecution.started_at < cutoff)
            )
            run_result = await session.execute(delete(SyncRun).where(SyncRun.started_at < cutoff))
            await session.commit()
        deleted = (cron_result.rowcount or 0) + (run_result.rowcount or 0)
        logger.info("Cleaned up %d execution logs older than %d days", deleted, retention_days)
        return deleted
