"""
Tests for cron execution logging, stats and alerts.
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from database.models import CronJobExecution, SyncRun
from utils.errors import ValidationError


async def _add_execution(session_factory, job_name, status, *, hours_ago=1.0, duration_ms=1000):
    started = datetime.now(timezone.utc) - timedelta(hours=hours_ago)
    async with session_factory() as session:
        session.add(
            CronJobExecution(
                job_name=job_name,
                started_at=started,
                completed_at=started + timedelta(milliseconds=duration_ms),
                status=status,
                duration_ms=duration_ms,
                metadata_={},
            )
        )
        await session.commit()


class TestExecutionLogging:
    @pytest.mark.asyncio
    async def test_start_then_complete(self, services):
        monitor = services.monitor
        execution_id = await monitor.log_job_start("sync-integrations", {"interval": "15min"})
        running = await monitor.get_recent_executions("sync-integrations")
        assert running[0].status == "running"
        assert running[0].completed_at is None

        await monitor.log_job_complete(
            execution_id, status="success", users_processed=2, providers_synced=3,
            success_count=3, duration_ms=1500,
        )
        done = (await monitor.get_recent_executions("sync-integrations"))[0]
        assert done.id == execution_id
        assert done.status == "success"
        assert done.providers_synced == 3
        assert done.duration_ms == 1500
        assert done.metadata == {"interval": "15min"}

    @pytest.mark.asyncio
    async def test_log_failure(self, services):
        await services.monitor.log_job_failure("sync-integrations", "boom", 250)
        row = (await services.monitor.get_recent_executions("sync-integrations"))[0]
        assert row.status == "failed"
        assert row.error_message == "boom"
        assert row.duration_ms == 250


class TestStats:
    @pytest.mark.asyncio
    async def test_counts_and_consecutive_failures(self, services, session_factory):
        for hours_ago, status in [(5, "success"), (4, "failed"), (3, "success"), (2, "failed"), (1, "failed")]:
            await _add_execution(session_factory, "job", status, hours_ago=hours_ago, duration_ms=2000)

        stats = await services.monitor.get_job_stats("job", hours=24)
        assert stats.total_executions == 5
        assert stats.success_count == 2
        assert stats.failure_count == 3
        assert stats.success_rate == pytest.approx(0.4)
        assert stats.average_duration_ms == 2000
        assert stats.last_status == "failed"
        assert stats.recent_failures == 2

    @pytest.mark.asyncio
    async def test_window_excludes_old_runs(self, services, session_factory):
        await _add_execution(session_factory, "job", "failed", hours_ago=30)
        await _add_execution(session_factory, "job", "success", hours_ago=1)
        stats = await services.monitor.get_job_stats("job", hours=24)
        assert stats.total_executions == 1

    @pytest.mark.asyncio
    async def test_empty_job(self, services):
        stats = await services.monitor.get_job_stats("nothing")
        assert stats.total_executions == 0
        assert stats.success_rate == 0.0
        assert stats.last_execution is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("hours", [0, 169])
    async def test_time_range_bounds(self, services, hours):
        with pytest.raises(ValidationError):
            await services.monitor.get_all_job_stats(hours)


class TestAlerts:
    @pytest.mark.asyncio
    async def test_high_failure_rate_and_consecutive(self, services, session_factory):
        for i in range(5):
            await _add_execution(session_factory, "job", "failed", hours_ago=5 - i)
        alerts = await services.monitor.check_for_alerts()
        types = {a.alert_type for a in alerts}
        assert types == {"high_failure_rate", "consecutive_failures"}
        rate = next(a for a in alerts if a.alert_type == "high_failure_rate")
        assert rate.severity == "error"
        assert "100.0%" in rate.message

    @pytest.mark.asyncio
    async def test_failure_rate_needs_minimum_executions(self, services, session_factory):
        await _add_execution(session_factory, "job", "failed", hours_ago=3)
        await _add_execution(session_factory, "job", "success", hours_ago=2)
        await _add_execution(session_factory, "job", "failed", hours_ago=1)
        assert await services.monitor.check_for_alerts() == []

    @pytest.mark.asyncio
    async def test_long_duration_warning(self, services, session_factory):
        await _add_execution(session_factory, "job", "success", duration_ms=6 * 60 * 1000)
        alerts = await services.monitor.check_for_alerts()
        assert [a.alert_type for a in alerts] == ["long_duration"]
        assert alerts[0].severity == "warning"

    @pytest.mark.asyncio
    async def test_dashboard(self, services, session_factory):
        for i in range(7):
            await _add_execution(session_factory, "job", "success", hours_ago=7 - i)
        data = await services.monitor.get_dashboard_data(24)
        assert [s.job_name for s in data.stats] == ["job"]
        assert len(data.recent_executions["job"]) == 5
        assert data.alerts == []
        assert data.time_range_hours == 24


class TestCleanup:
    @pytest.mark.asyncio
    async def test_deletes_old_rows_only(self, services, session_factory, user_id):
        await _add_execution(session_factory, "job", "success", hours_ago=24 * 40)
        await _add_execution(session_factory, "job", "success", hours_ago=1)
        old = datetime.now(timezone.utc) - timedelta(days=40)
        async with session_factory() as session:
            session.add(SyncRun(user_id=uuid.UUID(user_id), provider="github", status="success", started_at=old))
            await session.commit()

        assert await services.monitor.cleanup_old_logs(30) == 2
        assert len(await services.monitor.get_recent_executions("job")) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("days", [0, 366])
    async def test_retention_bounds(self, services, days):
        with pytest.raises(ValidationError):
            await services.monitor.cleanup_old_logs(days)
