"""
Tests for interval routing and the scheduled batch runner.
"""

import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from config.settings import Settings
from core.batch import SYNC_JOB_NAME, resolve_providers
from utils.errors import ValidationError
from utils.schemas import ALL_PROVIDERS, OAuthTokens


def _tokens(access):
    return OAuthTokens(access_token=access, expires_at=datetime.now(timezone.utc) + timedelta(hours=1))


class TestResolveProviders:
    def test_short_interval(self):
        assert resolve_providers("15min", Settings()) == ["github"]

    def test_long_interval(self):
        assert resolve_providers("30min", Settings()) == ["notion", "slack", "calendar"]

    @pytest.mark.parametrize("interval", [None, ""])
    def test_no_interval_means_all(self, interval):
        assert resolve_providers(interval, Settings()) == list(ALL_PROVIDERS)

    def test_unknown_interval(self):
        with pytest.raises(ValidationError):
            resolve_providers("5min", Settings())


class TestBatchSyncRunner:
    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_others(self, services, make_item):
        good, bad = str(uuid.uuid4()), str(uuid.uuid4())
        await services.vault.store_token(good, "github", _tokens("good-token"))
        await services.vault.store_token(bad, "github", _tokens("bad-token"))
        await services.vault.store_token(good, "notion", _tokens("notion-token"))

        async def fetch(access_token, since):
            if access_token == "bad-token":
                raise RuntimeError("boom")
            return [make_item("x")]

        with patch.object(services.oauth.connector("github"), "fetch_activity", side_effect=fetch):
            summary = await services.batch.run_scheduled_sync("15min")

        assert summary.providers == ["github"]
        assert summary.users_processed == 2
        assert summary.providers_synced == 2
        assert summary.success_count == 1
        assert summary.failure_count == 1

        executions = await services.monitor.get_recent_executions(SYNC_JOB_NAME)
        assert len(executions) == 1
        assert executions[0].status == "success"
        assert executions[0].success_count == 1
        assert executions[0].metadata["interval"] == "15min"

    @pytest.mark.asyncio
    async def test_empty_run_is_recorded(self, services):
        summary = await services.batch.run_scheduled_sync("30min")
        assert summary.providers_synced == 0
        assert summary.execution_id is not None
        stats = await services.monitor.get_job_stats(SYNC_JOB_NAME)
        assert stats.total_executions == 1
        assert stats.last_status == "success"

    @pytest.mark.asyncio
    async def test_unknown_interval_rejected_before_logging(self, services):
        with pytest.raises(ValidationError):
            await services.batch.run_scheduled_sync("hourly")
        assert await services.monitor.get_recent_executions(SYNC_JOB_NAME) == []

    @pytest.mark.asyncio
    async def test_enumeration_failure_marks_execution_failed(self, services):
        failing = AsyncMock(side_effect=RuntimeError("database unavailable"))
        with patch.object(services.vault, "list_users_with_connections", failing):
            with pytest.raises(RuntimeError):
                await services.batch.run_scheduled_sync()

        executions = await services.monitor.get_recent_executions(SYNC_JOB_NAME)
        assert executions[0].status == "failed"
        assert executions[0].error_message == "database unavailable"
        assert executions[0].completed_at is not None

    @pytest.mark.asyncio
    async def test_cancelled_run_is_closed_out(self, services):
        user = str(uuid.uuid4())
        await services.vault.store_token(user, "github", _tokens("token"))
        started = asyncio.Event()

        async def hang(access_token, since):
            started.set()
            await asyncio.sleep(10)

        with patch.object(services.oauth.connector("github"), "fetch_activity", side_effect=hang):
            task = asyncio.create_task(services.batch.run_scheduled_sync("15min"))
            await started.wait()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        executions = await services.monitor.get_recent_executions(SYNC_JOB_NAME)
        assert executions[0].status == "failed"
        assert executions[0].error_message == "cancelled"
        assert executions[0].completed_at is not None
        runs = await services.orchestrator.get_recent_runs(user, "github")
        assert runs[0].status == "failed"
