"""
Scheduler-only routes, authenticated with ``Authorization: Bearer <CRON_SECRET>``.

Route prefix: /api/v1/cron
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from api.dependencies import get_services
from auth.dependencies import require_cron_secret
from core.services import IntegrationServices
from utils.schemas import BatchSyncSummary, CleanupRequest, DashboardData

logger = logging.getLogger(__name__)

router = APIRouter(tags=["cron"], dependencies=[Depends(require_cron_secret)])


@router.post("/sync-integrations")
async def sync_integrations(
    interval: Optional[str] = Query(None),
    services: IntegrationServices = Depends(get_services),
) -> BatchSyncSummary:
    """Sync every connected (user, provider) pair covered by ``interval``."""
    logger.info("Scheduled sync triggered (interval=%s)", interval or "all")
    return await services.batch.run_scheduled_sync(interval)


@router.get("/monitoring")
async def monitoring_dashboard(
    time_range: int = Query(24),
    services: IntegrationServices = Depends(get_services),
) -> DashboardData:
    return await services.monitor.get_dashboard_data(time_range)


@router.post("/monitoring/cleanup")
async def cleanup_logs(
    request: CleanupRequest,
    services: IntegrationServices = Depends(get_services),
) -> dict:
    deleted = await services.monitor.cleanup_old_logs(request.retention_days)
    return {"deleted": deleted, "retention_days": request.retention_days}
