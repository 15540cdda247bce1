"""
REST API routes — sync, status, health, analytics and notifications.

Route prefix: /api/v1/integrations
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from fastapi.responses import JSONResponse

from api.dependencies import enabled_provider, get_services
from auth.dependencies import get_current_user_id
from core.rate_limiter import RateLimitPolicy, rate_limit_headers
from core.services import IntegrationServices
from utils.schemas import ActivityOut, IntegrationHealth, NotificationOut, SyncTaskInfo

logger = logging.getLogger(__name__)

router = APIRouter(tags=["sync"])


# ── Notifications ──────────────────────────────────────────────────────


@router.get("/notifications")
async def list_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    user_id: str = Depends(get_current_user_id),
    services: IntegrationServices = Depends(get_services),
) -> List[NotificationOut]:
    return await services.notifications.get_notifications(user_id, unread_only=unread_only, limit=limit)


@router.get("/notifications/count")
async def unread_count(
    user_id: str = Depends(get_current_user_id),
    services: IntegrationServices = Depends(get_services),
) -> Dict[str, int]:
    return {"unread": await services.notifications.get_unread_count(user_id)}


@router.post("/notifications/read-all")
async def mark_all_read(
    user_id: str = Depends(get_current_user_id),
    services: IntegrationServices = Depends(get_services),
) -> Dict[str, int]:
    return {"updated": await services.notifications.mark_all_as_read(user_id)}


@router.post("/notifications/{notification_id}/read")
async def mark_read(
    notification_id: uuid.UUID,
    user_id: str = Depends(get_current_user_id),
    services: IntegrationServices = Depends(get_services),
) -> Dict[str, Any]:
    if not await services.notifications.mark_as_read(user_id, str(notification_id)):
        raise HTTPException(404, "Notification not found")
    return {"id": str(notification_id), "read": True}


@router.delete("/notifications/{notification_id}")
async def delete_notification(
    notification_id: uuid.UUID,
    user_id: str = Depends(get_current_user_id),
    services: IntegrationServices = Depends(get_services),
) -> Dict[str, Any]:
    if not await services.notifications.delete(user_id, str(notification_id)):
        raise HTTPException(404, "Notification not found")
    return {"id": str(notification_id), "deleted": True}


# ── Background tasks ───────────────────────────────────────────────────


@router.get("/sync/tasks/{task_id}")
async def get_sync_task(
    task_id: str,
    user_id: str = Depends(get_current_user_id),
    services: IntegrationServices = Depends(get_services),
) -> SyncTaskInfo:
    info = services.tasks.get(task_id)
    if info is None or info.user_id != user_id:
        raise HTTPException(404, "Sync task not found")
    return info


# ── Per-provider sync ──────────────────────────────────────────────────


@router.post("/{provider}/sync")
async def trigger_sync(
    provider: str = Depends(enabled_provider),
    background: bool = Query(False),
    user_id: str = Depends(get_current_user_id),
    services: IntegrationServices = Depends(get_services),
) -> JSONResponse:
    """
    Run a sync now (rate limited).  With ``background=true`` the sync is
    handed to the task supervisor and a task id comes back immediately.

    A failed run answers with the status of its cause (404 not connected,
    401 reauthorization required, 503 provider unavailable) and a
    user-safe message.
    """
    limit = services.rate_limiter.enforce(RateLimitPolicy.SYNC, user_id)
    headers = rate_limit_headers(limit)
    services.invalidate_caches(user_id, provider)

    if background:
        task_id = services.tasks.submit(user_id, provider)
        return JSONResponse({"task_id": task_id, "provider": provider}, status_code=202, headers=headers)

    result = await services.orchestrator.sync_provider(user_id, provider)
    services.invalidate_caches(user_id, provider)
    body: Dict[str, Any] = {
        "success": result.success,
        "provider": result.provider,
        "duration_ms": result.duration_ms,
    }
    if result.success:
        body["items_synced"] = result.items_synced
        return JSONResponse(body, headers=headers)
    body["error"] = result.error
    return JSONResponse(body, status_code=result.status_code or 500, headers=headers)


@router.get("/{provider}/status")
async def sync_status(
    response: Response,
    provider: str = Depends(enabled_provider),
    user_id: str = Depends(get_current_user_id),
    services: IntegrationServices = Depends(get_services),
) -> Dict[str, Any]:
    """Current sync status plus the last 10 runs, cached briefly per user."""
    key = (user_id, provider)
    body = services.status_cache.get(key)
    if body is not None:
        response.headers["X-Cache"] = "HIT"
    else:
        response.headers["X-Cache"] = "MISS"
        status = await services.orchestrator.get_sync_status(user_id, provider)
        runs = await services.orchestrator.get_recent_runs(user_id, provider, limit=10)
        body = {
            "status": status.model_dump(mode="json"),
            "recent_runs": [run.model_dump(mode="json") for run in runs],
        }
        services.status_cache.set(key, body)
    response.headers["Cache-Control"] = f"private, max-age={services.settings.status_cache_ttl_seconds}"
    return body


@router.get("/{provider}/health")
async def integration_health(
    provider: str = Depends(enabled_provider),
    user_id: str = Depends(get_current_user_id),
    services: IntegrationServices = Depends(get_services),
) -> IntegrationHealth:
    return await services.orchestrator.check_integration_health(user_id, provider)


# ── Analytics ──────────────────────────────────────────────────────────


def _cached_analytics_headers(response: Response, services: IntegrationServices, hit: bool) -> None:
    response.headers["X-Cache"] = "HIT" if hit else "MISS"
    response.headers["Cache-Control"] = f"private, max-age={services.settings.analytics_cache_ttl_seconds}"


@router.get("/analytics")
async def activity_distribution(
    response: Response,
    period: str = Query("30d"),
    user_id: str = Depends(get_current_user_id),
    services: IntegrationServices = Depends(get_services),
) -> Dict[str, Any]:
    """Activity counts per provider over 7d, 30d or all time."""
    key = (user_id, "analytics", period)
    body = services.analytics_cache.get(key)
    if body is None:
        distribution = await services.analytics.get_distribution_by_provider(user_id, period)
        body = distribution.model_dump(mode="json")
        services.analytics_cache.set(key, body)
        _cached_analytics_headers(response, services, hit=False)
    else:
        _cached_analytics_headers(response, services, hit=True)
    return body


@router.get("/{provider}/analytics")
async def provider_analytics(
    response: Response,
    provider: str = Depends(enabled_provider),
    user_id: str = Depends(get_current_user_id),
    services: IntegrationServices = Depends(get_services),
) -> Dict[str, Any]:
    key = (user_id, provider, "analytics")
    body = services.analytics_cache.get(key)
    if body is None:
        analytics = await services.analytics.get_provider_analytics(user_id, provider)
        stats = await services.analytics.get_sync_statistics(user_id, provider)
        body = {
            "analytics": analytics.model_dump(mode="json"),
            "sync_statistics": stats.model_dump(mode="json"),
        }
        services.analytics_cache.set(key, body)
        _cached_analytics_headers(response, services, hit=False)
    else:
        _cached_analytics_headers(response, services, hit=True)
    return body


@router.get("/{provider}/activities")
async def recent_activities(
    provider: str = Depends(enabled_provider),
    limit: int = Query(50, ge=1, le=200),
    user_id: str = Depends(get_current_user_id),
    services: IntegrationServices = Depends(get_services),
) -> List[ActivityOut]:
    return await services.analytics.get_recent_activities(user_id, provider, limit=limit)
