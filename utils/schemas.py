"""
Pydantic schemas for the integration service.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# ═══════════════════════════════════════════════════════════════════════════════
# Providers & credentials
# ═══════════════════════════════════════════════════════════════════════════════


class IntegrationProvider(str, Enum):
    GITHUB = "github"
    NOTION = "notion"
    SLACK = "slack"
    CALENDAR = "calendar"


ALL_PROVIDERS: List[str] = [p.value for p in IntegrationProvider]


class OAuthTokens(BaseModel):
    """Decrypted credential bundle. Never persisted in this form."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    scope: str = ""
    token_type: str = "Bearer"


# ═══════════════════════════════════════════════════════════════════════════════
# Sync
# ═══════════════════════════════════════════════════════════════════════════════


class ActivityItem(BaseModel):
    """One provider item normalised for the activity store."""

    external_id: str
    type: str
    title: str
    description: Optional[str] = None
    external_url: Optional[str] = None
    occurred_at: datetime
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SyncResult(BaseModel):
    provider: str
    success: bool
    items_synced: int = 0
    error: Optional[str] = None
    status_code: Optional[int] = None
    duration_ms: int = 0


class SyncRunOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    status: str
    items_synced: int = 0
    error: Optional[str] = None
    duration_ms: Optional[int] = None
    started_at: datetime
    completed_at: Optional[datetime] = None


class SyncStatus(BaseModel):
    provider: str
    status: str = "idle"  # "idle" | "syncing" | "success" | "error"
    last_sync: Optional[datetime] = None
    last_error: Optional[str] = None
    items_synced: int = 0


class HealthIssue(BaseModel):
    type: str  # "consecutive_failures" | "token_expired" | "reauth_required" | "token_missing"
    severity: str  # "warning" | "error"
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class IntegrationHealth(BaseModel):
    provider: str
    healthy: bool
    issues: List[HealthIssue] = Field(default_factory=list)
    last_checked: datetime


class SyncTaskInfo(BaseModel):
    task_id: str
    user_id: str
    provider: str
    state: str  # "running" | "succeeded" | "failed"
    submitted_at: datetime
    finished_at: Optional[datetime] = None
    result: Optional[SyncResult] = None
    error: Optional[str] = None


# ═══════════════════════════════════════════════════════════════════════════════
# Analytics
# ═══════════════════════════════════════════════════════════════════════════════


class AnalyticsPeriod(str, Enum):
    LAST_7_DAYS = "7d"
    LAST_30_DAYS = "30d"
    ALL = "all"


class ActivityOut(BaseModel):
    id: str
    source: str
    type: str
    title: str
    description: Optional[str] = None
    external_id: str
    external_url: Optional[str] = None
    occurred_at: datetime
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ProviderAnalytics(BaseModel):
    provider: str
    total_activities: int = 0
    last_7_days: int = 0
    last_30_days: int = 0
    all_time: int = 0
    last_sync: Optional[datetime] = None
    distribution: Dict[str, int] = Field(default_factory=dict)


class ProviderDistribution(BaseModel):
    """Activity counts per provider over one period."""

    period: AnalyticsPeriod
    total_activities: int = 0
    by_provider: Dict[str, int] = Field(default_factory=dict)


class SyncStatistics(BaseModel):
    provider: str
    total_syncs: int = 0
    successful_syncs: int = 0
    failed_syncs: int = 0
    average_duration_ms: float = 0.0
    recent_syncs: List[SyncRunOut] = Field(default_factory=list)


# ═══════════════════════════════════════════════════════════════════════════════
# Notifications
# ═══════════════════════════════════════════════════════════════════════════════


class NotificationType(str, Enum):
    REAUTH_REQUIRED = "reauth_required"
    SYNC_FAILURES = "sync_failures"
    TOKEN_EXPIRED = "token_expired"
    SYNC_SUCCESS = "sync_success"


class NotificationSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"


class NotificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    provider: str
    type: str
    severity: str
    title: str
    message: str
    action_url: Optional[str] = None
    action_label: Optional[str] = None
    read: bool = False
    created_at: datetime
    metadata: Dict[str, Any] = Field(default_factory=dict)


# ═══════════════════════════════════════════════════════════════════════════════
# Cron monitoring
# ═══════════════════════════════════════════════════════════════════════════════


class CronJobExecutionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    job_name: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    status: str
    users_processed: int = 0
    providers_synced: int = 0
    success_count: int = 0
    failure_count: int = 0
    error_message: Optional[str] = None
    duration_ms: Optional[int] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class CronJobStats(BaseModel):
    job_name: str
    total_executions: int = 0
    success_count: int = 0
    failure_count: int = 0
    success_rate: float = 0.0
    average_duration_ms: float = 0.0
    last_execution: Optional[datetime] = None
    last_status: Optional[str] = None
    recent_failures: int = 0


class CronJobAlert(BaseModel):
    job_name: str
    alert_type: str  # "high_failure_rate" | "consecutive_failures" | "long_duration"
    threshold: float
    current_value: float
    message: str
    severity: str
    triggered_at: datetime


class DashboardData(BaseModel):
    stats: List[CronJobStats] = Field(default_factory=list)
    alerts: List[CronJobAlert] = Field(default_factory=list)
    recent_executions: Dict[str, List[CronJobExecutionOut]] = Field(default_factory=dict)
    time_range_hours: int
    since: datetime


class BatchSyncSummary(BaseModel):
    message: str
    execution_id: Optional[str] = None
    providers: List[str] = Field(default_factory=list)
    users_processed: int = 0
    providers_synced: int = 0
    success_count: int = 0
    failure_count: int = 0
    duration_ms: int = 0


class CleanupRequest(BaseModel):
    retention_days: int = 30
