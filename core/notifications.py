"""
NotificationCenter — user-facing integration alerts.

At most one unread notification exists per (user, provider, type); a new
occurrence rewrites that row instead of stacking duplicates.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.helpers import to_uuid
from database.models import Notification
from utils.schemas import NotificationOut, NotificationSeverity, NotificationType

logger = logging.getLogger(__name__)

INTEGRATIONS_URL = "/dashboard/integrations"

PROVIDER_DISPLAY_NAMES: Dict[str, str] = {
    "github": "GitHub",
    "notion": "Notion",
    "slack": "Slack",
    "calendar": "Google Calendar",
}


def provider_display_name(provider: str) -> str:
    return PROVIDER_DISPLAY_NAMES.get(provider, provider.capitalize())


def _to_out(row: Notification) -> NotificationOut:
    return NotificationOut(
        id=str(row.notification_id),
        user_id=str(row.user_id),
        provider=row.provider,
        type=row.type,
        severity=row.severity,
        title=row.title,
        message=row.message,
        action_url=row.action_url,
        action_label=row.action_label,
        read=row.read,
        created_at=row.created_at,
        metadata=row.metadata_ or {},
    )


class NotificationCenter:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def upsert(
        self,
        user_id: str,
        provider: str,
        type: NotificationType,
        severity: NotificationSeverity,
        title: str,
        message: str,
        *,
        action_url: Optional[str] = None,
        action_label: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> NotificationOut:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Notification).where(
                    Notification.user_id == to_uuid(user_id),
                    Notification.provider == provider,
                    Notification.type == type.value,
                    Notification.read.is_(False),
                )
            )
            row = result.scalars().first()
            if row is None:
                row = Notification(
                    user_id=to_uuid(user_id),
                    provider=provider,
                    type=type.value,
                    created_at=datetime.now(timezone.utc),
                )
                session.add(row)
                logger.info("Created notification: %s", title)
            row.severity = severity.value
            row.title = title
            row.message = message
            row.action_url = action_url
            row.action_label = action_label
            row.metadata_ = metadata or {}
            row.updated_at = datetime.now(timezone.utc)
            await session.commit()
            return _to_out(row)

    # ── typed helpers ──────────────────────────────────────────────────

    async def notify_reauth_required(self, user_id: str, provider: str) -> NotificationOut:
        name = provider_display_name(provider)
        return await self.upsert(
            user_id,
            provider,
            NotificationType.REAUTH_REQUIRED,
            NotificationSeverity.WARNING,
            f"{name} Reconnection Required",
            f"Your {name} connection needs to be reauthorized. Click to reconnect.",
            action_url=INTEGRATIONS_URL,
            action_label="Reconnect",
        )

    async def notify_sync_failures(
        self,
        user_id: str,
        provider: str,
        failure_count: int,
        last_error: Optional[str] = None,
    ) -> NotificationOut:
        name = provider_display_name(provider)
        return await self.upsert(
            user_id,
            provider,
            NotificationType.SYNC_FAILURES,
            NotificationSeverity.ERROR,
            f"{name} Sync Issues",
            f"{name} has failed to sync {failure_count} times in a row. Please check your connection.",
            action_url=INTEGRATIONS_URL,
            action_label="View Details",
            metadata={"failure_count": failure_count, "last_error": last_error},
        )

    async def notify_token_expired(self, user_id: str, provider: str) -> NotificationOut:
        name = provider_display_name(provider)
        return await self.upsert(
            user_id,
            provider,
            NotificationType.TOKEN_EXPIRED,
            NotificationSeverity.WARNING,
            f"{name} Token Expired",
            f"Your {name} access token has expired. Please reconnect to continue syncing.",
            action_url=INTEGRATIONS_URL,
            action_label="Reconnect",
        )

    # ── clearing ───────────────────────────────────────────────────────

    async def clear(self, user_id: str, provider: str, type: NotificationType) -> int:
        """Mark unread notifications of one type as read; returns rows touched."""
        async with self._session_factory() as session:
            result = await session.execute(
                update(Notification)
                .where(
                    Notification.user_id == to_uuid(user_id),
                    Notification.provider == provider,
                    Notification.type == type.value,
                    Notification.read.is_(False),
                )
                .values(read=True, updated_at=datetime.now(timezone.utc))
            )
            await session.commit()
            return result.rowcount or 0

    async def clear_provider_notifications(self, user_id: str, provider: str) -> int:
        """Mark every unread notification for the provider as read (after reconnect)."""
        async with self._session_factory() as session:
            result = await session.execute(
                update(Notification)
                .where(
                    Notification.user_id == to_uuid(user_id),
                    Notification.provider == provider,
                    Notification.read.is_(False),
                )
                .values(read=True, updated_at=datetime.now(timezone.utc))
            )
            await session.commit()
            return result.rowcount or 0

    # ── reads & user actions ───────────────────────────────────────────

    async def get_notifications(
        self,
        user_id: str,
        *,
        unread_only: bool = False,
        limit: int = 50,
    ) -> List[NotificationOut]:
        async with self._session_factory() as session:
            stmt = select(Notification).where(Notification.user_id == to_uuid(user_id))
            if unread_only:
                stmt = stmt.where(Notification.read.is_(False))
            result = await session.execute(stmt.order_by(Notification.created_at.desc()).limit(limit))
            return [_to_out(row) for row in result.scalars().all()]

    async def get_unread_count(self, user_id: str) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count())
                .select_from(Notification)
                .where(Notification.user_id == to_uuid(user_id), Notification.read.is_(False))
            )
            return int(result.scalar_one())

    async def mark_as_read(self, user_id: str, notification_id: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                update(Notification)
                .where(
                    Notification.notification_id == to_uuid(notification_id),
                    Notification.user_id == to_uuid(user_id),
                )
                .values(read=True, updated_at=datetime.now(timezone.utc))
            )
            await session.commit()
            return bool(result.rowcount)

    async def mark_all_as_read(self, user_id: str) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                update(Notification)
                .where(Notification.user_id == to_uuid(user_id), Notification.read.is_(False))
                .values(read=True, updated_at=datetime.now(timezone.utc))
            )
            await session.commit()
            return result.rowcount or 0

    async def delete(self, user_id: str, notification_id: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(Notification).where(
                    Notification.notification_id == to_uuid(notification_id),
                    Notification.user_id == to_uuid(user_id),
                )
            )
            await session.commit()
            return bool(result.rowcount)
