"""
Database helper functions — ensure parent records exist and persist data.

Written against portable SQLAlchemy constructs so they behave the same on
PostgreSQL and SQLite.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import Activity, ProviderConnection, User
from utils.schemas import ActivityItem

logger = logging.getLogger(__name__)


def to_uuid(value: str | uuid.UUID) -> uuid.UUID:
    return uuid.UUID(value) if isinstance(value, str) else value


async def ensure_user_exists(session: AsyncSession, user_id: str) -> None:
    """Create a ``User`` row if one does not already exist (idempotent)."""
    uid = to_uuid(user_id)
    if await session.get(User, uid) is None:
        session.add(
            User(
                user_id=uid,
                email=f"{uid}@integrations.local",
                display_name=f"User {str(uid)[:8]}",
            )
        )
        await session.flush()


async def get_connection(session: AsyncSession, user_id: str, provider: str) -> Optional[ProviderConnection]:
    result = await session.execute(
        select(ProviderConnection).where(
            ProviderConnection.user_id == to_uuid(user_id),
            ProviderConnection.provider == provider,
        )
    )
    return result.scalar_one_or_none()


async def get_last_sync_at(session: AsyncSession, user_id: str, provider: str) -> Optional[datetime]:
    conn = await get_connection(session, user_id, provider)
    return as_utc(conn.last_sync_at) if conn else None


async def set_last_sync_at(session: AsyncSession, user_id: str, provider: str, when: datetime) -> None:
    conn = await get_connection(session, user_id, provider)
    if conn is None:
        conn = ProviderConnection(user_id=to_uuid(user_id), provider=provider, connected=True)
        session.add(conn)
    conn.last_sync_at = when
    await session.flush()


async def upsert_activities(
    session: AsyncSession,
    user_id: str,
    source: str,
    items: Sequence[ActivityItem],
) -> int:
    """
    Insert or update activities keyed by (user, source, external_id).

    Re-running over the same window rewrites existing rows instead of adding
    duplicates.  Returns the number of items written.
    """
    if not items:
        return 0
    uid = to_uuid(user_id)
    # Later duplicates in one batch win
    by_external = {item.external_id: item for item in items}

    result = await session.execute(
        select(Activity).where(
            Activity.user_id == uid,
            Activity.source == source,
            Activity.external_id.in_(list(by_external)),
        )
    )
    existing = {row.external_id: row for row in result.scalars().all()}

    now = datetime.now(timezone.utc)
    for external_id, item in by_external.items():
        row = existing.get(external_id)
        if row is None:
            row = Activity(user_id=uid, source=source, external_id=external_id)
            session.add(row)
        row.type = item.type
        row.title = item.title
        row.description = item.description
        row.external_url = item.external_url
        row.metadata_ = item.metadata
        row.occurred_at = item.occurred_at
        row.synced_at = now

    await session.flush()
    logger.debug("Upserted %d %s activities for user %s", len(by_external), source, user_id)
    return len(by_external)


async def list_activities(
    session: AsyncSession,
    user_id: str,
    source: Optional[str] = None,
    limit: Optional[int] = None,
) -> List[Activity]:
    """Newest first by ``occurred_at``."""
    stmt = select(Activity).where(Activity.user_id == to_uuid(user_id))
    if source:
        stmt = stmt.where(Activity.source == source)
    stmt = stmt.order_by(Activity.occurred_at.desc())
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo on round trip; treat naive values as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
