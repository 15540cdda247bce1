"""
SQLAlchemy ORM models for credentials, sync bookkeeping and notifications.

Column types are portable (``Uuid``, ``JSON``) so the same models run on
PostgreSQL in production and SQLite in tests.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, relationship


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    user_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False)
    display_name = Column(String(128))
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    credentials = relationship("Credential", cascade="all, delete-orphan")
    connections = relationship("ProviderConnection", cascade="all, delete-orphan")


class Credential(Base):
    """Encrypted OAuth credential; one row per (user, provider)."""

    __tablename__ = "user_credentials"
    __table_args__ = (UniqueConstraint("user_id", "provider", name="uq_credential_user_provider"),)

    credential_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False)
    provider = Column(String(32), nullable=False)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text)
    token_type = Column(String(32), default="Bearer")
    expires_at = Column(DateTime(timezone=True))
    scope = Column(Text, default="")
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class ProviderConnection(Base):
    """Connection flag and last-sync watermark for (user, provider)."""

    __tablename__ = "provider_connections"
    __table_args__ = (UniqueConstraint("user_id", "provider", name="uq_connection_user_provider"),)

    connection_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False)
    provider = Column(String(32), nullable=False)
    connected = Column(Boolean, nullable=False, default=True)
    last_sync_at = Column(DateTime(timezone=True))
    connected_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class SyncRun(Base):
    __tablename__ = "integration_sync_runs"
    __table_args__ = (Index("ix_sync_runs_user_provider_started", "user_id", "provider", "started_at"),)

    run_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), nullable=False)
    provider = Column(String(32), nullable=False)
    status = Column(String(16), nullable=False, default="running")
    items_synced = Column(Integer, nullable=False, default=0)
    error_message = Column(Text)
    started_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    completed_at = Column(DateTime(timezone=True))
    duration_ms = Column(Integer)


class CronJobExecution(Base):
    __tablename__ = "cron_job_executions"
    __table_args__ = (Index("ix_cron_job_executions_job_started", "job_name", "started_at"),)

    execution_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    job_name = Column(String(64), nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    completed_at = Column(DateTime(timezone=True))
    status = Column(String(16), nullable=False, default="running")
    users_processed = Column(Integer, nullable=False, default=0)
    providers_synced = Column(Integer, nullable=False, default=0)
    success_count = Column(Integer, nullable=False, default=0)
    failure_count = Column(Integer, nullable=False, default=0)
    error_message = Column(Text)
    duration_ms = Column(Integer)
    metadata_ = Column("metadata", JSON, default=dict)


class Notification(Base):
    __tablename__ = "integration_notifications"
    __table_args__ = (Index("ix_notifications_user_provider_type", "user_id", "provider", "type"),)

    notification_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), nullable=False)
    provider = Column(String(32), nullable=False)
    type = Column(String(32), nullable=False)
    severity = Column(String(16), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    action_url = Column(String(512))
    action_label = Column(String(64))
    read = Column(Boolean, nullable=False, default=False)
    metadata_ = Column("metadata", JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class Activity(Base):
    """Local activity mirror. Unique on (user, source, external_id)."""

    __tablename__ = "activities"
    __table_args__ = (
        UniqueConstraint("user_id", "source", "external_id", name="uq_activity_external"),
    )

    activity_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), nullable=False)
    source = Column(String(32), nullable=False)
    type = Column(String(32), nullable=False)
    title = Column(Text, nullable=False)
    description = Column(Text)
    external_id = Column(String(256), nullable=False)
    external_url = Column(String(1024))
    metadata_ = Column("metadata", JSON, default=dict)
    occurred_at = Column(DateTime(timezone=True), nullable=False)
    synced_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
