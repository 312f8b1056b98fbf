"""Append-only sync log and audit trail models."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import Boolean, DateTime, Integer, String, Uuid
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from case_portal.database import Base
from case_portal.models.base import JSONType, UUIDMixin, utcnow


class SyncAction(str, Enum):
    """Reconciliation direction."""

    PUSH = "push"
    PULL = "pull"
    FULL_SYNC = "full_sync"


class SyncLogEntry(UUIDMixin, Base):
    """One reconciliation run against one external system. Never updated."""

    __tablename__ = "sync_logs"

    action: Mapped[SyncAction] = mapped_column(
        SQLEnum(
            SyncAction,
            name="sync_action_enum",
            values_callable=lambda obj: [e.value for e in obj],
        ),
        nullable=False,
    )
    external_system: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    successful_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    results: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    cancelled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )


class AuditEvent(UUIDMixin, Base):
    """Record of a state change, written in the same transaction as the change."""

    __tablename__ = "audit_events"

    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    actor: Mapped[str] = mapped_column(String(128), nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
