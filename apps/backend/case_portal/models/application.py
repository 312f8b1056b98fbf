"""Immigration application models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import DateTime, Integer, String, Uuid
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from case_portal.database import Base
from case_portal.models.base import JSONType, TimestampMixin, UUIDMixin

if TYPE_CHECKING:
    from case_portal.models.document import Document


class ApplicationType(str, Enum):
    """Immigration service categories."""

    VISA_APPLICATION = "visa_application"
    WORK_PERMIT = "work_permit"
    PERMANENT_RESIDENCE = "permanent_residence"
    CITIZENSHIP = "citizenship"
    FAMILY_REUNIFICATION = "family_reunification"
    STUDENT_VISA = "student_visa"
    ASYLUM = "asylum"
    VISA_EXTENSION = "visa_extension"


class ApplicationStatus(str, Enum):
    """Application lifecycle states."""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    ADDITIONAL_INFO_REQUIRED = "additional_info_required"
    INTERVIEW_SCHEDULED = "interview_scheduled"
    DECISION_PENDING = "decision_pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"
    ON_HOLD = "on_hold"
    APPEALED = "appealed"
    EXPIRED = "expired"


class Priority(str, Enum):
    """Processing priority, declared in ascending order."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"
    EMERGENCY = "emergency"

    @property
    def rank(self) -> int:
        return list(Priority).index(self)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Priority):
            return NotImplemented
        return self.rank < other.rank


def generate_application_number(created_at: datetime, application_id: UUID) -> str:
    """Derive the human-readable application number (IMM-YYYYMMDD-XXXXXXXX)."""
    return f"IMM-{created_at:%Y%m%d}-{application_id.hex[:8].upper()}"


class Application(UUIDMixin, TimestampMixin, Base):
    """An immigration case owned by an applicant."""

    __tablename__ = "applications"

    application_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    applicant_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    assigned_officer_id: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    application_type: Mapped[ApplicationType] = mapped_column(
        SQLEnum(
            ApplicationType,
            name="application_type_enum",
            values_callable=lambda obj: [e.value for e in obj],
        ),
        nullable=False,
    )
    status: Mapped[ApplicationStatus] = mapped_column(
        SQLEnum(
            ApplicationStatus,
            name="application_status_enum",
            values_callable=lambda obj: [e.value for e in obj],
        ),
        nullable=False,
        default=ApplicationStatus.DRAFT,
        index=True,
    )
    priority: Mapped[Priority] = mapped_column(
        SQLEnum(
            Priority,
            name="priority_enum",
            values_callable=lambda obj: [e.value for e in obj],
        ),
        nullable=False,
        default=Priority.NORMAL,
    )
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    review_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    decision_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expiry_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    form_data: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    documents: Mapped[list[Document]] = relationship(
        "Document",
        back_populates="application",
        order_by="Document.created_at",
    )

    def __repr__(self) -> str:
        return (
            f"<Application(number={self.application_number!r}, "
            f"status={self.status.value if self.status else None!r}, version={self.version})>"
        )
