"""Document models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from case_portal.database import Base
from case_portal.models.base import JSONType, TimestampMixin, UUIDMixin

if TYPE_CHECKING:
    from case_portal.models.application import Application


class DocumentType(str, Enum):
    """Document classification."""

    PASSPORT = "passport"
    BIRTH_CERTIFICATE = "birth_certificate"
    MARRIAGE_CERTIFICATE = "marriage_certificate"
    EMPLOYMENT_LETTER = "employment_letter"
    BANK_STATEMENT = "bank_statement"
    PHOTO = "photo"
    POLICE_CLEARANCE = "police_clearance"
    MEDICAL_REPORT = "medical_report"
    EDUCATION_CERTIFICATE = "education_certificate"
    OTHER = "other"


class ScanStatus(str, Enum):
    """Virus scan state reported by the scanning collaborator."""

    PENDING = "pending"
    CLEAN = "clean"
    INFECTED = "infected"
    ERROR = "error"


class Document(UUIDMixin, TimestampMixin, Base):
    """A file attached to an application, optionally mirrored in an external DMS."""

    __tablename__ = "documents"
    __table_args__ = (
        UniqueConstraint("external_system", "external_dms_id", name="uq_documents_external_ref"),
    )

    application_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("applications.id"),
        nullable=False,
        index=True,
    )
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    mime_type: Mapped[str] = mapped_column(String(127), nullable=False)
    document_type: Mapped[DocumentType] = mapped_column(
        SQLEnum(
            DocumentType,
            name="document_type_enum",
            values_callable=lambda obj: [e.value for e in obj],
        ),
        nullable=False,
        default=DocumentType.OTHER,
    )
    storage_key: Mapped[str | None] = mapped_column(String(512), nullable=True)
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Version chain
    version_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    previous_version_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("documents.id"),
        nullable=True,
    )
    is_current_version: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # External DMS mirror
    external_dms_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    external_system: Mapped[str | None] = mapped_column(String(64), nullable=True)
    external_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    dms_metadata: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    needs_resync: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    conflict_flagged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    scan_status: Mapped[ScanStatus] = mapped_column(
        SQLEnum(
            ScanStatus,
            name="scan_status_enum",
            values_callable=lambda obj: [e.value for e in obj],
        ),
        nullable=False,
        default=ScanStatus.PENDING,
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    application: Mapped[Application] = relationship("Application", back_populates="documents")

    @property
    def needs_sync(self) -> bool:
        return self.external_dms_id is None or self.needs_resync

    def __repr__(self) -> str:
        return (
            f"<Document(id={self.id}, file_name={self.file_name!r}, "
            f"external_dms_id={self.external_dms_id!r})>"
        )
