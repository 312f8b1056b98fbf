"""Local record store: the only component that reads and writes portal rows."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from case_portal.logger import get_logger
from case_portal.models import (
    Application,
    AuditEvent,
    Document,
    DocumentType,
    ScanStatus,
    SyncAction,
    SyncLogEntry,
)
from case_portal.models.base import ensure_utc, utcnow
from case_portal.schemas.sync import SyncReport, SyncScope
from case_portal.services.errors import (
    AuditWriteError,
    ConcurrentModificationError,
    NotFoundError,
    ValidationError,
)

logger = get_logger(__name__)

PULL_ACTIONS = (SyncAction.PULL, SyncAction.FULL_SYNC)


class DocumentPatch(BaseModel):
    """Fields to write on a document; only explicitly set fields are applied."""

    document_id: UUID | None = None
    application_id: UUID | None = None
    external_dms_id: str | None = None
    external_system: str | None = None
    external_url: str | None = None
    dms_metadata: dict[str, Any] | None = None
    synced_at: datetime | None = None
    needs_resync: bool | None = None
    conflict_flagged: bool | None = None
    file_name: str | None = None
    mime_type: str | None = None
    file_size: int | None = None
    document_type: DocumentType | None = None


def needs_sync_clause():
    return or_(Document.external_dms_id.is_(None), Document.needs_resync.is_(True))


class RecordStore:
    """Application/document table access bound to one AsyncSession."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()

    async def flush(self) -> None:
        await self.session.flush()

    # ------------------------------------------------------------------
    # Applications
    # ------------------------------------------------------------------

    async def get_application(self, application_id: UUID) -> Application:
        application = await self.session.get(Application, application_id)
        if application is None or application.archived_at is not None:
            raise NotFoundError(f"Application {application_id} not found")
        return application

    async def find_application_by_number(self, application_number: str) -> Application | None:
        result = await self.session.execute(
            select(Application)
            .where(Application.application_number == application_number)
            .where(Application.archived_at.is_(None))
        )
        return result.scalar_one_or_none()

    async def add_application(self, application: Application) -> Application:
        self.session.add(application)
        await self.session.flush()
        return application

    async def archive_application(self, application: Application) -> Application:
        application.archived_at = utcnow()
        await self.session.flush()
        return application

    async def update_application_versioned(
        self, application_id: UUID, expected_version: int, values: dict[str, Any]
    ) -> Application:
        """Apply values and bump version only if the stored version still matches.

        The check and the write are one conditional UPDATE, so two writers that
        read the same version cannot both succeed.
        """
        result = await self.session.execute(
            update(Application)
            .where(Application.id == application_id)
            .where(Application.version == expected_version)
            .values(version=Application.version + 1, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            actual = await self.session.scalar(
                select(Application.version).where(Application.id == application_id)
            )
            raise ConcurrentModificationError(expected_version, actual or 0)

        application = await self.session.get(Application, application_id, populate_existing=True)
        return application

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def get_document(self, document_id: UUID) -> Document:
        document = await self.session.get(Document, document_id)
        if document is None or document.deleted_at is not None:
            raise NotFoundError(f"Document {document_id} not found")
        return document

    async def find_documents_needing_sync(self, scope: SyncScope | None = None) -> list[Document]:
        """Live current-version documents with no external id or a dirty flag.

        An explicit id list narrows the candidates; it never widens them to
        documents that are already in sync.
        """
        query = (
            select(Document)
            .options(selectinload(Document.application))
            .where(Document.deleted_at.is_(None))
            .where(Document.is_current_version.is_(True))
            .where(Document.scan_status != ScanStatus.INFECTED)
            .where(needs_sync_clause())
            .order_by(Document.created_at, Document.id)
        )
        if scope is not None:
            if scope.document_ids is not None:
                query = query.where(Document.id.in_(scope.document_ids))
            if scope.application_id is not None:
                query = query.where(Document.application_id == scope.application_id)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def count_documents_needing_sync(self) -> int:
        result = await self.session.execute(
            select(func.count(Document.id))
            .where(Document.deleted_at.is_(None))
            .where(Document.is_current_version.is_(True))
            .where(Document.scan_status != ScanStatus.INFECTED)
            .where(needs_sync_clause())
        )
        return int(result.scalar_one())

    async def find_document_by_external_id(
        self, external_id: str, system: str | None = None
    ) -> Document | None:
        query = select(Document).where(Document.external_dms_id == external_id)
        if system is not None:
            query = query.where(Document.external_system == system)
        result = await self.session.execute(query)
        return result.scalars().first()

    async def upsert_document(self, patch: DocumentPatch) -> tuple[Document, bool]:
        """Create or update a document; applying the same patch twice is a no-op.

        Matching order: external id (within the system), then local id.
        Returns the document and whether it was created.
        """
        document: Document | None = None
        if patch.external_dms_id:
            document = await self.find_document_by_external_id(
                patch.external_dms_id, patch.external_system
            )
        if document is None and patch.document_id is not None:
            document = await self.session.get(Document, patch.document_id)

        fields = patch.model_dump(exclude_unset=True, exclude={"document_id"})
        created = document is None
        if created:
            missing = [name for name in ("application_id", "file_name") if not fields.get(name)]
            if missing:
                raise ValidationError(
                    f"Cannot create document without {', '.join(missing)}",
                    errors={name: "required" for name in missing},
                )
            fields.setdefault("mime_type", "application/octet-stream")
            fields.setdefault("file_size", 0)
            document = Document(**fields)
            self.session.add(document)
        else:
            for name, value in fields.items():
                setattr(document, name, value)

        await self.session.flush()
        return document, created

    async def add_document(self, document: Document) -> Document:
        self.session.add(document)
        await self.session.flush()
        return document

    async def mark_dirty(self, document_id: UUID) -> Document:
        document = await self.get_document(document_id)
        document.needs_resync = True
        await self.session.flush()
        return document

    # ------------------------------------------------------------------
    # Append-only logs
    # ------------------------------------------------------------------

    async def record_audit_event(
        self,
        *,
        entity_type: str,
        entity_id: UUID,
        action: str,
        actor: str,
        details: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """Insert an audit row in the current transaction; failure aborts the caller."""
        event = AuditEvent(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor=actor,
            details=details or {},
        )
        try:
            self.session.add(event)
            await self.session.flush()
        except SQLAlchemyError as exc:
            logger.error(
                "Audit write failed",
                entity_type=entity_type,
                entity_id=str(entity_id),
                action=action,
                error=str(exc),
            )
            raise AuditWriteError(f"Could not record audit event {action} for {entity_id}") from exc
        return event

    async def record_sync_log(self, report: SyncReport) -> SyncLogEntry:
        entry = SyncLogEntry(
            action=report.action,
            external_system=report.system,
            successful_count=report.successful,
            failed_count=report.failed,
            total_count=report.total_documents,
            cancelled=report.cancelled > 0,
            results=[item.model_dump(mode="json") for item in report.results],
            started_at=report.started_at,
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def last_sync_at(self, system: str) -> datetime | None:
        """Start time of the latest uncancelled pull-type run for the system."""
        result = await self.session.execute(
            select(func.max(SyncLogEntry.started_at))
            .where(SyncLogEntry.external_system == system)
            .where(SyncLogEntry.action.in_(PULL_ACTIONS))
            .where(SyncLogEntry.cancelled.is_(False))
        )
        return ensure_utc(result.scalar_one_or_none())

    async def recent_sync_logs(self, system: str, limit: int = 10) -> list[SyncLogEntry]:
        result = await self.session.execute(
            select(SyncLogEntry)
            .where(SyncLogEntry.external_system == system)
            .order_by(SyncLogEntry.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
