"""Document lifecycle: upload, new versions, soft delete and scan results."""

from __future__ import annotations

import asyncio
from uuid import UUID, uuid4

from case_portal.config import settings
from case_portal.logger import get_logger
from case_portal.models import Document, DocumentType, ScanStatus
from case_portal.models.base import utcnow
from case_portal.services.errors import ValidationError
from case_portal.services.record_store import RecordStore
from case_portal.services.storage import StorageService

logger = get_logger(__name__)


def build_storage_key(application_id: UUID, document_id: UUID, version_number: int, file_name: str) -> str:
    return f"applications/{application_id}/documents/{document_id}/v{version_number}/{file_name}"


def validate_upload(file_name: str, mime_type: str, content: bytes) -> None:
    """Reject empty, oversized or disallowed uploads before anything is stored."""
    errors: dict[str, str] = {}
    if not file_name.strip():
        errors["file_name"] = "required"
    if not content:
        errors["content"] = "empty file"
    elif len(content) > settings.max_document_size_bytes:
        errors["content"] = f"exceeds {settings.max_document_size_bytes} bytes"
    if mime_type not in settings.allowed_mime_types:
        errors["mime_type"] = f"{mime_type} is not allowed"
    if errors:
        raise ValidationError(f"Invalid upload {file_name!r}", errors=errors)


async def _store_blob(storage: StorageService, key: str, content: bytes, mime_type: str) -> None:
    await asyncio.to_thread(storage.upload_bytes, key=key, content=content, content_type=mime_type)


async def create_document(
    store: RecordStore,
    storage: StorageService,
    *,
    application_id: UUID,
    file_name: str,
    mime_type: str,
    content: bytes,
    actor: str,
    document_type: DocumentType = DocumentType.OTHER,
) -> Document:
    """Store the blob and create version 1 of a new document chain."""
    validate_upload(file_name, mime_type, content)
    await store.get_application(application_id)

    document_id = uuid4()
    storage_key = build_storage_key(application_id, document_id, 1, file_name)
    await _store_blob(storage, storage_key, content, mime_type)

    document = Document(
        id=document_id,
        application_id=application_id,
        file_name=file_name,
        file_size=len(content),
        mime_type=mime_type,
        document_type=document_type,
        storage_key=storage_key,
        version_number=1,
        is_current_version=True,
        scan_status=ScanStatus.PENDING,
    )
    try:
        await store.add_document(document)
        await store.record_audit_event(
            entity_type="document",
            entity_id=document_id,
            action="document_uploaded",
            actor=actor,
            details={"file_name": file_name, "file_size": len(content)},
        )
        await store.commit()
    except Exception:
        await store.rollback()
        raise

    logger.info(
        "Document created",
        document_id=str(document_id),
        application_id=str(application_id),
        file_size=len(content),
    )
    return document


async def add_document_version(
    store: RecordStore,
    storage: StorageService,
    document_id: UUID,
    *,
    file_name: str,
    mime_type: str,
    content: bytes,
    actor: str,
) -> Document:
    """Append a new current version to a document chain.

    The external DMS reference moves to the new version, which is marked for
    re-sync so the next push uploads it as a new external version.
    """
    validate_upload(file_name, mime_type, content)
    previous = await store.get_document(document_id)
    if not previous.is_current_version:
        raise ValidationError(
            f"Document {document_id} is not the current version",
            errors={"document_id": "superseded"},
        )

    new_id = uuid4()
    version_number = previous.version_number + 1
    storage_key = build_storage_key(previous.application_id, new_id, version_number, file_name)
    await _store_blob(storage, storage_key, content, mime_type)

    external_dms_id = previous.external_dms_id
    external_system = previous.external_system
    try:
        previous.is_current_version = False
        previous.external_dms_id = None
        previous.external_system = None
        previous.needs_resync = False
        # Release the external reference before the new row claims it.
        await store.flush()

        document = Document(
            id=new_id,
            application_id=previous.application_id,
            file_name=file_name,
            file_size=len(content),
            mime_type=mime_type,
            document_type=previous.document_type,
            storage_key=storage_key,
            version_number=version_number,
            previous_version_id=previous.id,
            is_current_version=True,
            external_dms_id=external_dms_id,
            external_system=external_system,
            external_url=previous.external_url,
            dms_metadata=dict(previous.dms_metadata or {}),
            needs_resync=external_dms_id is not None,
            scan_status=ScanStatus.PENDING,
        )
        await store.add_document(document)
        await store.record_audit_event(
            entity_type="document",
            entity_id=new_id,
            action="document_version_added",
            actor=actor,
            details={"previous_version_id": str(previous.id), "version_number": version_number},
        )
        await store.commit()
    except Exception:
        await store.rollback()
        raise

    logger.info(
        "Document version added",
        document_id=str(new_id),
        previous_version_id=str(previous.id),
        version_number=version_number,
    )
    return document


async def soft_delete_document(store: RecordStore, document_id: UUID, *, actor: str) -> Document:
    document = await store.get_document(document_id)
    try:
        document.deleted_at = utcnow()
        await store.flush()
        await store.record_audit_event(
            entity_type="document",
            entity_id=document_id,
            action="document_deleted",
            actor=actor,
        )
        await store.commit()
    except Exception:
        await store.rollback()
        raise
    logger.info("Document soft-deleted", document_id=str(document_id))
    return document


async def update_scan_status(
    store: RecordStore, document_id: UUID, scan_status: ScanStatus, *, actor: str
) -> Document:
    """Record the result of the out-of-band virus scan. Infected files never sync."""
    document = await store.get_document(document_id)
    previous = document.scan_status
    try:
        document.scan_status = scan_status
        await store.flush()
        await store.record_audit_event(
            entity_type="document",
            entity_id=document_id,
            action="scan_status_updated",
            actor=actor,
            details={"from": previous.value, "to": scan_status.value},
        )
        await store.commit()
    except Exception:
        await store.rollback()
        raise

    if scan_status == ScanStatus.INFECTED:
        logger.warning("Infected document quarantined from sync", document_id=str(document_id))
    else:
        logger.info("Document scan status updated", document_id=str(document_id), scan_status=scan_status.value)
    return document
