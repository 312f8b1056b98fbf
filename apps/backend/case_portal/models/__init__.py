"""SQLAlchemy models package."""

from case_portal.models.application import (
    Application,
    ApplicationStatus,
    ApplicationType,
    Priority,
    generate_application_number,
)
from case_portal.models.document import Document, DocumentType, ScanStatus
from case_portal.models.sync_log import AuditEvent, SyncAction, SyncLogEntry

__all__ = [
    "Application",
    "ApplicationStatus",
    "ApplicationType",
    "AuditEvent",
    "Document",
    "DocumentType",
    "Priority",
    "ScanStatus",
    "SyncAction",
    "SyncLogEntry",
    "generate_application_number",
]
