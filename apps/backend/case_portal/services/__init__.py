"""Services package."""

from case_portal.services.dms_adapters import (
    DocumentStore,
    DocumentumDocumentStore,
    FileNetDocumentStore,
    SharePointDocumentStore,
    build_document_store,
    load_provider_configs,
)
from case_portal.services.documents import (
    add_document_version,
    create_document,
    soft_delete_document,
    update_scan_status,
)
from case_portal.services.errors import (
    AuditWriteError,
    AuthenticationError,
    CasePortalError,
    ConcurrentModificationError,
    ExternalServiceError,
    InvalidTransitionError,
    NotFoundError,
    RejectedError,
    SyncAlreadyRunningError,
    SyncConnectionError,
    SyncError,
    TransientNetworkError,
    ValidationError,
)
from case_portal.services.notifications import (
    LoggingDispatcher,
    NotificationDispatcher,
    StatusChangeEvent,
    SyncFailureEvent,
    emit_event,
)
from case_portal.services.record_store import DocumentPatch, RecordStore
from case_portal.services.retry import RetryPolicy, call_with_retries
from case_portal.services.storage import StorageError, StorageService
from case_portal.services.sync_lease import SyncLease
from case_portal.services.sync_reconciler import SyncReconciler
from case_portal.services.sync_trigger import SyncEnvironment, execute_sync_request
from case_portal.services.token_provider import AccessToken, TokenProvider
from case_portal.services.workflow import (
    ALLOWED_TRANSITIONS,
    RequiredFieldsValidator,
    WorkflowEngine,
    can_transition,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "AccessToken",
    "AuditWriteError",
    "AuthenticationError",
    "CasePortalError",
    "ConcurrentModificationError",
    "DocumentPatch",
    "DocumentStore",
    "DocumentumDocumentStore",
    "ExternalServiceError",
    "FileNetDocumentStore",
    "InvalidTransitionError",
    "LoggingDispatcher",
    "NotFoundError",
    "NotificationDispatcher",
    "RecordStore",
    "RejectedError",
    "RequiredFieldsValidator",
    "RetryPolicy",
    "SharePointDocumentStore",
    "StatusChangeEvent",
    "StorageError",
    "StorageService",
    "SyncAlreadyRunningError",
    "SyncConnectionError",
    "SyncEnvironment",
    "SyncError",
    "SyncFailureEvent",
    "SyncLease",
    "SyncReconciler",
    "TokenProvider",
    "TransientNetworkError",
    "ValidationError",
    "WorkflowEngine",
    "add_document_version",
    "build_document_store",
    "call_with_retries",
    "can_transition",
    "create_document",
    "emit_event",
    "load_provider_configs",
    "soft_delete_document",
    "update_scan_status",
]
