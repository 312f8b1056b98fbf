"""Pydantic schemas package."""

from case_portal.schemas.application import (
    ApplicationCreate,
    ApplicationResponse,
    FormDataUpdate,
    TransitionRequest,
)
from case_portal.schemas.base import BaseResponse
from case_portal.schemas.dms import (
    ApiKeyAuth,
    DmsProvider,
    DmsProviderConfig,
    DocumentUpload,
    ExternalDocumentDescriptor,
    OAuth2ClientCredentialsAuth,
    SignedJwtAuth,
    UploadResult,
)
from case_portal.schemas.sync import (
    ConflictPolicy,
    SyncErrorResponse,
    SyncItemOutcome,
    SyncItemResult,
    SyncOptions,
    SyncReport,
    SyncRequest,
    SyncResponse,
    SyncScope,
    SyncStatus,
    SyncTriggerAction,
)

__all__ = [
    "ApiKeyAuth",
    "ApplicationCreate",
    "ApplicationResponse",
    "BaseResponse",
    "ConflictPolicy",
    "DmsProvider",
    "DmsProviderConfig",
    "DocumentUpload",
    "ExternalDocumentDescriptor",
    "FormDataUpdate",
    "OAuth2ClientCredentialsAuth",
    "SignedJwtAuth",
    "SyncErrorResponse",
    "SyncItemOutcome",
    "SyncItemResult",
    "SyncOptions",
    "SyncReport",
    "SyncRequest",
    "SyncResponse",
    "SyncScope",
    "SyncStatus",
    "SyncTriggerAction",
    "TransitionRequest",
    "UploadResult",
]
