"""Pydantic schemas for external DMS provider configuration and payloads."""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, SecretStr


class DmsProvider(str, Enum):
    """Supported external document management systems."""

    SHAREPOINT = "sharepoint"
    FILENET = "filenet"
    DOCUMENTUM = "documentum"


class OAuth2ClientCredentialsAuth(BaseModel):
    """OAuth2 client-credentials grant (SharePoint-style)."""

    type: Literal["oauth2_client_credentials"] = "oauth2_client_credentials"
    token_url: str
    client_id: str
    client_secret: SecretStr
    scope: str | None = None


class ApiKeyAuth(BaseModel):
    """Static API key sent as a header (FileNet-style)."""

    type: Literal["api_key"] = "api_key"
    api_key: SecretStr
    header_name: str = "X-API-Key"


class SignedJwtAuth(BaseModel):
    """Certificate/private-key signed assertion (Documentum-style).

    With a token_url the assertion is exchanged through the jwt-bearer grant;
    without one the signed assertion is sent as the bearer credential.
    """

    type: Literal["signed_jwt"] = "signed_jwt"
    issuer: str
    audience: str
    subject: str | None = None
    private_key: SecretStr
    key_id: str | None = None
    algorithm: str = "RS256"
    assertion_lifetime_seconds: int = Field(default=300, ge=30, le=3600)
    token_url: str | None = None


ProviderAuth = Annotated[
    OAuth2ClientCredentialsAuth | ApiKeyAuth | SignedJwtAuth,
    Field(discriminator="type"),
]


class DmsProviderConfig(BaseModel):
    """Connection settings for one external system."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1, max_length=64)
    provider: DmsProvider
    base_url: str
    auth: ProviderAuth
    page_size: int = Field(default=100, ge=1, le=1000)
    timeout_seconds: float | None = None
    # Provider specific addressing: drive_id/folder for SharePoint,
    # object_store/folder for FileNet, repository/folder_id for Documentum.
    options: dict[str, str] = Field(default_factory=dict)


class DocumentUpload(BaseModel):
    """Metadata sent alongside a blob when pushing a document."""

    document_id: str
    file_name: str
    mime_type: str
    document_type: str
    application_number: str
    version_number: int = 1
    external_id: str | None = None


class UploadResult(BaseModel):
    """What the DMS returns for an accepted upload."""

    external_id: str
    external_url: str | None = None
    provider_metadata: dict[str, Any] = Field(default_factory=dict)


class ExternalDocumentDescriptor(BaseModel):
    """Provider-independent view of a document stored in a DMS."""

    external_id: str
    file_name: str
    mime_type: str = "application/octet-stream"
    file_size: int = 0
    document_type: str | None = None
    external_url: str | None = None
    modified_at: datetime | None = None
    application_number: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
