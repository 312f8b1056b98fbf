"""External document management system adapters.

Each provider implements the same two capabilities, ``upload`` and
``list_changed_since``, over its own REST dialect. The concrete class is
picked once from configuration by ``build_document_store``.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from datetime import datetime
from pathlib import Path
from typing import Any, TypeVar

import httpx
import yaml
from pydantic import ValidationError as PydanticValidationError

from case_portal.config import settings
from case_portal.logger import get_logger, log_external_api, log_timing
from case_portal.schemas.dms import (
    DmsProvider,
    DmsProviderConfig,
    DocumentUpload,
    ExternalDocumentDescriptor,
    UploadResult,
)
from case_portal.services.errors import (
    AuthenticationError,
    RejectedError,
    TransientNetworkError,
    ValidationError,
)
from case_portal.services.retry import RetryPolicy, call_with_retries
from case_portal.services.token_provider import TokenProvider

logger = get_logger(__name__)

TRANSIENT_STATUS_CODES = frozenset({429, 500, 502, 503, 504})
AUTH_STATUS_CODES = frozenset({401, 403})

T = TypeVar("T")


def _format_since(since: datetime) -> str:
    return since.isoformat().replace("+00:00", "Z")


def _identifier(value: Any, field: str) -> str:
    if value is None or value == "":
        raise KeyError(field)
    return str(value)


class DocumentStore(ABC):
    """Uniform contract over one configured external DMS."""

    def __init__(
        self,
        config: DmsProviderConfig,
        token_provider: TokenProvider,
        client: httpx.AsyncClient,
        *,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self.config = config
        self._tokens = token_provider
        self._client = client
        self._retry_policy = retry_policy or RetryPolicy.from_settings()
        self._timeout = httpx.Timeout(
            config.timeout_seconds or settings.dms_http_timeout_seconds,
            connect=settings.dms_connect_timeout_seconds,
        )

    @property
    def system(self) -> str:
        return self.config.name

    def url(self, path: str) -> str:
        return f"{self.config.base_url.rstrip('/')}/{path.lstrip('/')}"

    def option(self, key: str, default: str | None = None) -> str:
        value = self.config.options.get(key, default)
        if value is None:
            raise ValidationError(f"DMS provider {self.system} is missing option '{key}'")
        return value

    async def authenticate(self) -> None:
        """Acquire (or reuse) a token so credential problems surface before any item."""
        await self._tokens.get_token(self.config)

    @abstractmethod
    async def upload(self, document: DocumentUpload, blob: bytes) -> UploadResult:
        """Store the blob and its metadata, returning the external reference."""

    @abstractmethod
    async def _fetch_page(
        self, since: datetime | None, cursor: Any
    ) -> tuple[list[ExternalDocumentDescriptor], Any]:
        """Fetch one page; return its descriptors and the next cursor (None when done)."""

    async def list_changed_since(
        self, since: datetime | None
    ) -> AsyncIterator[ExternalDocumentDescriptor]:
        """Yield documents modified at or after ``since``, one page in memory at a time."""
        cursor: Any = None
        page_number = 0
        while True:
            page_number += 1
            descriptors, cursor = await call_with_retries(
                lambda c=cursor: self._fetch_page(since, c),
                self._retry_policy,
                operation=f"{self.system}.list_page",
            )
            logger.debug(
                "Fetched DMS change page",
                system=self.system,
                page=page_number,
                count=len(descriptors),
            )
            for descriptor in descriptors:
                yield descriptor
            if cursor is None:
                return

    @log_external_api("dms")
    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        headers = dict(kwargs.pop("headers", None) or {})
        headers.update(await self._tokens.auth_headers(self.config))
        try:
            response = await self._client.request(
                method, url, headers=headers, timeout=self._timeout, **kwargs
            )
        except httpx.TimeoutException as exc:
            raise TransientNetworkError(f"{self.system} timed out: {method} {url}") from exc
        except httpx.TransportError as exc:
            raise TransientNetworkError(f"{self.system} unreachable: {exc}") from exc

        status_code = response.status_code
        if status_code in AUTH_STATUS_CODES:
            self._tokens.invalidate(self.system)
            raise AuthenticationError(
                f"{self.system} refused credentials ({status_code})", status_code=status_code
            )
        if status_code in TRANSIENT_STATUS_CODES or status_code >= 500:
            raise TransientNetworkError(
                f"{self.system} returned {status_code}", status_code=status_code
            )
        if status_code >= 400:
            raise RejectedError(
                f"{self.system} rejected request ({status_code}): {response.text[:200]}",
                status_code=status_code,
            )
        return response

    def _json(self, response: httpx.Response) -> dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as exc:
            raise RejectedError(f"{self.system} returned a non-JSON body") from exc
        if not isinstance(payload, dict):
            raise RejectedError(f"{self.system} returned an unexpected payload")
        return payload

    def _parse(self, what: str, build: Callable[[], T]) -> T:
        """Build typed results from a 2xx body; a body of the wrong shape is a rejection."""
        try:
            return build()
        except (KeyError, TypeError, AttributeError, ValueError, PydanticValidationError) as exc:
            raise RejectedError(f"{self.system} returned a malformed {what}: {exc!r}") from exc


class SharePointDocumentStore(DocumentStore):
    """Graph-style drive API: upload by path, list via list items with $filter."""

    async def upload(self, document: DocumentUpload, blob: bytes) -> UploadResult:
        drive_id = self.option("drive_id")
        if document.external_id:
            path = f"drives/{drive_id}/items/{document.external_id}/content"
        else:
            # One folder per portal document: equal file names must not share a drive item.
            folder = self.option("folder", "Applications").strip("/")
            path = (
                f"drives/{drive_id}/root:/{folder}/{document.application_number}/"
                f"{document.document_id}/{document.file_name}:/content"
            )
        response = await self._request(
            "PUT",
            self.url(path),
            content=blob,
            headers={"Content-Type": document.mime_type},
        )
        item = self._json(response)
        return self._parse(
            "upload response",
            lambda: UploadResult(
                external_id=_identifier(item.get("id"), "id"),
                external_url=item.get("webUrl"),
                provider_metadata={
                    "etag": item.get("eTag"),
                    "size": item.get("size"),
                    "drive_id": drive_id,
                },
            ),
        )

    async def _fetch_page(
        self, since: datetime | None, cursor: Any
    ) -> tuple[list[ExternalDocumentDescriptor], Any]:
        if cursor:
            response = await self._request("GET", cursor)
        else:
            params = {"$expand": "fields,driveItem", "$top": str(self.config.page_size)}
            if since is not None:
                params["$filter"] = f"fields/Modified ge '{_format_since(since)}'"
            drive_id = self.option("drive_id")
            response = await self._request("GET", self.url(f"drives/{drive_id}/list/items"), params=params)
        payload = self._json(response)
        items = self._parse(
            "change page", lambda: [self._descriptor(item) for item in payload.get("value", [])]
        )
        return items, payload.get("@odata.nextLink")

    def _descriptor(self, item: dict[str, Any]) -> ExternalDocumentDescriptor:
        drive_item = item.get("driveItem") or {}
        fields = item.get("fields") or {}
        external_id = _identifier(drive_item.get("id") or item.get("id"), "id")
        return ExternalDocumentDescriptor(
            external_id=external_id,
            file_name=drive_item.get("name") or fields.get("FileLeafRef") or external_id,
            mime_type=(drive_item.get("file") or {}).get("mimeType") or "application/octet-stream",
            file_size=int(drive_item.get("size") or 0),
            document_type=fields.get("DocumentType"),
            external_url=drive_item.get("webUrl") or item.get("webUrl"),
            modified_at=item.get("lastModifiedDateTime"),
            application_number=fields.get("ApplicationNumber"),
            metadata={"etag": item.get("eTag")},
        )


class FileNetDocumentStore(DocumentStore):
    """Object-store REST API with multipart check-in and page-numbered listing."""

    async def upload(self, document: DocumentUpload, blob: bytes) -> UploadResult:
        object_store = self.option("object_store")
        properties = {
            "DocumentTitle": document.file_name,
            "ApplicationNumber": document.application_number,
            "DocumentType": document.document_type,
            "PortalDocumentId": document.document_id,
            "PortalVersion": document.version_number,
        }
        if document.external_id:
            path = f"objectstores/{object_store}/documents/{document.external_id}/versions"
        else:
            properties["FolderPath"] = self.option("folder", "/Applications")
            path = f"objectstores/{object_store}/documents"
        response = await self._request(
            "POST",
            self.url(path),
            files={"content": (document.file_name, blob, document.mime_type)},
            data={"properties": json.dumps(properties)},
        )
        payload = self._json(response)
        return self._parse(
            "upload response",
            lambda: UploadResult(
                external_id=_identifier(payload.get("id"), "id"),
                external_url=payload.get("url"),
                provider_metadata={
                    "version_series_id": payload.get("versionSeriesId"),
                    "major_version": payload.get("majorVersionNumber"),
                    "object_store": object_store,
                },
            ),
        )

    async def _fetch_page(
        self, since: datetime | None, cursor: Any
    ) -> tuple[list[ExternalDocumentDescriptor], Any]:
        page = cursor or 1
        params: dict[str, str] = {"pageSize": str(self.config.page_size), "page": str(page)}
        if since is not None:
            params["modifiedSince"] = _format_since(since)
        object_store = self.option("object_store")
        response = await self._request(
            "GET", self.url(f"objectstores/{object_store}/documents"), params=params
        )
        payload = self._json(response)
        items = self._parse(
            "change page", lambda: [self._descriptor(item) for item in payload.get("documents", [])]
        )
        return items, (page + 1 if payload.get("hasMore") else None)

    def _descriptor(self, item: dict[str, Any]) -> ExternalDocumentDescriptor:
        properties = item.get("properties") or {}
        external_id = _identifier(item.get("id"), "id")
        return ExternalDocumentDescriptor(
            external_id=external_id,
            file_name=item.get("name") or properties.get("DocumentTitle") or external_id,
            mime_type=item.get("mimeType") or "application/octet-stream",
            file_size=int(item.get("size") or 0),
            document_type=properties.get("DocumentType"),
            external_url=item.get("url"),
            modified_at=item.get("dateLastModified"),
            application_number=properties.get("ApplicationNumber"),
            metadata={"version_series_id": item.get("versionSeriesId")},
        )


class DocumentumDocumentStore(DocumentStore):
    """Repository REST API with HAL-style links for pagination."""

    async def upload(self, document: DocumentUpload, blob: bytes) -> UploadResult:
        repository = self.option("repository")
        properties = {
            "object_name": document.file_name,
            "a_content_type": document.mime_type,
            "app_number": document.application_number,
            "doc_type": document.document_type,
            "portal_doc_id": document.document_id,
        }
        if document.external_id:
            path = f"repositories/{repository}/objects/{document.external_id}/versions"
        else:
            folder_id = self.option("folder_id")
            path = f"repositories/{repository}/folders/{folder_id}/documents"
        response = await self._request(
            "POST",
            self.url(path),
            files={"content": (document.file_name, blob, document.mime_type)},
            data={"object": json.dumps({"properties": properties})},
        )
        payload = self._json(response)
        props = payload.get("properties") or {}
        return self._parse(
            "upload response",
            lambda: UploadResult(
                external_id=_identifier(props.get("r_object_id"), "r_object_id"),
                external_url=self._link(payload, "self"),
                provider_metadata={
                    "version_label": props.get("r_version_label"),
                    "repository": repository,
                },
            ),
        )

    async def _fetch_page(
        self, since: datetime | None, cursor: Any
    ) -> tuple[list[ExternalDocumentDescriptor], Any]:
        page = cursor or 1
        params: dict[str, str] = {
            "items-per-page": str(self.config.page_size),
            "page": str(page),
            "inline": "true",
        }
        if since is not None:
            params["filter"] = f"r_modify_date >= date('{_format_since(since)}')"
        repository = self.option("repository")
        response = await self._request(
            "GET", self.url(f"repositories/{repository}/documents"), params=params
        )
        payload = self._json(response)
        items = self._parse(
            "change page",
            lambda: [
                self._descriptor(entry.get("content") or {}) for entry in payload.get("entries", [])
            ],
        )
        return items, (page + 1 if self._link(payload, "next") else None)

    @staticmethod
    def _link(payload: dict[str, Any], rel: str) -> str | None:
        for link in payload.get("links") or []:
            if link.get("rel") == rel:
                return link.get("href")
        return None

    def _descriptor(self, content: dict[str, Any]) -> ExternalDocumentDescriptor:
        props = content.get("properties") or {}
        external_id = _identifier(props.get("r_object_id"), "r_object_id")
        return ExternalDocumentDescriptor(
            external_id=external_id,
            file_name=props.get("object_name") or external_id,
            mime_type=props.get("a_content_type") or "application/octet-stream",
            file_size=int(props.get("r_full_content_size") or 0),
            document_type=props.get("doc_type"),
            external_url=self._link(content, "self"),
            modified_at=props.get("r_modify_date"),
            application_number=props.get("app_number"),
            metadata={"version_label": props.get("r_version_label")},
        )


DOCUMENT_STORES: dict[DmsProvider, type[DocumentStore]] = {
    DmsProvider.SHAREPOINT: SharePointDocumentStore,
    DmsProvider.FILENET: FileNetDocumentStore,
    DmsProvider.DOCUMENTUM: DocumentumDocumentStore,
}


def build_document_store(
    config: DmsProviderConfig,
    token_provider: TokenProvider,
    client: httpx.AsyncClient,
    *,
    retry_policy: RetryPolicy | None = None,
) -> DocumentStore:
    """Construct the adapter variant named by the provider config."""
    store_cls = DOCUMENT_STORES[config.provider]
    return store_cls(config, token_provider, client, retry_policy=retry_policy)


def load_provider_configs(path: str | Path | None = None) -> dict[str, DmsProviderConfig]:
    """Load DMS provider configs from YAML, keyed by system name.

    File shape::

        providers:
          - name: sharepoint-main
            provider: sharepoint
            base_url: https://graph.example.gov/v1.0
            auth: {type: oauth2_client_credentials, ...}
            options: {drive_id: abc}
    """
    config_path = path or settings.dms_providers_file
    if not config_path:
        return {}
    config_path = Path(config_path)
    if not config_path.exists():
        logger.warning("DMS provider file not found", path=str(config_path))
        return {}

    with log_timing("load_provider_configs", logger=logger, path=str(config_path)) as ctx:
        raw = yaml.safe_load(config_path.read_text()) or {}
        configs: dict[str, DmsProviderConfig] = {}
        for entry in raw.get("providers", []):
            try:
                config = DmsProviderConfig.model_validate(entry)
            except PydanticValidationError as exc:
                raise ValidationError(
                    f"Invalid DMS provider entry {entry.get('name', '?')}: {exc}"
                ) from exc
            configs[config.name] = config
        ctx["provider_count"] = len(configs)
    return configs
