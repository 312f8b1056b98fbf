"""Entry point for on-demand and scheduled sync runs."""

from __future__ import annotations

from dataclasses import dataclass, field

import httpx

from case_portal.config import settings
from case_portal.logger import get_logger
from case_portal.models.base import utcnow
from case_portal.schemas.dms import DmsProviderConfig
from case_portal.schemas.sync import (
    SyncErrorResponse,
    SyncLogSummary,
    SyncRequest,
    SyncResponse,
    SyncStatus,
    SyncTriggerAction,
)
from case_portal.services.dms_adapters import build_document_store, load_provider_configs
from case_portal.services.errors import AuditWriteError, NotFoundError, SyncError, ValidationError
from case_portal.services.notifications import LoggingDispatcher, NotificationDispatcher
from case_portal.services.record_store import RecordStore
from case_portal.services.retry import RetryPolicy
from case_portal.services.storage import BlobReader, StorageBlobReader, StorageService
from case_portal.services.sync_lease import SyncLease
from case_portal.services.sync_reconciler import SyncReconciler
from case_portal.services.token_provider import TokenProvider

logger = get_logger(__name__)


@dataclass
class SyncEnvironment:
    """Process-wide collaborators shared by every sync run."""

    providers: dict[str, DmsProviderConfig]
    http_client: httpx.AsyncClient
    token_provider: TokenProvider
    lease: SyncLease
    blob_reader: BlobReader
    dispatcher: NotificationDispatcher
    retry_policy: RetryPolicy | None = None
    running: dict[str, SyncReconciler] = field(default_factory=dict)

    @classmethod
    def from_settings(cls) -> SyncEnvironment:
        timeout = httpx.Timeout(
            settings.dms_http_timeout_seconds, connect=settings.dms_connect_timeout_seconds
        )
        client = httpx.AsyncClient(timeout=timeout)
        return cls(
            providers=load_provider_configs(),
            http_client=client,
            token_provider=TokenProvider(client),
            lease=SyncLease(),
            blob_reader=StorageBlobReader(StorageService()),
            dispatcher=LoggingDispatcher(),
        )

    async def aclose(self) -> None:
        await self.http_client.aclose()

    def provider(self, system: str) -> DmsProviderConfig:
        config = self.providers.get(system)
        if config is None:
            raise NotFoundError(f"External system {system!r} is not configured")
        return config

    def reconciler(self, system: str, store: RecordStore) -> SyncReconciler:
        document_store = build_document_store(
            self.provider(system),
            self.token_provider,
            self.http_client,
            retry_policy=self.retry_policy,
        )
        return SyncReconciler(
            store,
            document_store,
            self.blob_reader,
            self.dispatcher,
            self.lease,
            retry_policy=self.retry_policy,
        )

    def cancel(self, system: str) -> bool:
        """Ask the in-process run for system to stop; False when nothing is running here."""
        reconciler = self.running.get(system)
        if reconciler is None:
            return False
        reconciler.cancel()
        return True


async def sync_status(env: SyncEnvironment, store: RecordStore, system: str) -> SyncStatus:
    env.provider(system)
    logs = await store.recent_sync_logs(system)
    return SyncStatus(
        system=system,
        last_sync_at=await store.last_sync_at(system),
        pending_documents=await store.count_documents_needing_sync(),
        recent_runs=[SyncLogSummary.model_validate(entry) for entry in logs],
    )


async def execute_sync_request(
    env: SyncEnvironment,
    store: RecordStore,
    system: str,
    request: SyncRequest,
) -> SyncResponse | SyncErrorResponse:
    """Run one trigger call.

    A SyncResponse means the run completed; individual items may still have
    failed and are listed in the report. A SyncErrorResponse means the run
    could not start or was aborted as a whole.
    """
    action = request.action
    try:
        if action == SyncTriggerAction.STATUS:
            result = await sync_status(env, store, system)
        else:
            reconciler = env.reconciler(system, store)
            env.running.setdefault(system, reconciler)
            try:
                if action == SyncTriggerAction.PUSH:
                    result = await reconciler.push(request.scope, request.options)
                elif action == SyncTriggerAction.PULL:
                    result = await reconciler.pull(request.since, request.options)
                else:
                    result = await reconciler.full_sync(request.scope, request.since, request.options)
            finally:
                if env.running.get(system) is reconciler:
                    del env.running[system]
    except (SyncError, NotFoundError, ValidationError, AuditWriteError) as exc:
        logger.warning(
            "Sync request failed",
            system=system,
            action=action.value,
            error=str(exc),
            error_type=exc.error_kind,
        )
        return SyncErrorResponse(
            action=action,
            error=exc.error_kind,
            message=str(exc),
            timestamp=utcnow(),
        )

    return SyncResponse(action=action, result=result, timestamp=utcnow())
