"""Document synchronization engine between the portal and one external DMS."""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable
from contextlib import aclosing
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from case_portal.config import settings
from case_portal.logger import async_log_timing, get_logger
from case_portal.models import Document, DocumentType, SyncAction
from case_portal.models.base import utcnow
from case_portal.schemas.dms import DocumentUpload, ExternalDocumentDescriptor
from case_portal.schemas.sync import (
    ConflictPolicy,
    SyncItemOutcome,
    SyncItemResult,
    SyncOptions,
    SyncReport,
    SyncScope,
)
from case_portal.services.dms_adapters import DocumentStore
from case_portal.services.errors import (
    AuditWriteError,
    ExternalServiceError,
    RejectedError,
    SyncConnectionError,
    ValidationError,
)
from case_portal.services.notifications import (
    NotificationDispatcher,
    SyncFailureEvent,
    emit_event,
)
from case_portal.services.record_store import DocumentPatch, RecordStore
from case_portal.services.retry import RetryOutcome, RetryPolicy, call_with_retries
from case_portal.services.storage import BlobReader, StorageError
from case_portal.services.sync_lease import SyncLease

logger = get_logger(__name__)

SYNC_ACTOR = "system:dms-sync"

# Repeats from the at-least-once listing sit next to a page boundary.
RECENT_IDS_WINDOW = 256


@dataclass(frozen=True)
class PushCandidate:
    """Plain snapshot of a document taken before concurrent work starts."""

    document_id: UUID
    storage_key: str | None
    upload: DocumentUpload

    @classmethod
    def from_document(cls, document: Document) -> PushCandidate:
        return cls(
            document_id=document.id,
            storage_key=document.storage_key,
            upload=DocumentUpload(
                document_id=str(document.id),
                file_name=document.file_name,
                mime_type=document.mime_type,
                document_type=document.document_type.value,
                application_number=document.application.application_number,
                version_number=document.version_number,
                external_id=document.external_dms_id,
            ),
        )


def remote_fields(descriptor: ExternalDocumentDescriptor) -> dict[str, Any]:
    """Local document fields as the remote side describes them."""
    try:
        document_type = DocumentType(descriptor.document_type or DocumentType.OTHER.value)
    except ValueError:
        document_type = DocumentType.OTHER
    return {
        "file_name": descriptor.file_name,
        "mime_type": descriptor.mime_type,
        "file_size": descriptor.file_size,
        "document_type": document_type,
        "external_url": descriptor.external_url,
        "dms_metadata": descriptor.metadata,
    }


# Content fields; provider metadata and links never count as divergence.
COMPARED_FIELDS = ("file_name", "mime_type", "file_size", "document_type")
REFRESHED_FIELDS = ("external_url", "dms_metadata")


def differs_from_remote(
    document: Document, fields: dict[str, Any], names: tuple[str, ...] = COMPARED_FIELDS
) -> bool:
    return any(getattr(document, name) != fields[name] for name in names)


class SyncReconciler:
    """Push/pull orchestration for one external system.

    Per-item failures are recorded in the report and never raised. Sync-level
    failures (lease busy, cannot connect, audit write failure) abort the run.
    """

    def __init__(
        self,
        store: RecordStore,
        document_store: DocumentStore,
        blob_reader: BlobReader,
        dispatcher: NotificationDispatcher,
        lease: SyncLease,
        *,
        max_concurrency: int | None = None,
        retry_policy: RetryPolicy | None = None,
        actor: str = SYNC_ACTOR,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._document_store = document_store
        self._blob_reader = blob_reader
        self._dispatcher = dispatcher
        self._lease = lease
        self._max_concurrency = max_concurrency or settings.sync_max_concurrency
        self._retry_policy = retry_policy or RetryPolicy.from_settings()
        self._actor = actor
        self._sleep = sleep
        self._cancel = asyncio.Event()
        # AsyncSession is not safe for concurrent use; uploads run in parallel,
        # record store access does not.
        self._store_lock = asyncio.Lock()

    @property
    def system(self) -> str:
        return self._document_store.system

    def cancel(self) -> None:
        """Stop before the next item; items already started finish normally."""
        logger.info("Sync cancellation requested", system=self.system)
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def push(
        self, scope: SyncScope | None = None, options: SyncOptions | None = None
    ) -> SyncReport:
        options = options or SyncOptions()
        async with self._lease.hold(self.system):
            async with async_log_timing("sync_push", logger=logger, system=self.system) as ctx:
                report = await self._push(scope, options)
                ctx.update(successful=report.successful, failed=report.failed)
            await self._finish(report, options)
        return report

    async def pull(
        self, since: datetime | None = None, options: SyncOptions | None = None
    ) -> SyncReport:
        options = options or SyncOptions()
        async with self._lease.hold(self.system):
            async with async_log_timing("sync_pull", logger=logger, system=self.system) as ctx:
                report = await self._pull(since, options)
                ctx.update(successful=report.successful, failed=report.failed)
            await self._finish(report, options)
        return report

    async def full_sync(
        self,
        scope: SyncScope | None = None,
        since: datetime | None = None,
        options: SyncOptions | None = None,
    ) -> SyncReport:
        """Push then pull, never interleaved, so pending local changes go out first."""
        options = options or SyncOptions()
        async with self._lease.hold(self.system):
            async with async_log_timing("sync_full", logger=logger, system=self.system) as ctx:
                push_report = await self._push(scope, options)
                pull_report = await self._pull(since, options)
                report = SyncReport.combine(SyncAction.FULL_SYNC, push_report, pull_report)
                ctx.update(successful=report.successful, failed=report.failed)
            await self._finish(report, options)
        return report

    # ------------------------------------------------------------------
    # Run plumbing
    # ------------------------------------------------------------------

    def _policy(self, options: SyncOptions) -> RetryPolicy:
        if options.max_retries is None:
            return self._retry_policy
        return RetryPolicy(
            max_attempts=options.max_retries,
            base_delay=self._retry_policy.base_delay,
            max_delay=self._retry_policy.max_delay,
            jitter=self._retry_policy.jitter,
        )

    async def _connect(self, policy: RetryPolicy) -> None:
        try:
            await call_with_retries(
                self._document_store.authenticate,
                policy,
                operation=f"{self.system}.authenticate",
                sleep=self._sleep,
            )
        except ExternalServiceError as exc:
            logger.error(
                "Sync could not connect to external system",
                system=self.system,
                error=str(exc),
                error_type=exc.error_kind,
            )
            raise SyncConnectionError(self.system, exc) from exc

    async def _finish(self, report: SyncReport, options: SyncOptions) -> None:
        if not options.dry_run:
            async with self._store_lock:
                await self._store.record_sync_log(report)
                await self._store.commit()

        for item in report.results:
            if item.outcome != SyncItemOutcome.FAILED:
                continue
            item_id = str(item.document_id) if item.document_id else item.external_id
            await emit_event(
                self._dispatcher,
                SyncFailureEvent(
                    system=self.system,
                    item_id=item_id,
                    error_kind=item.error_kind or "UnknownError",
                    message=item.message,
                ),
            )

        logger.info(
            "Sync run finished",
            system=self.system,
            action=report.action.value,
            total=report.total_documents,
            successful=report.successful,
            failed=report.failed,
            dry_run=report.dry_run,
            cancelled=report.cancelled,
        )

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    async def _push(self, scope: SyncScope | None, options: SyncOptions) -> SyncReport:
        started_at = utcnow()
        policy = self._policy(options)
        async with self._store_lock:
            documents = await self._store.find_documents_needing_sync(scope)
            candidates = [PushCandidate.from_document(doc) for doc in documents]

        if candidates and not options.dry_run:
            await self._connect(policy)

        semaphore = asyncio.Semaphore(options.max_concurrency or self._max_concurrency)

        async def run(candidate: PushCandidate) -> SyncItemResult:
            async with semaphore:
                if self._cancel.is_set():
                    return SyncItemResult(
                        document_id=candidate.document_id,
                        direction="push",
                        outcome=SyncItemOutcome.CANCELLED,
                    )
                return await self._push_item(candidate, options, policy)

        tasks = [asyncio.create_task(run(candidate)) for candidate in candidates]
        try:
            results = list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        return SyncReport.from_results(
            action=SyncAction.PUSH,
            system=self.system,
            results=results,
            started_at=started_at,
            finished_at=utcnow(),
        )

    async def _push_item(
        self, candidate: PushCandidate, options: SyncOptions, policy: RetryPolicy
    ) -> SyncItemResult:
        def failed(exc: Exception, attempts: int = 0) -> SyncItemResult:
            logger.warning(
                "Push item failed",
                system=self.system,
                document_id=str(candidate.document_id),
                error=str(exc),
                error_type=type(exc).__name__,
                attempts=attempts,
            )
            return SyncItemResult(
                document_id=candidate.document_id,
                external_id=candidate.upload.external_id,
                direction="push",
                outcome=SyncItemOutcome.FAILED,
                error_kind=getattr(exc, "error_kind", type(exc).__name__),
                message=str(exc),
                attempts=attempts,
            )

        if options.dry_run:
            return SyncItemResult(
                document_id=candidate.document_id,
                external_id=candidate.upload.external_id,
                direction="push",
                outcome=SyncItemOutcome.WOULD_SYNC,
            )

        try:
            if not candidate.storage_key:
                raise StorageError(f"Document {candidate.document_id} has no stored blob")
            blob = await self._blob_reader.read(candidate.storage_key)
        except (StorageError, OSError) as exc:
            return failed(exc)

        tracker = RetryOutcome()
        try:
            uploaded = await call_with_retries(
                lambda: self._document_store.upload(candidate.upload, blob),
                policy,
                operation=f"{self.system}.upload",
                outcome=tracker,
                sleep=self._sleep,
            )
        except (ExternalServiceError, ValidationError) as exc:
            return failed(exc, tracker.attempts)

        async with self._store_lock:
            try:
                owner = await self._store.find_document_by_external_id(
                    uploaded.external_id, self.system
                )
                if owner is not None and owner.id != candidate.document_id:
                    raise RejectedError(
                        f"{self.system} returned external id {uploaded.external_id} "
                        f"already linked to document {owner.id}"
                    )
                await self._store.upsert_document(
                    DocumentPatch(
                        document_id=candidate.document_id,
                        external_dms_id=uploaded.external_id,
                        external_system=self.system,
                        external_url=uploaded.external_url,
                        dms_metadata=uploaded.provider_metadata,
                        synced_at=utcnow(),
                        needs_resync=False,
                        conflict_flagged=False,
                    )
                )
                await self._store.record_audit_event(
                    entity_type="document",
                    entity_id=candidate.document_id,
                    action="dms_push",
                    actor=self._actor,
                    details={"system": self.system, "external_id": uploaded.external_id},
                )
                await self._store.commit()
            except AuditWriteError:
                await self._store.rollback()
                raise
            except (RejectedError, ValidationError, SQLAlchemyError) as exc:
                await self._store.rollback()
                return failed(exc, tracker.attempts)

        return SyncItemResult(
            document_id=candidate.document_id,
            external_id=uploaded.external_id,
            direction="push",
            outcome=SyncItemOutcome.SYNCED,
            attempts=tracker.attempts,
        )

    # ------------------------------------------------------------------
    # Pull
    # ------------------------------------------------------------------

    async def _pull(self, since: datetime | None, options: SyncOptions) -> SyncReport:
        started_at = utcnow()
        policy = self._policy(options)
        if since is None:
            async with self._store_lock:
                since = await self._store.last_sync_at(self.system)

        await self._connect(policy)

        results: list[SyncItemResult] = []
        recent: deque[str] = deque(maxlen=RECENT_IDS_WINDOW)
        try:
            async with aclosing(self._document_store.list_changed_since(since)) as changes:
                async for descriptor in changes:
                    if self._cancel.is_set():
                        results.append(
                            SyncItemResult(
                                external_id=descriptor.external_id,
                                direction="pull",
                                outcome=SyncItemOutcome.CANCELLED,
                            )
                        )
                        break
                    # Listing is at-least-once; a page boundary can repeat an item.
                    if descriptor.external_id in recent:
                        continue
                    recent.append(descriptor.external_id)
                    results.append(await self._pull_item(descriptor, options))
        except ExternalServiceError as exc:
            if not results:
                raise SyncConnectionError(self.system, exc) from exc
            logger.error(
                "Change listing interrupted",
                system=self.system,
                processed=len(results),
                error=str(exc),
            )
            results.append(
                SyncItemResult(
                    direction="pull",
                    outcome=SyncItemOutcome.FAILED,
                    error_kind=exc.error_kind,
                    message=f"Change listing interrupted: {exc}",
                )
            )

        return SyncReport.from_results(
            action=SyncAction.PULL,
            system=self.system,
            results=results,
            started_at=started_at,
            finished_at=utcnow(),
        )

    async def _pull_item(
        self, descriptor: ExternalDocumentDescriptor, options: SyncOptions
    ) -> SyncItemResult:
        async with self._store_lock:
            local = await self._store.find_document_by_external_id(
                descriptor.external_id, self.system
            )
            if options.dry_run:
                return SyncItemResult(
                    document_id=local.id if local else None,
                    external_id=descriptor.external_id,
                    direction="pull",
                    outcome=SyncItemOutcome.WOULD_SYNC,
                )
            try:
                if local is None:
                    result = await self._create_from_remote(descriptor)
                else:
                    result = await self._reconcile_existing(
                        local, descriptor, options.conflict_policy
                    )
                await self._store.commit()
            except AuditWriteError:
                await self._store.rollback()
                raise
            except (ValidationError, SQLAlchemyError) as exc:
                await self._store.rollback()
                logger.warning(
                    "Pull item failed",
                    system=self.system,
                    external_id=descriptor.external_id,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                return SyncItemResult(
                    external_id=descriptor.external_id,
                    direction="pull",
                    outcome=SyncItemOutcome.FAILED,
                    error_kind=getattr(exc, "error_kind", type(exc).__name__),
                    message=str(exc),
                )
        return result

    async def _create_from_remote(self, descriptor: ExternalDocumentDescriptor) -> SyncItemResult:
        if not descriptor.application_number:
            raise ValidationError(
                f"External document {descriptor.external_id} carries no application number"
            )
        application = await self._store.find_application_by_number(descriptor.application_number)
        if application is None:
            raise ValidationError(
                f"External document {descriptor.external_id} references unknown application "
                f"{descriptor.application_number}"
            )

        document, _ = await self._store.upsert_document(
            DocumentPatch(
                application_id=application.id,
                external_dms_id=descriptor.external_id,
                external_system=self.system,
                synced_at=utcnow(),
                needs_resync=False,
                **remote_fields(descriptor),
            )
        )
        await self._store.record_audit_event(
            entity_type="document",
            entity_id=document.id,
            action="dms_pull_created",
            actor=self._actor,
            details={"system": self.system, "external_id": descriptor.external_id},
        )
        return SyncItemResult(
            document_id=document.id,
            external_id=descriptor.external_id,
            direction="pull",
            outcome=SyncItemOutcome.CREATED,
        )

    async def _reconcile_existing(
        self,
        local: Document,
        descriptor: ExternalDocumentDescriptor,
        policy: ConflictPolicy,
    ) -> SyncItemResult:
        fields = remote_fields(descriptor)
        result = SyncItemResult(
            document_id=local.id,
            external_id=descriptor.external_id,
            direction="pull",
            outcome=SyncItemOutcome.UNCHANGED,
        )
        if not differs_from_remote(local, fields):
            # Same content: only remote_wins takes a changed link or metadata.
            if policy != ConflictPolicy.REMOTE_WINS or not differs_from_remote(
                local, fields, REFRESHED_FIELDS
            ):
                return result
        elif policy == ConflictPolicy.LOCAL_WINS:
            result.outcome = SyncItemOutcome.LOCAL_KEPT
            return result
        elif policy == ConflictPolicy.MANUAL:
            await self._store.upsert_document(
                DocumentPatch(document_id=local.id, conflict_flagged=True)
            )
            await self._store.record_audit_event(
                entity_type="document",
                entity_id=local.id,
                action="dms_conflict_flagged",
                actor=self._actor,
                details={"system": self.system, "external_id": descriptor.external_id},
            )
            result.outcome = SyncItemOutcome.CONFLICT_FLAGGED
            return result

        await self._store.upsert_document(
            DocumentPatch(
                document_id=local.id,
                external_dms_id=descriptor.external_id,
                external_system=self.system,
                synced_at=utcnow(),
                needs_resync=False,
                conflict_flagged=False,
                **fields,
            )
        )
        await self._store.record_audit_event(
            entity_type="document",
            entity_id=local.id,
            action="dms_pull_updated",
            actor=self._actor,
            details={
                "system": self.system,
                "external_id": descriptor.external_id,
                "fields": sorted(fields),
            },
        )
        result.outcome = SyncItemOutcome.UPDATED
        return result
