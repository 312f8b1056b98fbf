"""Pydantic schemas for sync runs and the sync trigger API."""

from datetime import datetime
from enum import Enum
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from case_portal.models.sync_log import SyncAction


class ConflictPolicy(str, Enum):
    """What a pull does with a document that diverged locally and remotely."""

    LOCAL_WINS = "local_wins"
    REMOTE_WINS = "remote_wins"
    MANUAL = "manual"


class SyncItemOutcome(str, Enum):
    """Per-document result of a sync run."""

    SYNCED = "synced"
    WOULD_SYNC = "would_sync"
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    LOCAL_KEPT = "local_kept"
    CONFLICT_FLAGGED = "conflict_flagged"
    FAILED = "failed"
    CANCELLED = "cancelled"


SUCCESS_OUTCOMES = frozenset(
    {
        SyncItemOutcome.SYNCED,
        SyncItemOutcome.CREATED,
        SyncItemOutcome.UPDATED,
        SyncItemOutcome.UNCHANGED,
        SyncItemOutcome.LOCAL_KEPT,
        SyncItemOutcome.CONFLICT_FLAGGED,
    }
)


class SyncScope(BaseModel):
    """Which local documents a push considers."""

    document_ids: list[UUID] | None = None
    application_id: UUID | None = None


class SyncOptions(BaseModel):
    """Per-run options."""

    dry_run: bool = False
    conflict_policy: ConflictPolicy = ConflictPolicy.LOCAL_WINS
    max_retries: int | None = Field(default=None, ge=1, le=10)
    max_concurrency: int | None = Field(default=None, ge=1, le=32)


class SyncItemResult(BaseModel):
    """Outcome for one document."""

    document_id: UUID | None = None
    external_id: str | None = None
    direction: Literal["push", "pull"]
    outcome: SyncItemOutcome
    error_kind: str | None = None
    message: str | None = None
    attempts: int = 0


class SyncReport(BaseModel):
    """Aggregate of one run. Content is deterministic; item order is not."""

    action: SyncAction
    system: str
    total_documents: int = 0
    successful: int = 0
    failed: int = 0
    dry_run: int = 0
    cancelled: int = 0
    results: list[SyncItemResult] = Field(default_factory=list)
    started_at: datetime
    finished_at: datetime | None = None

    @classmethod
    def from_results(
        cls,
        *,
        action: SyncAction,
        system: str,
        results: list[SyncItemResult],
        started_at: datetime,
        finished_at: datetime,
    ) -> "SyncReport":
        return cls(
            action=action,
            system=system,
            total_documents=len(results),
            successful=sum(1 for r in results if r.outcome in SUCCESS_OUTCOMES),
            failed=sum(1 for r in results if r.outcome == SyncItemOutcome.FAILED),
            dry_run=sum(1 for r in results if r.outcome == SyncItemOutcome.WOULD_SYNC),
            cancelled=sum(1 for r in results if r.outcome == SyncItemOutcome.CANCELLED),
            results=results,
            started_at=started_at,
            finished_at=finished_at,
        )

    @classmethod
    def combine(cls, action: SyncAction, first: "SyncReport", second: "SyncReport") -> "SyncReport":
        """Concatenate two sequential runs (push then pull) into one report."""
        return cls.from_results(
            action=action,
            system=first.system,
            results=[*first.results, *second.results],
            started_at=first.started_at,
            finished_at=second.finished_at or first.finished_at or first.started_at,
        )


class SyncTriggerAction(str, Enum):
    PUSH = "push"
    PULL = "pull"
    FULL_SYNC = "full_sync"
    STATUS = "status"


class SyncRequest(BaseModel):
    """Body of a sync trigger call."""

    action: SyncTriggerAction
    scope: SyncScope | None = None
    since: datetime | None = None
    options: SyncOptions = Field(default_factory=SyncOptions)


class SyncLogSummary(BaseModel):
    """One row of the sync log, without per-item detail."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    action: SyncAction
    external_system: str
    successful_count: int
    failed_count: int
    total_count: int
    cancelled: bool
    started_at: datetime
    created_at: datetime


class SyncStatus(BaseModel):
    """Result of the status action."""

    system: str
    last_sync_at: datetime | None
    pending_documents: int
    recent_runs: list[SyncLogSummary]


class SyncResponse(BaseModel):
    """Successful trigger response: the run completed, items may still have failed."""

    success: Literal[True] = True
    action: SyncTriggerAction
    result: SyncReport | SyncStatus
    timestamp: datetime


class SyncErrorResponse(BaseModel):
    """The run could not start or was aborted as a whole."""

    success: Literal[False] = False
    action: SyncTriggerAction | None = None
    error: str
    message: str
    timestamp: datetime
