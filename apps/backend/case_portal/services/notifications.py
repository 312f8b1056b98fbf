"""Notification dispatcher contract.

The core emits events and never waits on, or inspects, their delivery.
Email/SMS delivery lives behind a dispatcher implementation outside this
package.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

from case_portal.logger import get_logger, log_exception
from case_portal.models.base import utcnow

logger = get_logger(__name__)


@dataclass(frozen=True)
class StatusChangeEvent:
    application_id: UUID
    old_status: str
    new_status: str
    actor: str
    timestamp: datetime = field(default_factory=utcnow)

    event_type = "application.status_changed"


@dataclass(frozen=True)
class SyncFailureEvent:
    system: str
    item_id: str | None
    error_kind: str
    timestamp: datetime = field(default_factory=utcnow)
    message: str | None = None

    event_type = "sync.item_failed"


NotificationEvent = StatusChangeEvent | SyncFailureEvent


def event_payload(event: NotificationEvent) -> dict[str, Any]:
    payload = asdict(event)
    payload["event_type"] = event.event_type
    for key, value in payload.items():
        if isinstance(value, UUID):
            payload[key] = str(value)
        elif isinstance(value, datetime):
            payload[key] = value.isoformat()
    return payload


class NotificationDispatcher(Protocol):
    async def dispatch(self, event: NotificationEvent) -> None: ...


class LoggingDispatcher:
    """Default dispatcher: records events in the structured log."""

    async def dispatch(self, event: NotificationEvent) -> None:
        logger.info("Notification event", **event_payload(event))


async def emit_event(dispatcher: NotificationDispatcher, event: NotificationEvent) -> None:
    """Hand an event to the dispatcher; delivery failures are logged, not raised."""
    try:
        await dispatcher.dispatch(event)
    except Exception as exc:
        log_exception(
            logger,
            exc,
            "Notification dispatch failed",
            level="warning",
            event_type=event.event_type,
        )
