"""Background loop running periodic full syncs against configured systems."""

from __future__ import annotations

import asyncio

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from case_portal.config import settings
from case_portal.database import get_session_maker
from case_portal.logger import get_logger
from case_portal.schemas.sync import SyncErrorResponse, SyncRequest, SyncTriggerAction
from case_portal.services.record_store import RecordStore
from case_portal.services.sync_trigger import SyncEnvironment, execute_sync_request

logger = get_logger(__name__)


async def run_scheduled_syncs(
    env: SyncEnvironment,
    systems: list[str],
    sessionmaker: async_sessionmaker[AsyncSession] | None = None,
) -> dict[str, bool]:
    """Run one full sync per system; returns system -> whether the run completed."""
    session_factory = sessionmaker or get_session_maker()
    outcomes: dict[str, bool] = {}
    for system in systems:
        async with session_factory() as session:
            response = await execute_sync_request(
                env,
                RecordStore(session),
                system,
                SyncRequest(action=SyncTriggerAction.FULL_SYNC),
            )
        if isinstance(response, SyncErrorResponse):
            logger.warning(
                "Scheduled sync did not run",
                system=system,
                error=response.error,
                message=response.message,
            )
            outcomes[system] = False
        else:
            outcomes[system] = True
    return outcomes


async def run_sync_scheduler(env: SyncEnvironment, stop_event: asyncio.Event) -> None:
    """Run periodic syncs until stop_event is set."""
    systems = settings.sync_scheduler_systems or list(env.providers)
    logger.info(
        "Sync scheduler started",
        systems=systems,
        interval_seconds=settings.sync_scheduler_interval_seconds,
    )
    while not stop_event.is_set():
        try:
            await run_scheduled_syncs(env, systems)
        except Exception:
            logger.exception("Scheduled sync pass failed")

        try:
            await asyncio.wait_for(
                stop_event.wait(), timeout=settings.sync_scheduler_interval_seconds
            )
        except TimeoutError:
            continue
