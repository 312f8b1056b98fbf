"""Common FastAPI dependencies for consistent type annotations.

Usage:
    from case_portal.deps import Store, SyncEnv

    async def my_endpoint(store: Store, env: SyncEnv):
        ...
"""

from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from case_portal.database import get_db
from case_portal.services.record_store import RecordStore
from case_portal.services.sync_trigger import SyncEnvironment
from case_portal.services.workflow import WorkflowEngine

DbSession = Annotated[AsyncSession, Depends(get_db)]


def get_record_store(db: DbSession) -> RecordStore:
    return RecordStore(db)


def get_sync_environment(request: Request) -> SyncEnvironment:
    return request.app.state.sync_env


Store = Annotated[RecordStore, Depends(get_record_store)]
SyncEnv = Annotated[SyncEnvironment, Depends(get_sync_environment)]


def get_workflow_engine(store: Store, env: SyncEnv) -> WorkflowEngine:
    return WorkflowEngine(store, env.dispatcher)


Workflow = Annotated[WorkflowEngine, Depends(get_workflow_engine)]

__all__ = ["DbSession", "Store", "SyncEnv", "Workflow"]
