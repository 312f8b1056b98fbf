"""DMS sync trigger API router."""

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from case_portal.deps import Store, SyncEnv
from case_portal.schemas.sync import (
    SyncErrorResponse,
    SyncRequest,
    SyncResponse,
    SyncTriggerAction,
)
from case_portal.services.sync_trigger import execute_sync_request

router = APIRouter(prefix="/sync", tags=["sync"])

ERROR_STATUS_CODES = {
    "NotFoundError": status.HTTP_404_NOT_FOUND,
    "ValidationError": 422,
    "SyncAlreadyRunningError": status.HTTP_409_CONFLICT,
    "SyncConnectionError": status.HTTP_502_BAD_GATEWAY,
    "AuditWriteError": status.HTTP_500_INTERNAL_SERVER_ERROR,
}

ERROR_RESPONSES = {code: {"model": SyncErrorResponse} for code in set(ERROR_STATUS_CODES.values())}


def _error_response(response: SyncErrorResponse) -> JSONResponse:
    return JSONResponse(
        status_code=ERROR_STATUS_CODES.get(response.error, status.HTTP_500_INTERNAL_SERVER_ERROR),
        content=response.model_dump(mode="json"),
    )


@router.post("/{system}", response_model=SyncResponse, responses=ERROR_RESPONSES)
async def trigger_sync(system: str, payload: SyncRequest, store: Store, env: SyncEnv):
    """Run push, pull, full_sync or status against one external system.

    200 means the run completed (check ``result.failed`` for item failures);
    an error status means the run could not start or was aborted.
    """
    response = await execute_sync_request(env, store, system, payload)
    if isinstance(response, SyncErrorResponse):
        return _error_response(response)
    return response


@router.get("/{system}/status", response_model=SyncResponse, responses=ERROR_RESPONSES)
async def get_sync_status(system: str, store: Store, env: SyncEnv):
    response = await execute_sync_request(
        env, store, system, SyncRequest(action=SyncTriggerAction.STATUS)
    )
    if isinstance(response, SyncErrorResponse):
        return _error_response(response)
    return response


@router.post("/{system}/cancel")
async def cancel_sync(system: str, env: SyncEnv) -> dict[str, bool]:
    """Request cooperative cancellation of the run in this process, if any."""
    return {"cancelled": env.cancel(system)}
