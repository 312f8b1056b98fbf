"""Application workflow API router."""

from uuid import UUID

from fastapi import APIRouter, Query, status

from case_portal.deps import Store, Workflow
from case_portal.schemas.application import (
    ApplicationCreate,
    ApplicationResponse,
    FormDataUpdate,
    TransitionRequest,
)
from case_portal.services.errors import (
    AuditWriteError,
    ConcurrentModificationError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from case_portal.utils import (
    raise_conflict,
    raise_internal_error,
    raise_not_found,
    raise_unprocessable,
)

router = APIRouter(prefix="/applications", tags=["applications"])


def _raise_for(exc: Exception) -> None:
    if isinstance(exc, NotFoundError):
        raise_not_found("Application", cause=exc)
    if isinstance(exc, ValidationError):
        raise_unprocessable(str(exc), errors=exc.errors, cause=exc)
    if isinstance(exc, (InvalidTransitionError, ConcurrentModificationError)):
        raise_conflict(str(exc), cause=exc)
    if isinstance(exc, AuditWriteError):
        raise_internal_error("Change could not be audited and was not applied", cause=exc)
    raise exc


@router.post("", response_model=ApplicationResponse, status_code=status.HTTP_201_CREATED)
async def create_application(payload: ApplicationCreate, workflow: Workflow) -> ApplicationResponse:
    try:
        application = await workflow.create_application(
            payload, actor=f"applicant:{payload.applicant_id}"
        )
    except AuditWriteError as exc:
        _raise_for(exc)
    return ApplicationResponse.model_validate(application)


@router.get("/{application_id}", response_model=ApplicationResponse)
async def get_application(application_id: UUID, store: Store) -> ApplicationResponse:
    try:
        application = await store.get_application(application_id)
    except NotFoundError as exc:
        _raise_for(exc)
    return ApplicationResponse.model_validate(application)


@router.post("/{application_id}/transition", response_model=ApplicationResponse)
async def transition_application(
    application_id: UUID, payload: TransitionRequest, workflow: Workflow
) -> ApplicationResponse:
    """Move an application along the workflow.

    409 for an illegal edge or a stale ``expected_version``; 422 when the
    form data is incomplete for submission.
    """
    try:
        application = await workflow.transition(
            application_id,
            payload.new_status,
            actor=payload.actor,
            expected_version=payload.expected_version,
        )
    except (
        NotFoundError,
        ValidationError,
        InvalidTransitionError,
        ConcurrentModificationError,
        AuditWriteError,
    ) as exc:
        _raise_for(exc)
    return ApplicationResponse.model_validate(application)


@router.patch("/{application_id}/form-data", response_model=ApplicationResponse)
async def update_form_data(
    application_id: UUID, payload: FormDataUpdate, workflow: Workflow
) -> ApplicationResponse:
    try:
        application = await workflow.update_form_data(
            application_id,
            payload.form_data,
            actor=payload.actor,
            expected_version=payload.expected_version,
        )
    except (NotFoundError, ValidationError, ConcurrentModificationError, AuditWriteError) as exc:
        _raise_for(exc)
    return ApplicationResponse.model_validate(application)


@router.delete("/{application_id}", status_code=status.HTTP_204_NO_CONTENT)
async def archive_application(
    application_id: UUID,
    workflow: Workflow,
    actor: str = Query(..., min_length=1, max_length=128),
) -> None:
    try:
        await workflow.archive_application(application_id, actor=actor)
    except (NotFoundError, AuditWriteError) as exc:
        _raise_for(exc)
