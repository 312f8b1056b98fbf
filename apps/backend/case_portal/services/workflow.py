"""Application status workflow: legal transitions, derived timestamps, versioning."""

from __future__ import annotations

from typing import Any, Protocol
from uuid import UUID, uuid4

from case_portal.logger import get_logger
from case_portal.models import Application, ApplicationStatus, ApplicationType
from case_portal.models.application import generate_application_number
from case_portal.models.base import utcnow
from case_portal.schemas.application import ApplicationCreate
from case_portal.services.errors import (
    ConcurrentModificationError,
    InvalidTransitionError,
    ValidationError,
)
from case_portal.services.notifications import (
    NotificationDispatcher,
    StatusChangeEvent,
    emit_event,
)
from case_portal.services.record_store import RecordStore

logger = get_logger(__name__)

S = ApplicationStatus

ALLOWED_TRANSITIONS: dict[ApplicationStatus, frozenset[ApplicationStatus]] = {
    S.DRAFT: frozenset({S.SUBMITTED, S.WITHDRAWN}),
    S.SUBMITTED: frozenset({S.UNDER_REVIEW, S.WITHDRAWN, S.ON_HOLD, S.EXPIRED}),
    S.UNDER_REVIEW: frozenset(
        {
            S.ADDITIONAL_INFO_REQUIRED,
            S.INTERVIEW_SCHEDULED,
            S.DECISION_PENDING,
            S.WITHDRAWN,
            S.ON_HOLD,
            S.EXPIRED,
        }
    ),
    S.ADDITIONAL_INFO_REQUIRED: frozenset({S.UNDER_REVIEW, S.WITHDRAWN, S.ON_HOLD, S.EXPIRED}),
    S.INTERVIEW_SCHEDULED: frozenset(
        {S.UNDER_REVIEW, S.DECISION_PENDING, S.WITHDRAWN, S.ON_HOLD, S.EXPIRED}
    ),
    S.DECISION_PENDING: frozenset({S.APPROVED, S.REJECTED, S.WITHDRAWN, S.ON_HOLD}),
    S.ON_HOLD: frozenset(
        {
            S.UNDER_REVIEW,
            S.ADDITIONAL_INFO_REQUIRED,
            S.INTERVIEW_SCHEDULED,
            S.DECISION_PENDING,
            S.WITHDRAWN,
            S.EXPIRED,
        }
    ),
    S.APPROVED: frozenset({S.APPEALED}),
    S.REJECTED: frozenset({S.APPEALED}),
    S.APPEALED: frozenset({S.UNDER_REVIEW, S.DECISION_PENDING, S.WITHDRAWN}),
    S.WITHDRAWN: frozenset(),
    S.EXPIRED: frozenset(),
}

TERMINAL_STATUSES = frozenset(status for status, targets in ALLOWED_TRANSITIONS.items() if not targets)
DECISION_STATUSES = frozenset({S.APPROVED, S.REJECTED})
EDITABLE_STATUSES = frozenset({S.DRAFT, S.ADDITIONAL_INFO_REQUIRED})


def can_transition(current: ApplicationStatus, new: ApplicationStatus) -> bool:
    return new in ALLOWED_TRANSITIONS.get(current, frozenset())


class FormValidator(Protocol):
    """Form-definition collaborator; returns field -> error message."""

    def validate(
        self, application_type: ApplicationType, form_data: dict[str, Any]
    ) -> dict[str, str]: ...


BASE_REQUIRED_FIELDS = ("full_name", "date_of_birth", "nationality", "passport_number")

REQUIRED_FORM_FIELDS: dict[ApplicationType, tuple[str, ...]] = {
    ApplicationType.VISA_APPLICATION: ("purpose_of_visit", "intended_arrival_date"),
    ApplicationType.WORK_PERMIT: ("employer_name", "job_title"),
    ApplicationType.PERMANENT_RESIDENCE: ("current_address",),
    ApplicationType.CITIZENSHIP: ("residence_since",),
    ApplicationType.FAMILY_REUNIFICATION: ("sponsor_name", "relationship_to_sponsor"),
    ApplicationType.STUDENT_VISA: ("institution_name", "program_start_date"),
    ApplicationType.ASYLUM: ("country_of_origin",),
    ApplicationType.VISA_EXTENSION: ("current_visa_number", "requested_until"),
}


class RequiredFieldsValidator:
    """Checks that every required field for the application type is present and non-blank."""

    def __init__(self, required: dict[ApplicationType, tuple[str, ...]] | None = None) -> None:
        self.required = REQUIRED_FORM_FIELDS if required is None else required

    def validate(
        self, application_type: ApplicationType, form_data: dict[str, Any]
    ) -> dict[str, str]:
        fields = (*BASE_REQUIRED_FIELDS, *self.required.get(application_type, ()))
        errors: dict[str, str] = {}
        for name in fields:
            value = form_data.get(name)
            if value is None or (isinstance(value, str) and not value.strip()):
                errors[name] = "required"
        return errors


class WorkflowEngine:
    """Drives applications through the status state machine.

    Every accepted status or form_data change bumps ``version`` by exactly one,
    is audited in the same transaction and, for status changes, is followed by
    one StatusChangeEvent after commit.
    """

    def __init__(
        self,
        store: RecordStore,
        dispatcher: NotificationDispatcher,
        validator: FormValidator | None = None,
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.validator = validator or RequiredFieldsValidator()

    async def create_application(self, data: ApplicationCreate, *, actor: str) -> Application:
        application_id = uuid4()
        created_at = utcnow()
        application = Application(
            id=application_id,
            application_number=generate_application_number(created_at, application_id),
            applicant_id=data.applicant_id,
            application_type=data.application_type,
            priority=data.priority,
            status=ApplicationStatus.DRAFT,
            form_data=dict(data.form_data),
            version=1,
            created_at=created_at,
            updated_at=created_at,
        )
        await self._write(
            self.store.add_application(application),
            application_id=application_id,
            action="application_created",
            actor=actor,
            details={"application_number": application.application_number},
        )
        logger.info(
            "Application created",
            application_id=str(application_id),
            application_number=application.application_number,
            application_type=data.application_type.value,
        )
        return application

    async def transition(
        self,
        application_id: UUID,
        new_status: ApplicationStatus,
        *,
        actor: str,
        expected_version: int,
    ) -> Application:
        """Move an application to new_status.

        Raises:
            ConcurrentModificationError: expected_version is stale
            InvalidTransitionError: new_status is not reachable from the current status
            ValidationError: submitting a draft whose form data is incomplete
        """
        application = await self.store.get_application(application_id)
        if application.version != expected_version:
            raise ConcurrentModificationError(expected_version, application.version)

        old_status = application.status
        if not can_transition(old_status, new_status):
            logger.info(
                "Rejected status transition",
                application_id=str(application_id),
                current=old_status.value,
                requested=new_status.value,
            )
            raise InvalidTransitionError(old_status.value, new_status.value)

        if new_status == ApplicationStatus.SUBMITTED:
            errors = self.validator.validate(application.application_type, application.form_data or {})
            if errors:
                raise ValidationError(
                    f"Application {application.application_number} is missing required fields",
                    errors=errors,
                )

        now = utcnow()
        values: dict[str, Any] = {"status": new_status}
        if old_status == ApplicationStatus.DRAFT and application.submitted_at is None:
            values["submitted_at"] = now
        if new_status == ApplicationStatus.UNDER_REVIEW and application.review_started_at is None:
            values["review_started_at"] = now
        # First decision is the date of record; re-decisions after appeal keep it.
        if new_status in DECISION_STATUSES and application.decision_date is None:
            values["decision_date"] = now

        updated = await self._write(
            self.store.update_application_versioned(application_id, expected_version, values),
            application_id=application_id,
            action="status_changed",
            actor=actor,
            details={"from": old_status.value, "to": new_status.value},
        )
        logger.info(
            "Application status changed",
            application_id=str(application_id),
            old_status=old_status.value,
            new_status=new_status.value,
            version=updated.version,
        )

        await emit_event(
            self.dispatcher,
            StatusChangeEvent(
                application_id=application_id,
                old_status=old_status.value,
                new_status=new_status.value,
                actor=actor,
                timestamp=now,
            ),
        )
        return updated

    async def update_form_data(
        self,
        application_id: UUID,
        form_data: dict[str, Any],
        *,
        actor: str,
        expected_version: int,
    ) -> Application:
        """Replace form_data while the application is still editable by the applicant."""
        application = await self.store.get_application(application_id)
        if application.version != expected_version:
            raise ConcurrentModificationError(expected_version, application.version)
        if application.status not in EDITABLE_STATUSES:
            raise ValidationError(
                f"Form data cannot be edited while application is {application.status.value}",
                errors={"status": application.status.value},
            )

        updated = await self._write(
            self.store.update_application_versioned(
                application_id, expected_version, {"form_data": dict(form_data)}
            ),
            application_id=application_id,
            action="form_data_updated",
            actor=actor,
            details={"fields": sorted(form_data)},
        )
        logger.info(
            "Application form data updated",
            application_id=str(application_id),
            version=updated.version,
        )
        return updated

    async def archive_application(self, application_id: UUID, *, actor: str) -> Application:
        """Soft delete for retention; leaves status and version untouched."""
        application = await self.store.get_application(application_id)
        await self._write(
            self.store.archive_application(application),
            application_id=application_id,
            action="application_archived",
            actor=actor,
            details={"status": application.status.value},
        )
        logger.info("Application archived", application_id=str(application_id))
        return application

    async def _write(
        self,
        mutation,
        *,
        application_id: UUID,
        action: str,
        actor: str,
        details: dict[str, Any],
    ) -> Application:
        """Run a mutation and its audit row as one transaction."""
        try:
            result = await mutation
            await self.store.record_audit_event(
                entity_type="application",
                entity_id=application_id,
                action=action,
                actor=actor,
                details=details,
            )
            await self.store.commit()
        except Exception:
            await self.store.rollback()
            raise
        return result
