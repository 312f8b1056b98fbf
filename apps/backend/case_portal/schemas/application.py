"""Pydantic schemas for applications and their workflow API."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from case_portal.models.application import ApplicationStatus, ApplicationType, Priority
from case_portal.schemas.base import BaseResponse


class ApplicationCreate(BaseModel):
    applicant_id: UUID
    application_type: ApplicationType
    priority: Priority = Priority.NORMAL
    form_data: dict[str, Any] = Field(default_factory=dict)


class TransitionRequest(BaseModel):
    """Status change request carrying the version the caller read."""

    new_status: ApplicationStatus
    actor: str = Field(min_length=1, max_length=128)
    expected_version: int = Field(ge=1)


class FormDataUpdate(BaseModel):
    form_data: dict[str, Any]
    actor: str = Field(min_length=1, max_length=128)
    expected_version: int = Field(ge=1)


class ApplicationResponse(BaseResponse):
    id: UUID
    application_number: str
    applicant_id: UUID
    assigned_officer_id: UUID | None
    application_type: ApplicationType
    status: ApplicationStatus
    priority: Priority
    submitted_at: datetime | None
    review_started_at: datetime | None
    decision_date: datetime | None
    expiry_date: datetime | None
    form_data: dict[str, Any]
    version: int
    created_at: datetime
    updated_at: datetime
