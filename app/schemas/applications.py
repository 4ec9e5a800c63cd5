from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.services.application_state import REJECTION_REASONS


class ContractType(str, Enum):
    MURABAHA = "murabaha"
    MUSHARAKA = "musharaka"
    MUDARABA = "mudaraba"
    IJARA = "ijara"
    SALAM = "salam"
    ISTISNA = "istisna"


class AssignmentPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


def _validate_bvn(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = value.strip()
    if len(cleaned) != 11 or not cleaned.isdigit():
        raise ValueError("BVN must be exactly 11 digits")
    return cleaned


class ApplicationCreate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    business_name: str = Field(min_length=1, max_length=255)
    contract_type: ContractType
    funding_purpose: str | None = Field(default=None, max_length=5000)
    funding_duration_months: int = Field(ge=1, le=120)
    requested_amount: Decimal = Field(gt=0, max_digits=18, decimal_places=2)
    bvn: str | None = None
    documents_submitted: bool = False

    @field_validator("bvn")
    @classmethod
    def validate_bvn(cls, value: str | None) -> str | None:
        return _validate_bvn(value)


class ApplicationResubmit(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    expected_version: int | None = Field(default=None, ge=1)
    business_name: str | None = Field(default=None, min_length=1, max_length=255)
    contract_type: ContractType | None = None
    funding_purpose: str | None = Field(default=None, max_length=5000)
    funding_duration_months: int | None = Field(default=None, ge=1, le=120)
    requested_amount: Decimal | None = Field(default=None, gt=0, max_digits=18, decimal_places=2)
    bvn: str | None = None

    @field_validator("bvn")
    @classmethod
    def validate_bvn(cls, value: str | None) -> str | None:
        return _validate_bvn(value)


class VersionedAction(BaseModel):
    expected_version: int | None = Field(default=None, ge=1)


class RequestInfoAction(VersionedAction):
    message: str = Field(min_length=1, max_length=2000)


class RejectAction(VersionedAction):
    reason: str = Field(min_length=1, max_length=64)
    allows_resubmit: bool | None = None
    message: str | None = Field(default=None, max_length=2000)

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, value: str) -> str:
        cleaned = value.strip().lower()
        if cleaned not in REJECTION_REASONS:
            raise ValueError(f"Unknown rejection reason: {value}")
        return cleaned


class ApproveAction(VersionedAction):
    justification: str | None = Field(default=None, max_length=2000)
    notes: str | None = Field(default=None, max_length=2000)


class AssignAction(VersionedAction):
    model_config = ConfigDict(use_enum_values=True)

    assignee_id: str = Field(min_length=1, max_length=128)
    priority: AssignmentPriority = AssignmentPriority.MEDIUM
    notes: str | None = Field(default=None, max_length=2000)
    due_date: datetime | None = None


class AutoAssignAction(VersionedAction):
    model_config = ConfigDict(use_enum_values=True)

    priority: AssignmentPriority = AssignmentPriority.MEDIUM
    notes: str | None = Field(default=None, max_length=2000)
    due_date: datetime | None = None


class ApplicationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True, json_encoders={Decimal: lambda value: str(value)})

    id: str
    owner_id: str
    business_name: str
    contract_type: str
    funding_purpose: str | None = None
    funding_duration_months: int
    requested_amount: Decimal
    status: str
    rejection_reason: str | None = None
    rejection_allows_resubmit: bool | None = None
    admin_message: str | None = None
    documents_status: str
    documents_submitted: bool
    assigned_to: str | None = None
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    approved_by: str | None = None
    approved_at: datetime | None = None
    submitted_at: datetime | None = None
    resubmitted_at: datetime | None = None
    resubmission_count: int
    version: int
    created_at: datetime
    updated_at: datetime


class ApplicationListResponse(BaseModel):
    items: list[ApplicationOut]
    total: int


class DualAuthorizationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True, json_encoders={Decimal: lambda value: str(value)})

    id: UUID
    application_id: str
    requested_amount: Decimal
    primary_approver_id: str
    primary_approved_at: datetime
    primary_notes: str | None = None
    secondary_approver_id: str | None = None
    secondary_approved_at: datetime | None = None
    secondary_notes: str | None = None
    status: str


class ApprovalOut(BaseModel):
    application: ApplicationOut
    dual_authorization: DualAuthorizationOut | None = None
    finalized: bool


class AssignmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    application_id: str
    assigned_to: str
    assigned_by: str
    status: str
    priority: str
    notes: str | None = None
    due_date: datetime | None = None
    assigned_at: datetime
    completed_at: datetime | None = None


class RejectionReasonOut(BaseModel):
    code: str
    label: str
    allows_resubmit: bool
