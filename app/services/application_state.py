from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, List


class ApplicationStatus(str, Enum):
    PENDING = "pending"
    REVIEW = "review"
    MORE_INFO = "more-info"
    APPROVED = "approved"
    REJECTED = "rejected"

    @classmethod
    def list_all(cls) -> List[str]:
        return [status.value for status in cls]


# Accepted on input from older intake paths; never stored.
STATUS_ALIASES: Dict[str, ApplicationStatus] = {"new": ApplicationStatus.PENDING}

ACTIVE_STATUSES: FrozenSet[ApplicationStatus] = frozenset(
    {ApplicationStatus.PENDING, ApplicationStatus.REVIEW, ApplicationStatus.MORE_INFO}
)

ADMIN_TARGETS: FrozenSet[ApplicationStatus] = frozenset(
    {
        ApplicationStatus.REVIEW,
        ApplicationStatus.MORE_INFO,
        ApplicationStatus.APPROVED,
        ApplicationStatus.REJECTED,
    }
)
OWNER_TARGETS: FrozenSet[ApplicationStatus] = frozenset({ApplicationStatus.PENDING})

TRANSITIONS: Dict[ApplicationStatus, FrozenSet[ApplicationStatus]] = {
    ApplicationStatus.PENDING: frozenset(
        {ApplicationStatus.REVIEW, ApplicationStatus.MORE_INFO, ApplicationStatus.REJECTED}
    ),
    ApplicationStatus.REVIEW: frozenset(
        {ApplicationStatus.APPROVED, ApplicationStatus.REJECTED, ApplicationStatus.MORE_INFO}
    ),
    ApplicationStatus.MORE_INFO: frozenset({ApplicationStatus.REVIEW, ApplicationStatus.PENDING}),
    ApplicationStatus.APPROVED: frozenset(),
    ApplicationStatus.REJECTED: frozenset({ApplicationStatus.PENDING}),
}


class TransitionError(str, Enum):
    UNKNOWN_STATUS = "unknown_status"
    ILLEGAL_PAIR = "illegal_transition"
    ADMIN_ONLY = "admin_only_status"
    OWNER_ONLY = "owner_only_status"
    RESUBMISSION_REQUIRED = "resubmission_required"
    RESUBMISSION_NOT_ALLOWED = "resubmission_not_allowed"


@dataclass(frozen=True)
class TransitionContext:
    is_business: bool = False
    is_resubmission: bool = False
    rejection_allows_resubmit: bool | None = None


@dataclass(frozen=True)
class TransitionResult:
    is_valid: bool
    error: str | None = None
    reason: TransitionError | None = None


def normalize_status(value: "ApplicationStatus | str | None") -> ApplicationStatus | None:
    if isinstance(value, ApplicationStatus):
        return value
    if value is None:
        return None
    raw = str(value).strip().lower()
    if raw in STATUS_ALIASES:
        return STATUS_ALIASES[raw]
    try:
        return ApplicationStatus(raw)
    except ValueError:
        return None


def _invalid(reason: TransitionError, message: str) -> TransitionResult:
    return TransitionResult(is_valid=False, error=message, reason=reason)


def validate_transition(
    from_status: "ApplicationStatus | str | None",
    to_status: "ApplicationStatus | str | None",
    context: TransitionContext | None = None,
) -> TransitionResult:
    context = context or TransitionContext()
    current = normalize_status(from_status)
    target = normalize_status(to_status)
    if current is None or target is None:
        return _invalid(
            TransitionError.UNKNOWN_STATUS,
            f"Unknown status in transition: {from_status} -> {to_status}",
        )
    if target not in TRANSITIONS[current]:
        return _invalid(
            TransitionError.ILLEGAL_PAIR,
            f"Illegal transition: {current.value} -> {target.value}",
        )
    if context.is_business and target in ADMIN_TARGETS:
        return _invalid(
            TransitionError.ADMIN_ONLY,
            f"Only an admin may move an application to {target.value}",
        )
    if not context.is_business and target in OWNER_TARGETS:
        return _invalid(
            TransitionError.OWNER_ONLY,
            f"Only the applicant may move an application to {target.value}",
        )
    if current == ApplicationStatus.REJECTED:
        if not context.is_resubmission:
            return _invalid(
                TransitionError.RESUBMISSION_REQUIRED,
                "A rejected application can only return to pending through resubmission",
            )
        if context.rejection_allows_resubmit is not True:
            return _invalid(
                TransitionError.RESUBMISSION_NOT_ALLOWED,
                "This rejection does not allow resubmission",
            )
    return TransitionResult(is_valid=True)


def valid_next_statuses(
    status: "ApplicationStatus | str", rejection_allows_resubmit: bool | None = None
) -> List[ApplicationStatus]:
    current = normalize_status(status)
    if current is None:
        return []
    if current == ApplicationStatus.REJECTED and rejection_allows_resubmit is not True:
        return []
    return sorted(TRANSITIONS[current], key=lambda item: item.value)


def is_terminal(status: "ApplicationStatus | str", rejection_allows_resubmit: bool | None = None) -> bool:
    return not valid_next_statuses(status, rejection_allows_resubmit)


def resubmission_updates(now: datetime) -> dict:
    """Field reset applied when an owner resubmits; the application key is kept."""
    return {
        "status": ApplicationStatus.PENDING.value,
        "rejection_reason": None,
        "rejection_allows_resubmit": None,
        "admin_message": None,
        "resubmitted_at": now,
    }


@dataclass(frozen=True)
class RejectionReason:
    code: str
    label: str
    allows_resubmit: bool


REJECTION_REASONS: Dict[str, RejectionReason] = {
    reason.code: reason
    for reason in (
        RejectionReason("incomplete-documentation", "Incomplete documentation", True),
        RejectionReason("unclear-financials", "Financial statements are unclear", True),
        RejectionReason("insufficient-collateral-docs", "Insufficient collateral documentation", True),
        RejectionReason("business-plan-unclear", "Business plan needs more detail", True),
        RejectionReason("requested-amount-high", "Requested amount is too high", True),
        RejectionReason("duration-too-long", "Requested duration is too long", True),
        RejectionReason("business-ineligible", "Business type is not eligible", False),
        RejectionReason("non-shariah-compliant", "Business activity is not Shariah compliant", False),
        RejectionReason("poor-credit-history", "Poor credit history", False),
        RejectionReason("insufficient-revenue", "Insufficient revenue", False),
        RejectionReason("fraudulent-information", "Fraudulent information provided", False),
        RejectionReason("duplicate-application", "Duplicate application", False),
        RejectionReason("kyc-permanently-rejected", "KYC permanently rejected", False),
        RejectionReason("other", "Other", True),
    )
}


def rejection_allows_resubmit(reason_code: str, requested: bool | None = None) -> bool:
    """Resolve the resubmission flag for a rejection.

    Catalogued permanent reasons always lock the application; for every other
    reason an explicit ``requested`` value wins, else the catalogue default.
    """
    reason = REJECTION_REASONS.get(reason_code)
    if reason is not None and not reason.allows_resubmit:
        return False
    if requested is not None:
        return requested
    return reason.allows_resubmit if reason is not None else True
