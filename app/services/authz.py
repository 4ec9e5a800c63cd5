from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone as dt_timezone
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from app.core.permissions import (
    SENIOR_ROLES,
    UNLIMITED,
    AdminRole,
    Capability,
    EffectivePermissions,
    capabilities_for,
    effective_permissions,
)

if TYPE_CHECKING:
    from app.models.admin_profile import AdminProfile


class DenialReason(str, Enum):
    INACTIVE_ADMIN = "inactive_admin"
    MISSING_CAPABILITY = "missing_capability"
    EXCEEDS_LIMIT = "exceeds_limit"
    DUAL_AUTHORIZATION_REQUIRED = "dual_authorization_required"
    SAME_ACTOR = "same_actor"
    OUTSIDE_BUSINESS_HOURS = "outside_business_hours"


@dataclass(frozen=True)
class PolicyDecision:
    allowed: bool
    reason: DenialReason | None = None

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = PolicyDecision(True)


def deny(reason: DenialReason) -> PolicyDecision:
    return PolicyDecision(False, reason)


@dataclass(frozen=True)
class BusinessHoursWindow:
    start_hour: int = 6
    end_hour: int = 22
    weekdays: frozenset = frozenset({0, 1, 2, 3, 4})


DEFAULT_BUSINESS_HOURS = BusinessHoursWindow()


def _as_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def permissions_of(admin: "AdminProfile") -> EffectivePermissions:
    return effective_permissions(admin.role, admin.permissions)


def effective_approval_limit(admin: "AdminProfile") -> Decimal:
    """Approval ceiling for one admin.

    ``unlimited_approval`` wins outright. An explicit ``approval_limit`` replaces
    the role default, except that manager and super_admin never drop below
    their role default.
    """
    if admin.unlimited_approval:
        return UNLIMITED
    role = AdminRole.coerce(admin.role)
    role_default = capabilities_for(role).approval_limit
    if admin.approval_limit is None:
        return role_default
    own_limit = _as_decimal(admin.approval_limit)
    if role in SENIOR_ROLES:
        return max(own_limit, role_default)
    return own_limit


def has_capability(admin: "AdminProfile | None", capability: Capability | str) -> PolicyDecision:
    if admin is None:
        return deny(DenialReason.MISSING_CAPABILITY)
    if not admin.is_active:
        return deny(DenialReason.INACTIVE_ADMIN)
    if not permissions_of(admin).has(capability):
        return deny(DenialReason.MISSING_CAPABILITY)
    return ALLOW


def has_custom_permission(admin: "AdminProfile | None", key: str) -> PolicyDecision:
    if admin is None:
        return deny(DenialReason.MISSING_CAPABILITY)
    if not admin.is_active:
        return deny(DenialReason.INACTIVE_ADMIN)
    if not permissions_of(admin).has_custom(key):
        return deny(DenialReason.MISSING_CAPABILITY)
    return ALLOW


def can_approve(admin: "AdminProfile | None") -> PolicyDecision:
    return has_capability(admin, Capability.APPROVE)


def can_approve_amount(admin: "AdminProfile | None", amount) -> PolicyDecision:
    decision = can_approve(admin)
    if not decision:
        return decision
    if _as_decimal(amount) > effective_approval_limit(admin):
        return deny(DenialReason.EXCEEDS_LIMIT)
    return ALLOW


def can_approve_high_value(admin: "AdminProfile", amount, threshold) -> PolicyDecision:
    if _as_decimal(amount) <= _as_decimal(threshold):
        return ALLOW
    if AdminRole.coerce(admin.role) in SENIOR_ROLES:
        return ALLOW
    return deny(DenialReason.DUAL_AUTHORIZATION_REQUIRED)


def requires_dual_authorization(amount, threshold) -> bool:
    return _as_decimal(amount) > _as_decimal(threshold)


def validate_separation_of_duties(reviewer_id: str | None, approver_id: str) -> PolicyDecision:
    if reviewer_id is not None and str(reviewer_id) == str(approver_id):
        return deny(DenialReason.SAME_ACTOR)
    return ALLOW


def is_within_business_hours(
    timestamp: datetime,
    timezone: str = "Africa/Lagos",
    window: BusinessHoursWindow = DEFAULT_BUSINESS_HOURS,
) -> PolicyDecision:
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=dt_timezone.utc)
    local = timestamp.astimezone(ZoneInfo(timezone))
    if local.weekday() not in window.weekdays:
        return deny(DenialReason.OUTSIDE_BUSINESS_HOURS)
    if not (window.start_hour <= local.hour < window.end_hour):
        return deny(DenialReason.OUTSIDE_BUSINESS_HOURS)
    return ALLOW


@dataclass(frozen=True)
class ApprovalPolicy:
    high_value_threshold: Decimal
    dual_authorization_threshold: Decimal
    timezone: str = "Africa/Lagos"
    window: BusinessHoursWindow = DEFAULT_BUSINESS_HOURS
    enforce_business_hours: bool = True


@dataclass(frozen=True)
class ApprovalDecision:
    allowed: bool
    reason: DenialReason | None = None
    dual_required: bool = False
    finalizes: bool = True
    business_hours_overridden: bool = False


def authorize_approval(
    admin: "AdminProfile | None",
    amount,
    policy: ApprovalPolicy,
    *,
    at: datetime,
    reviewer_id: str | None = None,
    primary_approver_id: str | None = None,
    justification: str | None = None,
) -> ApprovalDecision:
    """Combine the approval predicates into one decision.

    Checked in order: capability and limit, business hours for high-value
    amounts, then dual authorization with separation of duties. When a second
    approver is required, ``finalizes`` is true only if ``primary_approver_id``
    names a different admin who already signed off.
    """
    decision = can_approve_amount(admin, amount)
    if not decision:
        return ApprovalDecision(False, decision.reason)

    overridden = False
    if policy.enforce_business_hours and requires_dual_authorization(amount, policy.high_value_threshold):
        hours = is_within_business_hours(at, policy.timezone, policy.window)
        if not hours:
            if not (justification and justification.strip()):
                return ApprovalDecision(False, hours.reason)
            overridden = True

    dual_required = requires_dual_authorization(amount, policy.dual_authorization_threshold) or not can_approve_high_value(
        admin, amount, policy.high_value_threshold
    )
    if not dual_required:
        return ApprovalDecision(True, business_hours_overridden=overridden)

    separation = validate_separation_of_duties(reviewer_id, admin.id)
    if not separation:
        return ApprovalDecision(False, separation.reason, dual_required=True)
    if primary_approver_id is None:
        return ApprovalDecision(
            True,
            DenialReason.DUAL_AUTHORIZATION_REQUIRED,
            dual_required=True,
            finalizes=False,
            business_hours_overridden=overridden,
        )
    separation = validate_separation_of_duties(primary_approver_id, admin.id)
    if not separation:
        return ApprovalDecision(False, separation.reason, dual_required=True)
    return ApprovalDecision(True, dual_required=True, business_hours_overridden=overridden)
