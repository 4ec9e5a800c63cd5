from __future__ import annotations

from typing import Any, Awaitable, Callable, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.actor import ActorContext
from app.core.permissions import Capability
from app.models.admin_profile import AdminProfile
from app.services import audit, authz
from app.services.concurrency import run_with_version_retry
from app.services.results import ErrorKind, Result

T = TypeVar("T")

DENIAL_KINDS = {
    authz.DenialReason.INACTIVE_ADMIN: ErrorKind.PERMISSION_DENIED,
    authz.DenialReason.MISSING_CAPABILITY: ErrorKind.PERMISSION_DENIED,
    authz.DenialReason.EXCEEDS_LIMIT: ErrorKind.LIMIT_EXCEEDED,
    authz.DenialReason.DUAL_AUTHORIZATION_REQUIRED: ErrorKind.DUAL_AUTHORIZATION_REQUIRED,
    authz.DenialReason.SAME_ACTOR: ErrorKind.SEPARATION_OF_DUTIES_VIOLATION,
    authz.DenialReason.OUTSIDE_BUSINESS_HOURS: ErrorKind.BUSINESS_HOURS_RESTRICTED,
}

DENIAL_MESSAGES = {
    authz.DenialReason.INACTIVE_ADMIN: "Admin account is inactive",
    authz.DenialReason.MISSING_CAPABILITY: "Missing capability",
    authz.DenialReason.EXCEEDS_LIMIT: "Amount exceeds your approval limit",
    authz.DenialReason.DUAL_AUTHORIZATION_REQUIRED: "A second, distinct approver is required",
    authz.DenialReason.SAME_ACTOR: "The reviewer of an application cannot also approve it",
    authz.DenialReason.OUTSIDE_BUSINESS_HOURS: "High-value actions are restricted to business hours",
}


def denial(reason: authz.DenialReason, details: dict[str, Any] | None = None) -> Result:
    return Result.failure(
        DENIAL_KINDS[reason],
        code=reason.value,
        message=DENIAL_MESSAGES[reason],
        details=details,
    )


def not_found(entity: str, key: Any) -> Result:
    return Result.failure(
        ErrorKind.NOT_FOUND,
        code=f"{entity.lower()}_not_found",
        message=f"{entity} {key} not found",
        details={"id": str(key)},
    )


def invalid(code: str, message: str, details: dict[str, Any] | None = None) -> Result:
    return Result.failure(ErrorKind.INVALID_REQUEST, code=code, message=message, details=details)


def forbidden(code: str, message: str, details: dict[str, Any] | None = None) -> Result:
    return Result.failure(ErrorKind.PERMISSION_DENIED, code=code, message=message, details=details)


async def reload_actor(db: AsyncSession, actor: ActorContext) -> ActorContext:
    """Refresh the acting admin's profile so every attempt sees current permissions."""
    if actor.is_admin:
        actor.bind_admin(await db.get(AdminProfile, actor.principal_id, populate_existing=True))
    return actor


def require_capability(actor: ActorContext, *capabilities: Capability) -> Result | None:
    if not actor.is_admin:
        return forbidden("admin_required", "Only admins may perform this action")
    for capability in capabilities:
        decision = authz.has_capability(actor.admin, capability)
        if not decision:
            return denial(decision.reason, {"capability": capability.value})
    return None


def require_owner_kind(actor: ActorContext) -> Result | None:
    if not actor.is_owner_kind:
        return forbidden("owner_required", "Only the applicant may perform this action")
    return None


def reject_with_audit(
    db: AsyncSession,
    actor: ActorContext,
    result: Result,
    *,
    action: str,
    target_type: str,
    target_id: Any,
    details: dict[str, Any] | None = None,
) -> Result:
    """Record the refused attempt and hand the failure back unchanged."""
    error = result.error
    audit.record_audit_log(
        db,
        actor,
        action=action,
        target_type=target_type,
        target_id=target_id,
        success=False,
        error_reason=error.code if error else None,
        details={**(error.details if error else {}), **(details or {})},
    )
    return result


async def authorize_access(
    db: AsyncSession,
    actor: ActorContext,
    *capabilities: Capability,
    action: str,
    target_type: str,
    target_id: Any,
) -> Result[ActorContext]:
    """Gate a read-only endpoint, writing one committed audit entry for the decision."""
    denied = require_capability(actor, *capabilities)
    if denied:
        reject_with_audit(db, actor, denied, action=action, target_type=target_type, target_id=target_id)
    else:
        audit.record_audit_log(db, actor, action=action, target_type=target_type, target_id=target_id)
    await db.commit()
    return denied or Result.success(actor)


async def run_gated(
    db: AsyncSession,
    actor: ActorContext,
    attempt: Callable[[], Awaitable[Result[T]]],
    *,
    action: str,
    target_type: str,
    target_id: Any,
) -> Result[T]:
    """Run ``attempt`` with version retry; an exhausted retry is audited as a failure."""
    return await run_with_version_retry(
        db,
        attempt,
        entity=target_type,
        key=str(target_id),
        on_exhausted=lambda result: reject_with_audit(
            db, actor, result, action=action, target_type=target_type, target_id=target_id
        ),
    )
