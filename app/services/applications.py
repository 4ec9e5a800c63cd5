from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.actor import ActorContext
from app.core.permissions import Capability
from app.core.settings import settings
from app.models.application import Application
from app.models.clock import utcnow
from app.models.dual_authorization import DualAuthorization
from app.schemas.applications import ApplicationCreate, ApplicationResubmit
from app.services import assignments, audit, authz, guards, notifications
from app.services.application_state import (
    ACTIVE_STATUSES,
    ApplicationStatus,
    TransitionContext,
    normalize_status,
    rejection_allows_resubmit,
    resubmission_updates,
    validate_transition,
)
from app.services.concurrency import check_expected_version
from app.services.document_status import recompute_application_documents_status
from app.services.results import ErrorKind, Result

logger = logging.getLogger(__name__)

TARGET_TYPE = "application"
REVIEW_ACTIONS = (audit.AuditAction.REVIEW_APPLICATION,)
EDITABLE_ON_RESUBMIT = (
    "business_name",
    "contract_type",
    "funding_purpose",
    "funding_duration_months",
    "requested_amount",
    "bvn",
)
SNAPSHOT_EXCLUDE = ("bvn",)


@dataclass(frozen=True)
class ApprovalOutcome:
    application: Application
    dual_authorization: DualAuthorization | None
    finalized: bool


def approval_policy() -> authz.ApprovalPolicy:
    return authz.ApprovalPolicy(
        high_value_threshold=settings.high_value_threshold,
        dual_authorization_threshold=settings.dual_authorization_threshold,
        timezone=settings.business_timezone,
        window=authz.BusinessHoursWindow(
            start_hour=settings.business_hours_start,
            end_hour=settings.business_hours_end,
        ),
        enforce_business_hours=settings.enforce_business_hours,
    )


def application_key(owner_id: str, now: datetime) -> str:
    return f"{owner_id}_{int(now.timestamp() * 1000)}"


def _snapshot(application: Application) -> dict[str, Any]:
    return audit.model_snapshot(application, exclude=SNAPSHOT_EXCLUDE)


def _illegal(application: Application, target: ApplicationStatus, context: TransitionContext) -> Result | None:
    outcome = validate_transition(application.status, target, context)
    if outcome.is_valid:
        return None
    return Result.failure(
        ErrorKind.ILLEGAL_TRANSITION,
        code=outcome.reason.value if outcome.reason else "illegal_transition",
        message=outcome.error or "Illegal transition",
        details={"from": application.status, "to": target.value},
    )


async def _active_application_ids(db: AsyncSession, owner_id: str, *, exclude: str | None = None) -> list[str]:
    stmt = select(Application.id).where(
        Application.owner_id == owner_id,
        Application.status.in_([status.value for status in ACTIVE_STATUSES]),
    )
    if exclude is not None:
        stmt = stmt.where(Application.id != exclude)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def _pending_dual_authorization(db: AsyncSession, application_id: str) -> DualAuthorization | None:
    stmt = (
        select(DualAuthorization)
        .where(
            DualAuthorization.application_id == application_id,
            DualAuthorization.status == "pending_secondary",
        )
        .order_by(DualAuthorization.created_at.desc())
        .limit(1)
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def _close_pending_dual_authorization(
    db: AsyncSession, application_id: str, status: str, actor_id: str | None, moment: datetime
) -> DualAuthorization | None:
    """Close an open first approval so it can never finalize a later state of the case."""
    pending = await _pending_dual_authorization(db, application_id)
    if pending is not None:
        pending.status = status
        pending.secondary_approver_id = actor_id
        pending.secondary_approved_at = moment
    return pending


async def _load(db: AsyncSession, application_id: str) -> Application | None:
    return await db.get(Application, application_id, populate_existing=True)


async def _notify(db: AsyncSession, application: Application, event_type: str, message: str, **extra) -> None:
    await notifications.dispatch(
        db,
        notifications.NotificationEvent(
            type=event_type,
            application_id=application.id,
            recipient_id=extra.get("recipient_id", application.owner_id),
            message=message,
        ),
        reload=[application],
    )


# Owner actions


async def submit_application(
    db: AsyncSession,
    actor: ActorContext,
    payload: ApplicationCreate,
    *,
    now: datetime | None = None,
) -> Result[Application]:
    moment = now or utcnow()

    async def attempt() -> Result[Application]:
        def fail(result: Result) -> Result:
            return guards.reject_with_audit(
                db,
                actor,
                result,
                action=audit.AuditAction.SUBMIT_APPLICATION,
                target_type=TARGET_TYPE,
                target_id=actor.principal_id,
            )

        denied = guards.require_owner_kind(actor)
        if denied:
            return fail(denied)
        active = await _active_application_ids(db, actor.principal_id)
        if active:
            return fail(
                guards.invalid(
                    "active_application_exists",
                    "You already have an application under review",
                    {"application_ids": active},
                )
            )
        application = Application(
            id=application_key(actor.principal_id, moment),
            owner_id=actor.principal_id,
            business_name=payload.business_name,
            contract_type=payload.contract_type,
            funding_purpose=payload.funding_purpose,
            funding_duration_months=payload.funding_duration_months,
            requested_amount=payload.requested_amount,
            bvn=payload.bvn,
            status=ApplicationStatus.PENDING.value,
            documents_status="in-review" if payload.documents_submitted else "pending",
            documents_submitted=payload.documents_submitted,
            submitted_at=moment,
            resubmission_count=0,
        )
        db.add(application)
        audit.record_audit_log(
            db,
            actor,
            action=audit.AuditAction.SUBMIT_APPLICATION,
            target_type=TARGET_TYPE,
            target_id=application.id,
            new_value=_snapshot(application),
        )
        await db.flush()
        return Result.success(application)

    result = await guards.run_gated(
        db,
        actor,
        attempt,
        action=audit.AuditAction.SUBMIT_APPLICATION,
        target_type=TARGET_TYPE,
        target_id=actor.principal_id,
    )
    if result.ok:
        application = result.value
        logger.info("Application %s submitted by %s", application.id, actor.principal_id)
        await _notify(
            db,
            application,
            notifications.NotificationType.APPLICATION_SUBMITTED,
            f"Application for {application.business_name} received",
        )
    return result


async def resubmit_application(
    db: AsyncSession,
    actor: ActorContext,
    application_id: str,
    payload: ApplicationResubmit,
    *,
    now: datetime | None = None,
) -> Result[Application]:
    """Return a rejected or more-info application to pending under the same key."""
    moment = now or utcnow()

    async def attempt() -> Result[Application]:
        def fail(result: Result) -> Result:
            return guards.reject_with_audit(
                db,
                actor,
                result,
                action=audit.AuditAction.RESUBMIT_APPLICATION,
                target_type=TARGET_TYPE,
                target_id=application_id,
            )

        denied = guards.require_owner_kind(actor)
        if denied:
            return fail(denied)
        application = await _load(db, application_id)
        if application is None or application.owner_id != actor.principal_id:
            return fail(guards.not_found("Application", application_id))
        stale = check_expected_version("Application", application, payload.expected_version)
        if stale:
            return fail(stale)
        illegal = _illegal(
            application,
            ApplicationStatus.PENDING,
            TransitionContext(
                is_business=True,
                is_resubmission=True,
                rejection_allows_resubmit=application.rejection_allows_resubmit,
            ),
        )
        if illegal:
            return fail(illegal)
        others = await _active_application_ids(db, actor.principal_id, exclude=application.id)
        if others:
            return fail(
                guards.invalid(
                    "active_application_exists",
                    "You already have another application under review",
                    {"application_ids": others},
                )
            )

        before = _snapshot(application)
        updates = payload.model_dump(include=set(EDITABLE_ON_RESUBMIT), exclude_none=True)
        for field, value in updates.items():
            setattr(application, field, value)
        for field, value in resubmission_updates(moment).items():
            setattr(application, field, value)
        application.resubmission_count = (application.resubmission_count or 0) + 1
        await _close_pending_dual_authorization(db, application.id, "superseded", None, moment)
        await recompute_application_documents_status(db, application)

        audit.record_audit_log(
            db,
            actor,
            action=audit.AuditAction.RESUBMIT_APPLICATION,
            target_type=TARGET_TYPE,
            target_id=application.id,
            details={"resubmission_count": application.resubmission_count},
            old_value=before,
            new_value=_snapshot(application),
        )
        await db.flush()
        return Result.success(application)

    result = await guards.run_gated(
        db,
        actor,
        attempt,
        action=audit.AuditAction.RESUBMIT_APPLICATION,
        target_type=TARGET_TYPE,
        target_id=application_id,
    )
    if result.ok:
        application = result.value
        await _notify(
            db,
            application,
            notifications.NotificationType.APPLICATION_RESUBMITTED,
            f"Application {application.id} was resubmitted",
            recipient_id=application.assigned_to,
        )
    return result


# Admin actions


async def _simple_transition(
    db: AsyncSession,
    actor: ActorContext,
    application_id: str,
    *,
    action: str,
    capability: Capability,
    target: ApplicationStatus,
    expected_version: int | None,
    apply,
) -> Result[Application]:
    async def attempt() -> Result[Application]:
        await guards.reload_actor(db, actor)

        def fail(result: Result) -> Result:
            return guards.reject_with_audit(
                db, actor, result, action=action, target_type=TARGET_TYPE, target_id=application_id
            )

        denied = guards.require_capability(actor, capability)
        if denied:
            return fail(denied)
        application = await _load(db, application_id)
        if application is None:
            return fail(guards.not_found("Application", application_id))
        stale = check_expected_version("Application", application, expected_version)
        if stale:
            return fail(stale)
        illegal = _illegal(application, target, TransitionContext(is_business=False))
        if illegal:
            return fail(illegal)

        before = _snapshot(application)
        details = await apply(application) or {}
        application.status = target.value
        audit.record_audit_log(
            db,
            actor,
            action=action,
            target_type=TARGET_TYPE,
            target_id=application.id,
            details={"from": before.get("status"), "to": target.value, **details},
            old_value=before,
            new_value=_snapshot(application),
        )
        await db.flush()
        return Result.success(application)

    return await guards.run_gated(
        db, actor, attempt, action=action, target_type=TARGET_TYPE, target_id=application_id
    )


async def start_review(
    db: AsyncSession,
    actor: ActorContext,
    application_id: str,
    *,
    expected_version: int | None = None,
    now: datetime | None = None,
) -> Result[Application]:
    moment = now or utcnow()

    async def apply(application: Application) -> dict:
        application.reviewed_by = actor.principal_id
        application.reviewed_at = moment
        await assignments.mark_in_review(db, application.id)
        return {}

    result = await _simple_transition(
        db,
        actor,
        application_id,
        action=audit.AuditAction.REVIEW_APPLICATION,
        capability=Capability.REVIEW_DUE_DILIGENCE,
        target=ApplicationStatus.REVIEW,
        expected_version=expected_version,
        apply=apply,
    )
    if result.ok:
        await _notify(
            db,
            result.value,
            notifications.NotificationType.APPLICATION_IN_REVIEW,
            "Your application is now under review",
        )
    return result


async def request_more_info(
    db: AsyncSession,
    actor: ActorContext,
    application_id: str,
    message: str,
    *,
    expected_version: int | None = None,
) -> Result[Application]:
    if not message or not message.strip():
        return await _refuse(
            db,
            actor,
            guards.invalid("message_required", "A message describing the missing information is required"),
            action=audit.AuditAction.REQUEST_CHANGES,
            target_id=application_id,
        )

    async def apply(application: Application) -> dict:
        application.admin_message = message.strip()
        changes: dict[str, Any] = {"message": application.admin_message}
        closed = await _close_pending_dual_authorization(
            db, application.id, "superseded", actor.principal_id, utcnow()
        )
        if closed is not None:
            changes["superseded_dual_authorization_id"] = str(closed.id)
        return changes

    result = await _simple_transition(
        db,
        actor,
        application_id,
        action=audit.AuditAction.REQUEST_CHANGES,
        capability=Capability.REQUEST_CHANGES,
        target=ApplicationStatus.MORE_INFO,
        expected_version=expected_version,
        apply=apply,
    )
    if result.ok:
        await _notify(
            db,
            result.value,
            notifications.NotificationType.APPLICATION_MORE_INFO,
            message.strip(),
        )
    return result


async def reject_application(
    db: AsyncSession,
    actor: ActorContext,
    application_id: str,
    reason: str,
    *,
    allows_resubmit: bool | None = None,
    message: str | None = None,
    expected_version: int | None = None,
    now: datetime | None = None,
) -> Result[Application]:
    moment = now or utcnow()
    if not reason or not reason.strip():
        return await _refuse(
            db,
            actor,
            guards.invalid("rejection_reason_required", "A rejection reason is required"),
            action=audit.AuditAction.REJECT_APPLICATION,
            target_id=application_id,
        )
    reason_code = reason.strip().lower()
    resubmit = rejection_allows_resubmit(reason_code, allows_resubmit)

    async def apply(application: Application) -> dict:
        application.rejection_reason = reason_code
        application.rejection_allows_resubmit = resubmit
        application.admin_message = message.strip() if message else None
        await _close_pending_dual_authorization(db, application.id, "rejected", actor.principal_id, moment)
        await assignments.complete_for_application(db, application.id, moment)
        return {"reason": reason_code, "allows_resubmit": resubmit}

    result = await _simple_transition(
        db,
        actor,
        application_id,
        action=audit.AuditAction.REJECT_APPLICATION,
        capability=Capability.APPROVE,
        target=ApplicationStatus.REJECTED,
        expected_version=expected_version,
        apply=apply,
    )
    if result.ok:
        await _notify(
            db,
            result.value,
            notifications.NotificationType.APPLICATION_REJECTED,
            message or f"Your application was not approved ({reason_code})",
        )
    return result


async def approve_application(
    db: AsyncSession,
    actor: ActorContext,
    application_id: str,
    *,
    justification: str | None = None,
    notes: str | None = None,
    expected_version: int | None = None,
    now: datetime | None = None,
    policy: authz.ApprovalPolicy | None = None,
) -> Result[ApprovalOutcome]:
    """Approve an application, collecting a second approver when the amount calls for one.

    The first approver of a dual-authorization case is recorded on a pending
    ``DualAuthorization`` and the call fails with ``dual_authorization_required``
    carrying that record; a second, distinct approver then finalizes.
    """
    moment = now or utcnow()
    rules = policy or approval_policy()
    action = audit.AuditAction.APPROVE_APPLICATION

    async def attempt() -> Result[ApprovalOutcome]:
        await guards.reload_actor(db, actor)

        def fail(result: Result, **extra) -> Result:
            return guards.reject_with_audit(
                db, actor, result, action=action, target_type=TARGET_TYPE, target_id=application_id, details=extra
            )

        denied = guards.require_capability(actor, Capability.APPROVE)
        if denied:
            return fail(denied)
        application = await _load(db, application_id)
        if application is None:
            return fail(guards.not_found("Application", application_id))
        stale = check_expected_version("Application", application, expected_version)
        if stale:
            return fail(stale)
        illegal = _illegal(application, ApplicationStatus.APPROVED, TransitionContext(is_business=False))
        if illegal:
            return fail(illegal)

        amount = Decimal(str(application.requested_amount))
        pending = await _pending_dual_authorization(db, application.id)
        if pending is not None and Decimal(str(pending.requested_amount)) != amount:
            # a first approval only counts for the amount it was given on
            pending.status = "superseded"
            pending.secondary_approved_at = moment
            pending = None
        reviewer_id = await audit.last_actor_for(db, application.id, REVIEW_ACTIONS) or application.reviewed_by
        decision = authz.authorize_approval(
            actor.admin,
            amount,
            rules,
            at=moment,
            reviewer_id=reviewer_id,
            primary_approver_id=pending.primary_approver_id if pending else None,
            justification=justification,
        )
        if not decision.allowed:
            return fail(
                guards.denial(
                    decision.reason,
                    {
                        "amount": str(amount),
                        "approval_limit": str(authz.effective_approval_limit(actor.admin)),
                        "dual_required": decision.dual_required,
                    },
                )
            )

        audit_details: dict[str, Any] = {"amount": str(amount), "dual_required": decision.dual_required}
        if decision.business_hours_overridden:
            audit_details["business_hours_override"] = True
            audit_details["justification"] = justification

        if not decision.finalizes:
            record = DualAuthorization(
                application_id=application.id,
                requested_amount=amount,
                primary_approver_id=actor.principal_id,
                primary_approved_at=moment,
                primary_notes=notes,
                status="pending_secondary",
            )
            db.add(record)
            await db.flush()
            outcome = ApprovalOutcome(application=application, dual_authorization=record, finalized=False)
            pending_result = Result.failure(
                ErrorKind.DUAL_AUTHORIZATION_REQUIRED,
                code=authz.DenialReason.DUAL_AUTHORIZATION_REQUIRED.value,
                message="Recorded as first approval; a second, distinct approver must finalize",
                details={
                    "dual_authorization_id": str(record.id),
                    "primary_approver_id": actor.principal_id,
                    "requested_amount": str(amount),
                },
                value=outcome,
            )
            return fail(pending_result, **audit_details)

        before = _snapshot(application)
        application.status = ApplicationStatus.APPROVED.value
        application.approved_by = actor.principal_id
        application.approved_at = moment
        if pending is not None:
            pending.secondary_approver_id = actor.principal_id
            pending.secondary_approved_at = moment
            pending.secondary_notes = notes
            pending.status = "approved"
            audit_details["dual_authorization_id"] = str(pending.id)
            audit_details["primary_approver_id"] = pending.primary_approver_id
        await assignments.complete_for_application(db, application.id, moment)
        audit.record_audit_log(
            db,
            actor,
            action=action,
            target_type=TARGET_TYPE,
            target_id=application.id,
            details=audit_details,
            old_value=before,
            new_value=_snapshot(application),
        )
        await db.flush()
        return Result.success(ApprovalOutcome(application=application, dual_authorization=pending, finalized=True))

    result = await guards.run_gated(db, actor, attempt, action=action, target_type=TARGET_TYPE, target_id=application_id)
    if result.ok:
        outcome = result.value
        logger.info("Application %s approved by %s", application_id, actor.principal_id)
        await _notify(
            db,
            outcome.application,
            notifications.NotificationType.APPLICATION_APPROVED,
            "Your application has been approved",
        )
    elif result.value is not None:
        outcome = result.value
        await notifications.dispatch(
            db,
            notifications.NotificationEvent(
                type=notifications.NotificationType.DUAL_AUTHORIZATION_PENDING,
                application_id=application_id,
                message=f"Application {application_id} awaits a second approval",
            ),
            reload=[outcome.application, outcome.dual_authorization],
        )
    return result


async def _refuse(
    db: AsyncSession,
    actor: ActorContext,
    result: Result,
    *,
    action: str,
    target_id: str,
) -> Result:
    guards.reject_with_audit(db, actor, result, action=action, target_type=TARGET_TYPE, target_id=target_id)
    await db.commit()
    return result


# Reads


async def get_owner_application(db: AsyncSession, actor: ActorContext, application_id: str) -> Result[Application]:
    application = await db.get(Application, application_id)
    if application is None or application.owner_id != actor.principal_id:
        return guards.not_found("Application", application_id)
    return Result.success(application)


async def list_owner_applications(db: AsyncSession, owner_id: str) -> list[Application]:
    stmt = select(Application).where(Application.owner_id == owner_id).order_by(Application.created_at.desc())
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def view_application(db: AsyncSession, actor: ActorContext, application_id: str) -> Result[Application]:
    denied = guards.require_capability(actor, Capability.VIEW_APPLICATIONS)
    application = None if denied else await db.get(Application, application_id)
    if denied is None and application is None:
        denied = guards.not_found("Application", application_id)
    if denied:
        return await _refuse(db, actor, denied, action=audit.AuditAction.VIEW_APPLICATION, target_id=application_id)
    audit.record_audit_log(
        db,
        actor,
        action=audit.AuditAction.VIEW_APPLICATION,
        target_type=TARGET_TYPE,
        target_id=application.id,
    )
    await db.commit()
    return Result.success(application)


async def list_applications(
    db: AsyncSession,
    *,
    status: str | None = None,
    assigned_to: str | None = None,
    owner_id: str | None = None,
    offset: int = 0,
    limit: int = 50,
) -> tuple[list[Application], int]:
    filters = []
    if status:
        normalized = normalize_status(status)
        filters.append(Application.status == (normalized.value if normalized else status))
    if assigned_to:
        filters.append(Application.assigned_to == assigned_to)
    if owner_id:
        filters.append(Application.owner_id == owner_id)
    total = (await db.execute(select(func.count()).select_from(Application).where(*filters))).scalar_one()
    stmt = (
        select(Application)
        .where(*filters)
        .order_by(Application.created_at.desc())
        .offset(offset)
        .limit(limit)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all()), int(total or 0)
