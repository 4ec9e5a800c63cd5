from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.actor import ActorContext
from app.core.permissions import Capability
from app.models.admin_profile import AdminProfile
from app.models.application import Application
from app.models.assignment import Assignment
from app.models.clock import utcnow
from app.services import audit, authz, guards, notifications
from app.services.application_state import ApplicationStatus, normalize_status
from app.services.concurrency import check_expected_version
from app.services.results import Result

logger = logging.getLogger(__name__)

OPEN_ASSIGNMENT_STATUSES = ("pending", "in_review")
CLOSED_APPLICATION_STATUSES = (ApplicationStatus.APPROVED, ApplicationStatus.REJECTED)


@dataclass(frozen=True)
class AssignmentRequest:
    priority: str = "medium"
    notes: str | None = None
    due_date: datetime | None = None
    expected_version: int | None = None


def is_eligible_reviewer(admin: AdminProfile) -> bool:
    return bool(authz.has_capability(admin, Capability.REVIEW_DUE_DILIGENCE))


def has_capacity(admin: AdminProfile) -> bool:
    return (admin.current_workload or 0) < (admin.max_workload or 0)


def workload_ratio(admin: AdminProfile) -> float:
    if not admin.max_workload:
        return 1.0
    return (admin.current_workload or 0) / admin.max_workload


def pick_least_loaded(candidates: list[AdminProfile], *, exclude: str | None = None) -> AdminProfile | None:
    eligible = [
        admin
        for admin in candidates
        if admin.id != exclude and is_eligible_reviewer(admin) and has_capacity(admin)
    ]
    if not eligible:
        return None
    return min(eligible, key=lambda admin: (workload_ratio(admin), admin.current_workload or 0, admin.id))


async def open_assignments(db: AsyncSession, application_id: str) -> list[Assignment]:
    stmt = select(Assignment).where(
        Assignment.application_id == application_id,
        Assignment.status.in_(OPEN_ASSIGNMENT_STATUSES),
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def _release(db: AsyncSession, assignment: Assignment, status: str, now: datetime) -> None:
    assignment.status = status
    assignment.completed_at = now
    assignee = await db.get(AdminProfile, assignment.assigned_to)
    if assignee is not None and assignee.current_workload:
        assignee.current_workload = assignee.current_workload - 1


async def mark_in_review(db: AsyncSession, application_id: str) -> None:
    for assignment in await open_assignments(db, application_id):
        assignment.status = "in_review"


async def complete_for_application(db: AsyncSession, application_id: str, now: datetime) -> int:
    """Close open assignments once a decision is made; returns how many were closed."""
    closed = 0
    for assignment in await open_assignments(db, application_id):
        await _release(db, assignment, "completed", now)
        closed += 1
    return closed


async def _assign_once(
    db: AsyncSession,
    actor: ActorContext,
    application_id: str,
    choose: Callable[[Application], Awaitable[AdminProfile | Result | None]],
    request: AssignmentRequest,
    now: datetime,
) -> Result[Assignment]:
    await guards.reload_actor(db, actor)

    def fail(result: Result) -> Result:
        return guards.reject_with_audit(
            db,
            actor,
            result,
            action=audit.AuditAction.ASSIGN_REVIEWER,
            target_type="application",
            target_id=application_id,
        )

    denied = guards.require_capability(actor, Capability.ASSIGN_REVIEWS)
    if denied:
        return fail(denied)
    application = await db.get(Application, application_id, populate_existing=True)
    if application is None:
        return fail(guards.not_found("Application", application_id))
    stale = check_expected_version("Application", application, request.expected_version)
    if stale:
        return fail(stale)
    if normalize_status(application.status) in CLOSED_APPLICATION_STATUSES:
        return fail(
            guards.invalid(
                "application_closed",
                f"Application {application_id} is {application.status} and cannot be assigned",
            )
        )

    chosen = await choose(application)
    if isinstance(chosen, Result):
        return fail(chosen)
    if chosen is None:
        return fail(guards.invalid("no_available_reviewer", "No active reviewer has spare capacity"))
    assignee = chosen
    if not assignee.is_active or not is_eligible_reviewer(assignee):
        return fail(
            guards.invalid(
                "assignee_not_eligible",
                f"Admin {assignee.id} cannot review applications",
                {"assignee_id": assignee.id},
            )
        )
    if application.assigned_to == assignee.id:
        return fail(
            guards.invalid(
                "already_assigned",
                f"Application is already assigned to {assignee.id}",
                {"assignee_id": assignee.id},
            )
        )
    if not has_capacity(assignee):
        return fail(
            guards.invalid(
                "assignee_at_capacity",
                f"Admin {assignee.id} has reached their maximum workload",
                {"current_workload": assignee.current_workload, "max_workload": assignee.max_workload},
            )
        )

    previous_assignee = application.assigned_to
    for assignment in await open_assignments(db, application.id):
        await _release(db, assignment, "reassigned", now)

    assignment = Assignment(
        application_id=application.id,
        assigned_to=assignee.id,
        assigned_by=actor.principal_id,
        status="pending",
        priority=request.priority,
        notes=request.notes,
        due_date=request.due_date,
        assigned_at=now,
    )
    db.add(assignment)
    assignee.current_workload = (assignee.current_workload or 0) + 1
    application.assigned_to = assignee.id

    audit.record_audit_log(
        db,
        actor,
        action=audit.AuditAction.REASSIGN_REVIEWER if previous_assignee else audit.AuditAction.ASSIGN_REVIEWER,
        target_type="application",
        target_id=application.id,
        details={
            "assignee_id": assignee.id,
            "previous_assignee_id": previous_assignee,
            "priority": request.priority,
        },
    )
    await db.flush()
    return Result.success(assignment)


async def _run_assignment(
    db: AsyncSession,
    actor: ActorContext,
    application_id: str,
    choose: Callable[[Application], Awaitable[AdminProfile | Result | None]],
    request: AssignmentRequest,
    now: datetime | None,
) -> Result[Assignment]:
    moment = now or utcnow()

    async def attempt() -> Result[Assignment]:
        return await _assign_once(db, actor, application_id, choose, request, moment)

    result = await guards.run_gated(
        db,
        actor,
        attempt,
        action=audit.AuditAction.ASSIGN_REVIEWER,
        target_type="application",
        target_id=application_id,
    )
    if result.ok:
        assignment = result.value
        logger.info("Application %s assigned to %s by %s", application_id, assignment.assigned_to, actor.principal_id)
        await notifications.dispatch(
            db,
            notifications.NotificationEvent(
                type=notifications.NotificationType.APPLICATION_ASSIGNED,
                application_id=application_id,
                recipient_id=assignment.assigned_to,
                message=f"Application {application_id} has been assigned to you",
            ),
            reload=[assignment],
        )
    return result


async def assign_application(
    db: AsyncSession,
    actor: ActorContext,
    application_id: str,
    assignee_id: str,
    request: AssignmentRequest | None = None,
    *,
    now: datetime | None = None,
) -> Result[Assignment]:
    async def choose(application: Application) -> AdminProfile | Result:
        assignee = await db.get(AdminProfile, assignee_id, populate_existing=True)
        if assignee is None:
            return guards.not_found("Admin", assignee_id)
        return assignee

    return await _run_assignment(db, actor, application_id, choose, request or AssignmentRequest(), now)


async def auto_assign_application(
    db: AsyncSession,
    actor: ActorContext,
    application_id: str,
    request: AssignmentRequest | None = None,
    *,
    now: datetime | None = None,
) -> Result[Assignment]:
    async def choose(application: Application) -> AdminProfile | None:
        stmt = select(AdminProfile).where(AdminProfile.is_active.is_(True)).execution_options(
            populate_existing=True
        )
        candidates = list((await db.execute(stmt)).scalars().all())
        return pick_least_loaded(candidates, exclude=application.assigned_to)

    return await _run_assignment(db, actor, application_id, choose, request or AssignmentRequest(), now)


async def list_assignments(db: AsyncSession, application_id: str) -> list[Assignment]:
    stmt = (
        select(Assignment)
        .where(Assignment.application_id == application_id)
        .order_by(Assignment.assigned_at.desc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())
