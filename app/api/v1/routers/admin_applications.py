from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.actor import ActorContext
from app.core.permissions import Capability
from app.schemas.applications import (
    ApplicationListResponse,
    ApplicationOut,
    ApprovalOut,
    ApproveAction,
    AssignAction,
    AssignmentOut,
    AutoAssignAction,
    DualAuthorizationOut,
    RejectAction,
    RequestInfoAction,
    VersionedAction,
)
from app.services import applications as application_service
from app.services import assignments as assignment_service
from app.services.audit import AuditAction

router = APIRouter(prefix="/admin/applications", tags=["admin-applications"])

queue_access = deps.require_capability(
    Capability.VIEW_APPLICATIONS, action=AuditAction.LIST_APPLICATIONS, target_type="application"
)
assignment_history_access = deps.require_capability(
    Capability.VIEW_APPLICATIONS,
    action=AuditAction.LIST_ASSIGNMENTS,
    target_type="application",
    target_param="application_id",
)


def _approval_out(outcome: application_service.ApprovalOutcome) -> ApprovalOut:
    return ApprovalOut(
        application=ApplicationOut.model_validate(outcome.application),
        dual_authorization=(
            DualAuthorizationOut.model_validate(outcome.dual_authorization) if outcome.dual_authorization else None
        ),
        finalized=outcome.finalized,
    )


@router.get("", response_model=ApplicationListResponse, summary="List applications in the review queue")
async def list_applications(
    status_filter: str | None = Query(default=None, alias="status"),
    assigned_to: str | None = Query(default=None),
    owner_id: str | None = Query(default=None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    _: ActorContext = Depends(queue_access),
    db: AsyncSession = Depends(deps.get_db_session),
) -> ApplicationListResponse:
    items, total = await application_service.list_applications(
        db,
        status=status_filter,
        assigned_to=assigned_to,
        owner_id=owner_id,
        offset=(page - 1) * page_size,
        limit=page_size,
    )
    return ApplicationListResponse(items=[ApplicationOut.model_validate(item) for item in items], total=total)


@router.get("/{application_id}", response_model=ApplicationOut, summary="View an application")
async def get_application(
    application_id: str,
    actor: ActorContext = Depends(deps.require_admin),
    db: AsyncSession = Depends(deps.get_db_session),
) -> ApplicationOut:
    result = await application_service.view_application(db, actor, application_id)
    return ApplicationOut.model_validate(result.unwrap())


@router.post("/{application_id}/review", response_model=ApplicationOut, summary="Start due diligence review")
async def start_review(
    application_id: str,
    payload: VersionedAction | None = None,
    actor: ActorContext = Depends(deps.require_admin),
    db: AsyncSession = Depends(deps.get_db_session),
) -> ApplicationOut:
    payload = payload or VersionedAction()
    result = await application_service.start_review(
        db, actor, application_id, expected_version=payload.expected_version
    )
    return ApplicationOut.model_validate(result.unwrap())


@router.post(
    "/{application_id}/request-info",
    response_model=ApplicationOut,
    summary="Ask the applicant for more information",
)
async def request_more_info(
    application_id: str,
    payload: RequestInfoAction,
    actor: ActorContext = Depends(deps.require_admin),
    db: AsyncSession = Depends(deps.get_db_session),
) -> ApplicationOut:
    result = await application_service.request_more_info(
        db, actor, application_id, payload.message, expected_version=payload.expected_version
    )
    return ApplicationOut.model_validate(result.unwrap())


@router.post("/{application_id}/reject", response_model=ApplicationOut, summary="Reject an application")
async def reject_application(
    application_id: str,
    payload: RejectAction,
    actor: ActorContext = Depends(deps.require_admin),
    db: AsyncSession = Depends(deps.get_db_session),
) -> ApplicationOut:
    result = await application_service.reject_application(
        db,
        actor,
        application_id,
        payload.reason,
        allows_resubmit=payload.allows_resubmit,
        message=payload.message,
        expected_version=payload.expected_version,
    )
    return ApplicationOut.model_validate(result.unwrap())


@router.post(
    "/{application_id}/approve",
    response_model=ApprovalOut,
    summary="Approve an application (202 when a second approver is still required)",
)
async def approve_application(
    application_id: str,
    payload: ApproveAction | None = None,
    actor: ActorContext = Depends(deps.require_admin),
    db: AsyncSession = Depends(deps.get_db_session),
):
    payload = payload or ApproveAction()
    result = await application_service.approve_application(
        db,
        actor,
        application_id,
        justification=payload.justification,
        notes=payload.notes,
        expected_version=payload.expected_version,
    )
    if deps.is_pending_second_party(result):
        return deps.accepted(result, _approval_out(result.value).model_dump(mode="json"))
    return _approval_out(result.unwrap())


@router.post("/{application_id}/assign", response_model=AssignmentOut, summary="Assign a reviewer")
async def assign_application(
    application_id: str,
    payload: AssignAction,
    actor: ActorContext = Depends(deps.require_admin),
    db: AsyncSession = Depends(deps.get_db_session),
) -> AssignmentOut:
    result = await assignment_service.assign_application(
        db,
        actor,
        application_id,
        payload.assignee_id,
        assignment_service.AssignmentRequest(
            priority=payload.priority,
            notes=payload.notes,
            due_date=payload.due_date,
            expected_version=payload.expected_version,
        ),
    )
    return AssignmentOut.model_validate(result.unwrap())


@router.post(
    "/{application_id}/auto-assign",
    response_model=AssignmentOut,
    summary="Assign the least loaded eligible reviewer",
)
async def auto_assign_application(
    application_id: str,
    payload: AutoAssignAction | None = None,
    actor: ActorContext = Depends(deps.require_admin),
    db: AsyncSession = Depends(deps.get_db_session),
) -> AssignmentOut:
    payload = payload or AutoAssignAction()
    result = await assignment_service.auto_assign_application(
        db,
        actor,
        application_id,
        assignment_service.AssignmentRequest(
            priority=payload.priority,
            notes=payload.notes,
            due_date=payload.due_date,
            expected_version=payload.expected_version,
        ),
    )
    return AssignmentOut.model_validate(result.unwrap())


@router.get(
    "/{application_id}/assignments",
    response_model=list[AssignmentOut],
    summary="Assignment history for an application",
)
async def list_assignments(
    application_id: str,
    _: ActorContext = Depends(assignment_history_access),
    db: AsyncSession = Depends(deps.get_db_session),
) -> list[AssignmentOut]:
    items = await assignment_service.list_assignments(db, application_id)
    return [AssignmentOut.model_validate(item) for item in items]
