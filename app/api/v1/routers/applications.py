from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.actor import ActorContext
from app.schemas.applications import (
    ApplicationCreate,
    ApplicationListResponse,
    ApplicationOut,
    ApplicationResubmit,
    RejectionReasonOut,
)
from app.services import applications as application_service
from app.services.application_state import REJECTION_REASONS

router = APIRouter(prefix="/me/applications", tags=["applications"])


@router.post(
    "",
    response_model=ApplicationOut,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a financing application",
)
async def submit_application(
    payload: ApplicationCreate,
    actor: ActorContext = Depends(deps.require_owner),
    db: AsyncSession = Depends(deps.get_db_session),
) -> ApplicationOut:
    result = await application_service.submit_application(db, actor, payload)
    return ApplicationOut.model_validate(result.unwrap())


@router.get("", response_model=ApplicationListResponse, summary="List my applications")
async def list_my_applications(
    actor: ActorContext = Depends(deps.require_owner),
    db: AsyncSession = Depends(deps.get_db_session),
) -> ApplicationListResponse:
    items = await application_service.list_owner_applications(db, actor.principal_id)
    return ApplicationListResponse(items=[ApplicationOut.model_validate(item) for item in items], total=len(items))


@router.get(
    "/rejection-reasons",
    response_model=list[RejectionReasonOut],
    summary="Catalogue of rejection reasons and whether each allows resubmission",
)
async def list_rejection_reasons() -> list[RejectionReasonOut]:
    return [
        RejectionReasonOut(code=reason.code, label=reason.label, allows_resubmit=reason.allows_resubmit)
        for reason in REJECTION_REASONS.values()
    ]


@router.get("/{application_id}", response_model=ApplicationOut, summary="Get one of my applications")
async def get_my_application(
    application_id: str,
    actor: ActorContext = Depends(deps.require_owner),
    db: AsyncSession = Depends(deps.get_db_session),
) -> ApplicationOut:
    result = await application_service.get_owner_application(db, actor, application_id)
    return ApplicationOut.model_validate(result.unwrap())


@router.post(
    "/{application_id}/resubmit",
    response_model=ApplicationOut,
    summary="Resubmit a rejected or more-info application",
)
async def resubmit_application(
    application_id: str,
    payload: ApplicationResubmit,
    actor: ActorContext = Depends(deps.require_owner),
    db: AsyncSession = Depends(deps.get_db_session),
) -> ApplicationOut:
    result = await application_service.resubmit_application(db, actor, application_id, payload)
    return ApplicationOut.model_validate(result.unwrap())
