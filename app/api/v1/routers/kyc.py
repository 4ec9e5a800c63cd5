from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.actor import ActorContext
from app.schemas.documents import DocumentOut
from app.schemas.kyc import KycOverview, KycProfileOut, KycProfileUpdate
from app.services import kyc as kyc_service

router = APIRouter(tags=["kyc"])


def _overview_out(overview: kyc_service.KycOverview) -> KycOverview:
    return KycOverview(
        profile=KycProfileOut.model_validate(overview.profile),
        documents=[DocumentOut.model_validate(document) for document in overview.documents],
        summary=overview.summary,
    )


@router.put("/me/kyc", response_model=KycProfileOut, summary="Create or update my KYC profile")
async def upsert_kyc_profile(
    payload: KycProfileUpdate,
    actor: ActorContext = Depends(deps.require_owner),
    db: AsyncSession = Depends(deps.get_db_session),
) -> KycProfileOut:
    result = await kyc_service.upsert_profile(db, actor, payload)
    return KycProfileOut.model_validate(result.unwrap())


@router.get("/me/kyc", response_model=KycOverview, summary="My KYC status and documents")
async def get_my_kyc(
    actor: ActorContext = Depends(deps.require_owner),
    db: AsyncSession = Depends(deps.get_db_session),
) -> KycOverview:
    result = await kyc_service.get_own_overview(db, actor)
    return _overview_out(result.unwrap())


@router.post(
    "/me/kyc/documents-uploaded",
    response_model=KycProfileOut,
    summary="Mark my KYC documents as uploaded",
)
async def mark_kyc_documents_uploaded(
    actor: ActorContext = Depends(deps.require_owner),
    db: AsyncSession = Depends(deps.get_db_session),
) -> KycProfileOut:
    result = await kyc_service.mark_documents_uploaded(db, actor)
    return KycProfileOut.model_validate(result.unwrap())


@router.get("/admin/kyc/{owner_id}", response_model=KycOverview, summary="Review a subject's KYC case")
async def review_kyc(
    owner_id: str,
    actor: ActorContext = Depends(deps.require_admin),
    db: AsyncSession = Depends(deps.get_db_session),
) -> KycOverview:
    result = await kyc_service.review_overview(db, actor, owner_id)
    return _overview_out(result.unwrap())
