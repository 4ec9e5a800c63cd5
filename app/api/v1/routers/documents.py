from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.actor import ActorContext
from app.schemas.documents import DocumentCreate, DocumentOut, DocumentReject, DocumentReview, DocumentReviewOut
from app.services import documents as document_service

router = APIRouter(tags=["documents"])


@router.post(
    "/me/documents",
    response_model=DocumentOut,
    status_code=status.HTTP_201_CREATED,
    summary="Register an uploaded KYC or application document",
)
async def register_document(
    payload: DocumentCreate,
    actor: ActorContext = Depends(deps.require_owner),
    db: AsyncSession = Depends(deps.get_db_session),
) -> DocumentOut:
    result = await document_service.register_document(db, actor, payload)
    return DocumentOut.model_validate(result.unwrap())


@router.get("/me/documents", response_model=list[DocumentOut], summary="List my documents")
async def list_my_documents(
    application_id: str | None = Query(default=None),
    include_superseded: bool = Query(default=False),
    actor: ActorContext = Depends(deps.require_owner),
    db: AsyncSession = Depends(deps.get_db_session),
) -> list[DocumentOut]:
    items = await document_service.list_owner_documents(
        db, actor.principal_id, application_id=application_id, include_superseded=include_superseded
    )
    return [DocumentOut.model_validate(item) for item in items]


@router.post(
    "/admin/documents/{document_id}/verify",
    response_model=DocumentReviewOut,
    summary="Verify a pending document",
)
async def verify_document(
    document_id: UUID,
    payload: DocumentReview | None = None,
    actor: ActorContext = Depends(deps.require_admin),
    db: AsyncSession = Depends(deps.get_db_session),
) -> DocumentReviewOut:
    payload = payload or DocumentReview()
    result = await document_service.verify_document(
        db, actor, document_id, expected_version=payload.expected_version
    )
    document, parent_status = result.unwrap()
    return DocumentReviewOut(document=DocumentOut.model_validate(document), parent_status=parent_status)


@router.post(
    "/admin/documents/{document_id}/reject",
    response_model=DocumentReviewOut,
    summary="Reject a pending document",
)
async def reject_document(
    document_id: UUID,
    payload: DocumentReject,
    actor: ActorContext = Depends(deps.require_admin),
    db: AsyncSession = Depends(deps.get_db_session),
) -> DocumentReviewOut:
    result = await document_service.reject_document(
        db, actor, document_id, payload.reason, expected_version=payload.expected_version
    )
    document, parent_status = result.unwrap()
    return DocumentReviewOut(document=DocumentOut.model_validate(document), parent_status=parent_status)
