from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.application import Application
from app.models.document import Document
from app.models.kyc_profile import KycProfile


class DocumentStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class CompositeStatus(str, Enum):
    PENDING = "pending"
    IN_REVIEW = "in-review"
    VERIFIED = "verified"
    REJECTED = "rejected"


def _status_of(document: Any) -> DocumentStatus:
    if isinstance(document, str):
        raw = document
    elif isinstance(document, dict):
        raw = document.get("status")
    else:
        raw = getattr(document, "status", None)
    try:
        return DocumentStatus(str(raw).strip().lower())
    except ValueError:
        return DocumentStatus.PENDING


def derive_status(documents: Iterable[Any] | None, documents_uploaded: bool = False) -> CompositeStatus:
    """Roll child document statuses up into the parent's composite status.

    First match wins: any rejection, then all verified, then the empty case
    (decided by the parent's self-reported upload flag), then in-review.
    Unknown child statuses count as pending. Anything that is not a collection
    of documents (a bare string, a mapping, a scalar) is malformed and yields
    pending whatever the upload flag says.
    """
    if documents is not None and (
        isinstance(documents, (str, bytes, Mapping)) or not isinstance(documents, Iterable)
    ):
        return CompositeStatus.PENDING
    statuses = [_status_of(document) for document in (documents or [])]
    if any(status == DocumentStatus.REJECTED for status in statuses):
        return CompositeStatus.REJECTED
    if statuses and all(status == DocumentStatus.VERIFIED for status in statuses):
        return CompositeStatus.VERIFIED
    if not statuses:
        return CompositeStatus.IN_REVIEW if documents_uploaded else CompositeStatus.PENDING
    return CompositeStatus.IN_REVIEW


def documents_summary(documents: Iterable[Any]) -> dict[str, int]:
    counts = Counter(_status_of(document).value for document in documents)
    summary = {status.value: counts.get(status.value, 0) for status in DocumentStatus}
    summary["total"] = sum(summary.values())
    return summary


async def current_documents_for_application(db: AsyncSession, application_id: str) -> list[Document]:
    stmt = (
        select(Document)
        .where(Document.application_id == application_id, Document.superseded_by_id.is_(None))
        .order_by(Document.created_at)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def current_kyc_documents(db: AsyncSession, owner_id: str) -> list[Document]:
    """Identity documents: current records of the owner not filed against an application."""
    stmt = (
        select(Document)
        .where(
            Document.owner_id == owner_id,
            Document.application_id.is_(None),
            Document.superseded_by_id.is_(None),
        )
        .order_by(Document.created_at)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def recompute_application_documents_status(db: AsyncSession, application: Application) -> str:
    documents = await current_documents_for_application(db, application.id)
    status = derive_status(documents, bool(application.documents_submitted)).value
    if application.documents_status != status:
        application.documents_status = status
    return status


async def recompute_kyc_status(db: AsyncSession, profile: KycProfile) -> str:
    documents = await current_kyc_documents(db, profile.id)
    status = derive_status(documents, bool(profile.kyc_documents_uploaded)).value
    if profile.kyc_status != status:
        profile.kyc_status = status
    return status
