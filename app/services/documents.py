from __future__ import annotations

import logging
import uuid
from datetime import date, datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.actor import ActorContext, PrincipalKind
from app.core.permissions import Capability
from app.models.application import Application
from app.models.clock import utcnow
from app.models.document import Document
from app.models.kyc_profile import KycProfile
from app.schemas.documents import DocumentCreate
from app.services import audit, guards, notifications
from app.services.application_state import ApplicationStatus, normalize_status
from app.services.concurrency import check_expected_version
from app.services.document_status import (
    DocumentStatus,
    recompute_application_documents_status,
    recompute_kyc_status,
)
from app.services.results import ErrorKind, Result

logger = logging.getLogger(__name__)

TARGET_TYPE = "document"


def is_expired(document: Document, today: date) -> bool:
    return document.expiry_date is not None and document.expiry_date < today


async def _recompute_parent(db: AsyncSession, document: Document, now: datetime | None = None) -> str | None:
    """Refresh the derived status of whatever the document rolls up into."""
    await db.flush()
    if document.application_id:
        application = await db.get(Application, document.application_id)
        if application is not None:
            return await recompute_application_documents_status(db, application)
        return None
    profile = await db.get(KycProfile, document.owner_id)
    if profile is None:
        return None
    status = await recompute_kyc_status(db, profile)
    if now is not None:
        profile.kyc_reviewed_at = now
    return status


async def register_document(
    db: AsyncSession,
    actor: ActorContext,
    payload: DocumentCreate,
) -> Result[Document]:
    """Record an uploaded document; naming ``replaces_document_id`` supersedes the old record."""

    async def attempt() -> Result[Document]:
        def fail(result: Result) -> Result:
            return guards.reject_with_audit(
                db,
                actor,
                result,
                action=audit.AuditAction.REGISTER_DOCUMENT,
                target_type=TARGET_TYPE,
                target_id=payload.replaces_document_id or actor.principal_id,
            )

        denied = guards.require_owner_kind(actor)
        if denied:
            return fail(denied)
        if payload.application_id:
            application = await db.get(Application, payload.application_id, populate_existing=True)
            if application is None or application.owner_id != actor.principal_id:
                return fail(guards.not_found("Application", payload.application_id))
            if normalize_status(application.status) == ApplicationStatus.APPROVED:
                return fail(
                    guards.invalid(
                        "application_closed",
                        "Documents cannot be added to an approved application",
                    )
                )

        previous = None
        if payload.replaces_document_id:
            previous = await db.get(Document, payload.replaces_document_id, populate_existing=True)
            if previous is None or previous.owner_id != actor.principal_id:
                return fail(guards.not_found("Document", payload.replaces_document_id))
            if previous.superseded_by_id is not None:
                return fail(
                    guards.invalid(
                        "document_superseded",
                        f"Document {previous.id} has already been replaced",
                        {"superseded_by_id": str(previous.superseded_by_id)},
                    )
                )

        if payload.application_id:
            application.documents_submitted = True

        document = Document(
            id=uuid.uuid4(),
            owner_id=actor.principal_id,
            subject_type=actor.kind.value,
            application_id=payload.application_id,
            document_type=payload.document_type,
            file_name=payload.file_name,
            storage_url=payload.storage_url,
            expiry_date=payload.expiry_date,
            status=DocumentStatus.PENDING.value,
        )
        db.add(document)
        if previous is not None:
            previous.superseded_by_id = document.id
        parent_status = await _recompute_parent(db, document)
        previous_parent_status = None
        if previous is not None and previous.application_id != document.application_id:
            # the replaced record rolled up into a different parent
            previous_parent_status = await _recompute_parent(db, previous)
        audit.record_audit_log(
            db,
            actor,
            action=audit.AuditAction.REGISTER_DOCUMENT,
            target_type=TARGET_TYPE,
            target_id=document.id,
            details={
                "document_type": document.document_type,
                "application_id": document.application_id,
                "replaces_document_id": str(previous.id) if previous else None,
                "parent_status": parent_status,
                "previous_parent_status": previous_parent_status,
            },
        )
        await db.flush()
        return Result.success(document)

    return await guards.run_gated(
        db,
        actor,
        attempt,
        action=audit.AuditAction.REGISTER_DOCUMENT,
        target_type=TARGET_TYPE,
        target_id=payload.replaces_document_id or actor.principal_id,
    )


async def _review_document(
    db: AsyncSession,
    actor: ActorContext,
    document_id: UUID,
    *,
    target: DocumentStatus,
    reason: str | None,
    expected_version: int | None,
    now: datetime | None,
) -> Result[tuple[Document, str | None]]:
    moment = now or utcnow()
    action = audit.AuditAction.VERIFY_DOCUMENT if target == DocumentStatus.VERIFIED else audit.AuditAction.REJECT_DOCUMENT

    async def attempt() -> Result[tuple[Document, str | None]]:
        await guards.reload_actor(db, actor)

        def fail(result: Result) -> Result:
            return guards.reject_with_audit(
                db, actor, result, action=action, target_type=TARGET_TYPE, target_id=document_id
            )

        denied = guards.require_capability(actor, Capability.REVIEW_DUE_DILIGENCE)
        if denied:
            return fail(denied)
        document = await db.get(Document, document_id, populate_existing=True)
        if document is None:
            return fail(guards.not_found("Document", document_id))
        if document.subject_type == PrincipalKind.INVESTOR.value:
            denied = guards.require_capability(actor, Capability.MANAGE_INVESTORS)
            if denied:
                return fail(denied)
        stale = check_expected_version("Document", document, expected_version)
        if stale:
            return fail(stale)
        if document.superseded_by_id is not None:
            return fail(
                guards.invalid(
                    "document_superseded",
                    f"Document {document.id} has been replaced by a newer upload",
                    {"superseded_by_id": str(document.superseded_by_id)},
                )
            )
        if document.status != DocumentStatus.PENDING.value:
            return fail(
                Result.failure(
                    ErrorKind.ILLEGAL_TRANSITION,
                    code="illegal_transition",
                    message=f"Illegal document transition: {document.status} -> {target.value}",
                    details={"from": document.status, "to": target.value},
                )
            )
        if target == DocumentStatus.VERIFIED and is_expired(document, moment.date()):
            return fail(
                guards.invalid(
                    "document_expired",
                    f"Document {document.id} expired on {document.expiry_date.isoformat()}",
                    {"expiry_date": document.expiry_date.isoformat()},
                )
            )

        document.status = target.value
        document.verified_by = actor.principal_id
        document.verified_at = moment
        document.rejection_reason = reason
        parent_status = await _recompute_parent(db, document, moment)
        audit.record_audit_log(
            db,
            actor,
            action=action,
            target_type=TARGET_TYPE,
            target_id=document.id,
            details={
                "owner_id": document.owner_id,
                "application_id": document.application_id,
                "document_type": document.document_type,
                "reason": reason,
                "parent_status": parent_status,
            },
        )
        await db.flush()
        return Result.success((document, parent_status))

    result = await guards.run_gated(db, actor, attempt, action=action, target_type=TARGET_TYPE, target_id=document_id)
    if result.ok:
        document, _ = result.value
        verified = target == DocumentStatus.VERIFIED
        await notifications.dispatch(
            db,
            notifications.NotificationEvent(
                type=(
                    notifications.NotificationType.DOCUMENT_VERIFIED
                    if verified
                    else notifications.NotificationType.DOCUMENT_REJECTED
                ),
                application_id=document.application_id,
                recipient_id=document.owner_id,
                document_id=str(document.id),
                message=(
                    f"Your {document.document_type} has been verified"
                    if verified
                    else f"Your {document.document_type} was rejected: {reason}"
                ),
            ),
            reload=[document],
        )
    return result


async def verify_document(
    db: AsyncSession,
    actor: ActorContext,
    document_id: UUID,
    *,
    expected_version: int | None = None,
    now: datetime | None = None,
) -> Result[tuple[Document, str | None]]:
    return await _review_document(
        db,
        actor,
        document_id,
        target=DocumentStatus.VERIFIED,
        reason=None,
        expected_version=expected_version,
        now=now,
    )


async def reject_document(
    db: AsyncSession,
    actor: ActorContext,
    document_id: UUID,
    reason: str,
    *,
    expected_version: int | None = None,
    now: datetime | None = None,
) -> Result[tuple[Document, str | None]]:
    if not reason or not reason.strip():
        result = guards.invalid("rejection_reason_required", "A rejection reason is required")
        guards.reject_with_audit(
            db,
            actor,
            result,
            action=audit.AuditAction.REJECT_DOCUMENT,
            target_type=TARGET_TYPE,
            target_id=document_id,
        )
        await db.commit()
        return result
    return await _review_document(
        db,
        actor,
        document_id,
        target=DocumentStatus.REJECTED,
        reason=reason.strip(),
        expected_version=expected_version,
        now=now,
    )


async def list_owner_documents(
    db: AsyncSession,
    owner_id: str,
    *,
    application_id: str | None = None,
    include_superseded: bool = False,
) -> list[Document]:
    stmt = select(Document).where(Document.owner_id == owner_id)
    if application_id:
        stmt = stmt.where(Document.application_id == application_id)
    if not include_superseded:
        stmt = stmt.where(Document.superseded_by_id.is_(None))
    result = await db.execute(stmt.order_by(Document.created_at))
    return list(result.scalars().all())
