from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.actor import ActorContext, PrincipalKind
from app.core.permissions import Capability
from app.models.document import Document
from app.models.kyc_profile import KycProfile
from app.schemas.kyc import KycProfileUpdate
from app.services import audit, guards
from app.services.concurrency import check_expected_version
from app.services.document_status import current_kyc_documents, documents_summary, recompute_kyc_status
from app.services.results import Result

TARGET_TYPE = "kyc_profile"


@dataclass(frozen=True)
class KycOverview:
    profile: KycProfile
    documents: list[Document]
    summary: dict[str, int]


async def build_overview(db: AsyncSession, profile: KycProfile) -> KycOverview:
    documents = await current_kyc_documents(db, profile.id)
    return KycOverview(profile=profile, documents=documents, summary=documents_summary(documents))


async def upsert_profile(db: AsyncSession, actor: ActorContext, payload: KycProfileUpdate) -> Result[KycProfile]:
    async def attempt() -> Result[KycProfile]:
        def fail(result: Result) -> Result:
            return guards.reject_with_audit(
                db,
                actor,
                result,
                action=audit.AuditAction.UPDATE_KYC_PROFILE,
                target_type=TARGET_TYPE,
                target_id=actor.principal_id,
            )

        denied = guards.require_owner_kind(actor)
        if denied:
            return fail(denied)
        profile = await db.get(KycProfile, actor.principal_id, populate_existing=True)
        before = audit.model_snapshot(profile) if profile else None
        if profile is None:
            profile = KycProfile(
                id=actor.principal_id,
                subject_type=actor.kind.value,
                display_name=payload.display_name,
                kyc_status="pending",
                kyc_documents_uploaded=False,
            )
            db.add(profile)
        else:
            stale = check_expected_version("KycProfile", profile, payload.expected_version)
            if stale:
                return fail(stale)
            profile.display_name = payload.display_name
        await db.flush()
        await recompute_kyc_status(db, profile)
        audit.record_audit_log(
            db,
            actor,
            action=audit.AuditAction.UPDATE_KYC_PROFILE,
            target_type=TARGET_TYPE,
            target_id=profile.id,
            old_value=before,
            new_value=audit.model_snapshot(profile),
        )
        await db.flush()
        return Result.success(profile)

    return await guards.run_gated(
        db,
        actor,
        attempt,
        action=audit.AuditAction.UPDATE_KYC_PROFILE,
        target_type=TARGET_TYPE,
        target_id=actor.principal_id,
    )


async def mark_documents_uploaded(db: AsyncSession, actor: ActorContext) -> Result[KycProfile]:
    async def attempt() -> Result[KycProfile]:
        def fail(result: Result) -> Result:
            return guards.reject_with_audit(
                db,
                actor,
                result,
                action=audit.AuditAction.UPDATE_KYC_PROFILE,
                target_type=TARGET_TYPE,
                target_id=actor.principal_id,
            )

        denied = guards.require_owner_kind(actor)
        if denied:
            return fail(denied)
        profile = await db.get(KycProfile, actor.principal_id, populate_existing=True)
        if profile is None:
            return fail(guards.not_found("KycProfile", actor.principal_id))
        previous_status = profile.kyc_status
        profile.kyc_documents_uploaded = True
        status = await recompute_kyc_status(db, profile)
        audit.record_audit_log(
            db,
            actor,
            action=audit.AuditAction.UPDATE_KYC_PROFILE,
            target_type=TARGET_TYPE,
            target_id=profile.id,
            details={"kyc_documents_uploaded": True, "from": previous_status, "to": status},
        )
        await db.flush()
        return Result.success(profile)

    return await guards.run_gated(
        db,
        actor,
        attempt,
        action=audit.AuditAction.UPDATE_KYC_PROFILE,
        target_type=TARGET_TYPE,
        target_id=actor.principal_id,
    )


async def get_own_overview(db: AsyncSession, actor: ActorContext) -> Result[KycOverview]:
    profile = await db.get(KycProfile, actor.principal_id)
    if profile is None:
        return guards.not_found("KycProfile", actor.principal_id)
    return Result.success(await build_overview(db, profile))


async def review_overview(db: AsyncSession, actor: ActorContext, owner_id: str) -> Result[KycOverview]:
    """Admin view of a subject's KYC case; investor cases also need ``manage_investors``."""
    await guards.reload_actor(db, actor)
    profile = await db.get(KycProfile, owner_id)
    required = [Capability.VIEW_APPLICATIONS]
    if profile is not None and profile.subject_type == PrincipalKind.INVESTOR.value:
        required.append(Capability.MANAGE_INVESTORS)
    denied = guards.require_capability(actor, *required)
    if denied is None and profile is None:
        denied = guards.not_found("KycProfile", owner_id)
    if denied:
        guards.reject_with_audit(
            db, actor, denied, action=audit.AuditAction.VIEW_KYC, target_type=TARGET_TYPE, target_id=owner_id
        )
        await db.commit()
        return denied
    overview = await build_overview(db, profile)
    audit.record_audit_log(
        db,
        actor,
        action=audit.AuditAction.VIEW_KYC,
        target_type=TARGET_TYPE,
        target_id=owner_id,
        details={"kyc_status": profile.kyc_status},
    )
    await db.commit()
    return Result.success(overview)
