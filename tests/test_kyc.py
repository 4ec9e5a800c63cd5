import pytest
from sqlalchemy import select

from conftest import (
    admin_actor,
    business_actor,
    investor_actor,
    make_admin,
    make_application,
    make_document,
    make_kyc_profile,
)

from app.models.audit_log import AuditLog
from app.models.kyc_profile import KycProfile
from app.schemas.kyc import KycProfileUpdate
from app.services import kyc
from app.services.results import ErrorKind


@pytest.mark.asyncio
async def test_upsert_creates_profile_for_owner(db):
    result = await kyc.upsert_profile(db, investor_actor("inv-1"), KycProfileUpdate(display_name="Amina Bello"))

    assert result.ok
    profile = result.value
    assert profile.id == "inv-1"
    assert profile.subject_type == "investor"
    assert profile.kyc_status == "pending"


@pytest.mark.asyncio
async def test_upsert_updates_existing_profile(db, session_factory):
    await make_kyc_profile(db, "biz-1")

    result = await kyc.upsert_profile(
        db, business_actor("biz-1"), KycProfileUpdate(display_name="Adire Holdings", expected_version=1)
    )

    assert result.ok
    async with session_factory() as fresh:
        stored = await fresh.get(KycProfile, "biz-1")
    assert stored.display_name == "Adire Holdings"
    assert stored.version == 2


@pytest.mark.asyncio
async def test_upsert_with_stale_version(db):
    await make_kyc_profile(db, "biz-1")
    result = await kyc.upsert_profile(
        db, business_actor("biz-1"), KycProfileUpdate(display_name="Adire Holdings", expected_version=4)
    )
    assert result.error.kind == ErrorKind.STALE_VERSION


@pytest.mark.asyncio
async def test_mark_documents_uploaded_without_documents(db):
    await make_kyc_profile(db, "biz-1")

    result = await kyc.mark_documents_uploaded(db, business_actor("biz-1"))

    assert result.ok
    assert result.value.kyc_documents_uploaded is True
    assert result.value.kyc_status == "in-review"


@pytest.mark.asyncio
async def test_mark_documents_uploaded_requires_profile(db):
    result = await kyc.mark_documents_uploaded(db, business_actor("biz-9"))
    assert result.error.kind == ErrorKind.NOT_FOUND


@pytest.mark.asyncio
async def test_overview_counts_identity_documents_only(db):
    await make_kyc_profile(db, "biz-1")
    application = await make_application(db, "biz-1")
    await make_document(db, "biz-1", status="verified")
    await make_document(db, "biz-1", document_type="utility_bill")
    await make_document(db, "biz-1", document_type="bank_statement", application_id=application.id, status="rejected")

    result = await kyc.get_own_overview(db, business_actor("biz-1"))

    assert result.ok
    assert result.value.summary == {"pending": 1, "verified": 1, "rejected": 0, "total": 2}
    assert {document.document_type for document in result.value.documents} == {"government_id", "utility_bill"}


@pytest.mark.asyncio
async def test_review_overview_is_audited(db, session_factory):
    viewer = await make_admin(db, "view-1", role="viewer")
    await make_kyc_profile(db, "biz-1", kyc_status="in-review")

    result = await kyc.review_overview(db, admin_actor(viewer), "biz-1")

    assert result.ok
    async with session_factory() as fresh:
        entry = (await fresh.execute(select(AuditLog))).scalar_one()
    assert entry.action == "view_kyc"
    assert entry.details == {"kyc_status": "in-review"}


@pytest.mark.asyncio
async def test_investor_kyc_needs_manage_investors(db, session_factory):
    viewer = await make_admin(db, "view-1", role="viewer")
    approver = await make_admin(db, "apr-1", role="approver")
    await make_kyc_profile(db, "inv-1", subject_type="investor", display_name="Amina Bello")

    refused = await kyc.review_overview(db, admin_actor(viewer), "inv-1")
    allowed = await kyc.review_overview(db, admin_actor(approver), "inv-1")

    assert refused.error.code == "missing_capability"
    assert allowed.ok
    async with session_factory() as fresh:
        outcomes = (
            await fresh.execute(select(AuditLog.success).order_by(AuditLog.created_at))
        ).scalars().all()
    assert outcomes == [False, True]


@pytest.mark.asyncio
async def test_review_overview_unknown_subject(db):
    viewer = await make_admin(db, "view-1", role="viewer")
    result = await kyc.review_overview(db, admin_actor(viewer), "biz-404")
    assert result.error.code == "kycprofile_not_found"
