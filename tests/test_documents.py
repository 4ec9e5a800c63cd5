from datetime import date

import pytest

from conftest import (
    BUSINESS_HOURS,
    admin_actor,
    business_actor,
    make_admin,
    make_application,
    make_document,
    make_kyc_profile,
)

from app.models.application import Application
from app.models.document import Document
from app.models.kyc_profile import KycProfile
from app.schemas.documents import DocumentCreate
from app.services import documents
from app.services.results import ErrorKind


async def _stored(session_factory, model, key):
    async with session_factory() as fresh:
        return await fresh.get(model, key)


@pytest.mark.asyncio
async def test_register_identity_document_moves_kyc_in_review(db, session_factory):
    await make_kyc_profile(db, "biz-1")

    result = await documents.register_document(
        db,
        business_actor("biz-1"),
        DocumentCreate(document_type="cac_certificate", file_name="cac.pdf"),
    )

    assert result.ok
    assert result.value.status == "pending"
    assert result.value.subject_type == "business"
    profile = await _stored(session_factory, KycProfile, "biz-1")
    assert profile.kyc_status == "in-review"


@pytest.mark.asyncio
async def test_register_application_document_marks_submission(db, session_factory):
    application = await make_application(db, "biz-1")

    result = await documents.register_document(
        db,
        business_actor("biz-1"),
        DocumentCreate(document_type="bank_statement", file_name="statement.pdf", application_id=application.id),
    )

    assert result.ok
    stored = await _stored(session_factory, Application, application.id)
    assert stored.documents_submitted is True
    assert stored.documents_status == "in-review"


@pytest.mark.asyncio
async def test_register_against_foreign_application_changes_nothing(db, session_factory):
    application = await make_application(db, "biz-1")

    result = await documents.register_document(
        db,
        business_actor("biz-2"),
        DocumentCreate(document_type="bank_statement", file_name="statement.pdf", application_id=application.id),
    )

    assert result.error.kind == ErrorKind.NOT_FOUND
    stored = await _stored(session_factory, Application, application.id)
    assert stored.documents_submitted is False


@pytest.mark.asyncio
async def test_verify_document_rolls_up_to_kyc(db, session_factory):
    reviewer = await make_admin(db, "rev-1", role="reviewer")
    await make_kyc_profile(db, "biz-1", kyc_status="in-review")
    document = await make_document(db, "biz-1")

    result = await documents.verify_document(db, admin_actor(reviewer), document.id, now=BUSINESS_HOURS)

    assert result.ok
    verified, parent_status = result.value
    assert verified.status == "verified"
    assert verified.verified_by == "rev-1"
    assert parent_status == "verified"
    profile = await _stored(session_factory, KycProfile, "biz-1")
    assert profile.kyc_status == "verified"
    assert profile.kyc_reviewed_at is not None


@pytest.mark.asyncio
async def test_rejected_document_outweighs_verified_one(db, session_factory):
    reviewer = await make_admin(db, "rev-1", role="reviewer")
    await make_kyc_profile(db, "biz-1", kyc_status="in-review")
    await make_document(db, "biz-1", status="verified")
    document = await make_document(db, "biz-1", document_type="utility_bill")

    result = await documents.reject_document(db, admin_actor(reviewer), document.id, "Blurry scan", now=BUSINESS_HOURS)

    assert result.ok
    assert result.value[1] == "rejected"
    stored = await _stored(session_factory, Document, document.id)
    assert stored.rejection_reason == "Blurry scan"
    assert (await _stored(session_factory, KycProfile, "biz-1")).kyc_status == "rejected"


@pytest.mark.asyncio
async def test_reject_document_requires_reason(db):
    reviewer = await make_admin(db, "rev-1", role="reviewer")
    document = await make_document(db, "biz-1")
    result = await documents.reject_document(db, admin_actor(reviewer), document.id, "  ")
    assert result.error.code == "rejection_reason_required"


@pytest.mark.asyncio
async def test_expired_document_cannot_be_verified(db, session_factory):
    reviewer = await make_admin(db, "rev-1", role="reviewer")
    document = await make_document(db, "biz-1", expiry_date=date(2026, 1, 1))

    result = await documents.verify_document(db, admin_actor(reviewer), document.id, now=BUSINESS_HOURS)

    assert result.error.code == "document_expired"
    assert (await _stored(session_factory, Document, document.id)).status == "pending"


@pytest.mark.asyncio
async def test_expired_document_can_still_be_rejected(db):
    reviewer = await make_admin(db, "rev-1", role="reviewer")
    document = await make_document(db, "biz-1", expiry_date=date(2026, 1, 1))
    result = await documents.reject_document(db, admin_actor(reviewer), document.id, "Expired", now=BUSINESS_HOURS)
    assert result.ok


@pytest.mark.asyncio
async def test_reupload_supersedes_previous_record(db, session_factory):
    reviewer = await make_admin(db, "rev-1", role="reviewer")
    await make_kyc_profile(db, "biz-1")
    original = await make_document(db, "biz-1", status="rejected", rejection_reason="Blurry scan")

    replacement = await documents.register_document(
        db,
        business_actor("biz-1"),
        DocumentCreate(document_type="government_id", file_name="id-v2.pdf", replaces_document_id=original.id),
    )
    assert replacement.ok

    stored = await _stored(session_factory, Document, original.id)
    assert stored.superseded_by_id == replacement.value.id
    assert (await _stored(session_factory, KycProfile, "biz-1")).kyc_status == "in-review"

    stale = await documents.verify_document(db, admin_actor(reviewer), original.id, now=BUSINESS_HOURS)
    assert stale.error.code == "document_superseded"

    again = await documents.register_document(
        db,
        business_actor("biz-1"),
        DocumentCreate(document_type="government_id", file_name="id-v3.pdf", replaces_document_id=original.id),
    )
    assert again.error.code == "document_superseded"


@pytest.mark.asyncio
async def test_replacement_refreshes_the_replaced_documents_parent(db, session_factory):
    await make_kyc_profile(db, "biz-1")
    application = await make_application(
        db, "biz-1", documents_submitted=True, documents_status="rejected"
    )
    original = await make_document(
        db, "biz-1", application_id=application.id, status="rejected", rejection_reason="Unreadable"
    )

    replacement = await documents.register_document(
        db,
        business_actor("biz-1"),
        DocumentCreate(document_type="government_id", file_name="id-v2.pdf", replaces_document_id=original.id),
    )

    assert replacement.ok
    assert replacement.value.application_id is None
    assert (await _stored(session_factory, Application, application.id)).documents_status == "in-review"
    assert (await _stored(session_factory, KycProfile, "biz-1")).kyc_status == "in-review"


@pytest.mark.asyncio
async def test_reviewed_document_cannot_be_reviewed_again(db):
    reviewer = await make_admin(db, "rev-1", role="reviewer")
    document = await make_document(db, "biz-1", status="verified")
    result = await documents.reject_document(db, admin_actor(reviewer), document.id, "Changed my mind")
    assert result.error.kind == ErrorKind.ILLEGAL_TRANSITION


@pytest.mark.asyncio
async def test_investor_documents_need_manage_investors(db):
    reviewer = await make_admin(db, "rev-1", role="reviewer")
    approver = await make_admin(db, "apr-1", role="approver")
    document = await make_document(db, "inv-1", subject_type="investor")

    refused = await documents.verify_document(db, admin_actor(reviewer), document.id, now=BUSINESS_HOURS)
    assert refused.error.code == "missing_capability"
    assert refused.error.details["capability"] == "manage_investors"

    allowed = await documents.verify_document(db, admin_actor(approver), document.id, now=BUSINESS_HOURS)
    assert allowed.ok


@pytest.mark.asyncio
async def test_list_owner_documents_hides_superseded(db):
    replacement = await make_document(db, "inv-1", subject_type="investor")
    await make_document(db, "inv-1", subject_type="investor", superseded_by_id=replacement.id)

    current = await documents.list_owner_documents(db, "inv-1")
    everything = await documents.list_owner_documents(db, "inv-1", include_superseded=True)

    assert [document.id for document in current] == [replacement.id]
    assert len(everything) == 2


@pytest.mark.asyncio
async def test_admin_cannot_register_documents(db):
    admin = await make_admin(db, "rev-1", role="reviewer")
    result = await documents.register_document(
        db, admin_actor(admin), DocumentCreate(document_type="government_id", file_name="id.pdf")
    )
    assert result.error.code == "owner_required"
