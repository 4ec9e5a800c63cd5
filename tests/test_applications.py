from decimal import Decimal

import pytest
from sqlalchemy import select

from conftest import (
    AFTER_HOURS,
    BUSINESS_HOURS,
    admin_actor,
    business_actor,
    investor_actor,
    make_admin,
    make_application,
)

from app.models.application import Application
from app.models.audit_log import AuditLog
from app.models.dual_authorization import DualAuthorization
from app.models.notification import Notification
from app.schemas.applications import ApplicationCreate, ApplicationResubmit
from app.services import applications
from app.services.results import EngineError, ErrorKind


def _create_payload(**overrides) -> ApplicationCreate:
    fields = dict(
        business_name="Adire Textiles Ltd",
        contract_type="murabaha",
        funding_purpose="Buy looms",
        funding_duration_months=12,
        requested_amount=Decimal("750000"),
        bvn="12345678901",
    )
    fields.update(overrides)
    return ApplicationCreate(**fields)


async def _audit_entries(session_factory, target_id: str) -> list[AuditLog]:
    async with session_factory() as fresh:
        result = await fresh.execute(
            select(AuditLog).where(AuditLog.target_id == target_id).order_by(AuditLog.created_at)
        )
        return list(result.scalars().all())


async def _stored(session_factory, application_id: str) -> Application:
    async with session_factory() as fresh:
        return await fresh.get(Application, application_id)


# Owner actions


@pytest.mark.asyncio
async def test_submit_application_creates_pending_record(db, session_factory):
    result = await applications.submit_application(db, business_actor("biz-1"), _create_payload(), now=BUSINESS_HOURS)

    assert result.ok
    application = result.value
    assert application.id == f"biz-1_{int(BUSINESS_HOURS.timestamp() * 1000)}"
    assert application.status == "pending"
    assert application.documents_status == "pending"

    stored = await _stored(session_factory, application.id)
    assert stored.bvn == "12345678901"
    entries = await _audit_entries(session_factory, application.id)
    assert [(entry.action, entry.success) for entry in entries] == [("submit_application", True)]
    assert "bvn" not in entries[0].new_value

    notes = (await db.execute(select(Notification))).scalars().all()
    assert [note.type for note in notes] == ["application_submitted"]


@pytest.mark.asyncio
async def test_investor_may_not_hold_two_active_applications(db, session_factory):
    first = await applications.submit_application(db, investor_actor("inv-1"), _create_payload(), now=BUSINESS_HOURS)
    assert first.ok

    second = await applications.submit_application(db, investor_actor("inv-1"), _create_payload())
    assert second.error.kind == ErrorKind.INVALID_REQUEST
    assert second.error.code == "active_application_exists"
    assert second.error.details["application_ids"] == [first.value.id]

    entries = await _audit_entries(session_factory, "inv-1")
    assert [(entry.action, entry.success) for entry in entries] == [("submit_application", False)]


@pytest.mark.asyncio
async def test_admin_cannot_submit_for_an_owner(db):
    admin = await make_admin(db, "adm-1", role="super_admin")
    result = await applications.submit_application(db, admin_actor(admin), _create_payload())
    assert result.error.kind == ErrorKind.PERMISSION_DENIED
    assert result.error.code == "owner_required"


@pytest.mark.asyncio
async def test_resubmit_rejected_application_reuses_key(db, session_factory):
    original = await make_application(
        db,
        "biz-1",
        status="rejected",
        rejection_reason="incomplete-documentation",
        rejection_allows_resubmit=True,
        admin_message="Please upload audited accounts",
    )

    result = await applications.resubmit_application(
        db,
        business_actor("biz-1"),
        original.id,
        ApplicationResubmit(requested_amount=Decimal("600000")),
        now=BUSINESS_HOURS,
    )

    assert result.ok
    stored = await _stored(session_factory, original.id)
    assert stored.id == original.id
    assert stored.status == "pending"
    assert stored.rejection_reason is None
    assert stored.rejection_allows_resubmit is None
    assert stored.admin_message is None
    assert stored.resubmission_count == 1
    assert stored.requested_amount == Decimal("600000")
    assert stored.resubmitted_at is not None


@pytest.mark.asyncio
async def test_resubmit_blocked_for_permanent_rejection(db, session_factory):
    original = await make_application(
        db,
        "biz-1",
        status="rejected",
        rejection_reason="fraudulent-information",
        rejection_allows_resubmit=False,
    )

    result = await applications.resubmit_application(db, business_actor("biz-1"), original.id, ApplicationResubmit())

    assert result.error.kind == ErrorKind.ILLEGAL_TRANSITION
    assert result.error.code == "resubmission_not_allowed"
    assert (await _stored(session_factory, original.id)).status == "rejected"


@pytest.mark.asyncio
async def test_resubmit_other_owners_application_is_not_found(db):
    original = await make_application(db, "biz-1", status="more-info")
    result = await applications.resubmit_application(db, business_actor("biz-2"), original.id, ApplicationResubmit())
    assert result.error.kind == ErrorKind.NOT_FOUND


# Review transitions


@pytest.mark.asyncio
async def test_review_then_request_more_info(db, session_factory):
    reviewer = await make_admin(db, "rev-1", role="reviewer")
    application = await make_application(db, "biz-1")

    review = await applications.start_review(db, admin_actor(reviewer), application.id, now=BUSINESS_HOURS)
    assert review.ok
    assert review.value.status == "review"
    assert review.value.reviewed_by == "rev-1"

    more = await applications.request_more_info(db, admin_actor(reviewer), application.id, "Send bank statements")
    assert more.ok
    stored = await _stored(session_factory, application.id)
    assert stored.status == "more-info"
    assert stored.admin_message == "Send bank statements"

    entries = await _audit_entries(session_factory, application.id)
    assert [entry.action for entry in entries] == ["review_application", "request_changes"]
    assert entries[0].details["changes"]["status"] == {"from": "pending", "to": "review"}


@pytest.mark.asyncio
async def test_request_more_info_requires_message(db):
    reviewer = await make_admin(db, "rev-1", role="reviewer")
    application = await make_application(db, "biz-1")
    result = await applications.request_more_info(db, admin_actor(reviewer), application.id, "   ")
    assert result.error.code == "message_required"


@pytest.mark.asyncio
async def test_viewer_cannot_start_review(db, session_factory):
    viewer = await make_admin(db, "view-1", role="viewer")
    application = await make_application(db, "biz-1")

    result = await applications.start_review(db, admin_actor(viewer), application.id)

    assert result.error.kind == ErrorKind.PERMISSION_DENIED
    assert result.error.code == "missing_capability"
    entries = await _audit_entries(session_factory, application.id)
    assert [(entry.success, entry.error_reason) for entry in entries] == [(False, "missing_capability")]


@pytest.mark.asyncio
async def test_inactive_admin_is_refused(db):
    manager = await make_admin(db, "mgr-1", role="manager", is_active=False)
    application = await make_application(db, "biz-1")
    result = await applications.start_review(db, admin_actor(manager), application.id)
    assert result.error.kind == ErrorKind.PERMISSION_DENIED
    assert result.error.code == "inactive_admin"


@pytest.mark.asyncio
async def test_approving_pending_application_is_illegal(db, session_factory):
    approver = await make_admin(db, "apr-1")
    application = await make_application(db, "biz-1")

    result = await applications.approve_application(db, admin_actor(approver), application.id, now=BUSINESS_HOURS)

    assert result.error.kind == ErrorKind.ILLEGAL_TRANSITION
    assert "pending -> approved" in result.error.message
    assert (await _stored(session_factory, application.id)).status == "pending"


@pytest.mark.asyncio
async def test_stale_expected_version_leaves_state_unchanged(db, session_factory):
    reviewer = await make_admin(db, "rev-1", role="reviewer")
    application = await make_application(db, "biz-1")

    result = await applications.start_review(db, admin_actor(reviewer), application.id, expected_version=7)

    assert result.error.kind == ErrorKind.STALE_VERSION
    assert result.error.details["current_version"] == 1
    stored = await _stored(session_factory, application.id)
    assert stored.status == "pending"
    assert stored.version == 1


# Rejection


@pytest.mark.asyncio
async def test_reject_with_permanent_reason_locks_application(db, session_factory):
    approver = await make_admin(db, "apr-1")
    application = await make_application(db, "biz-1", status="review")

    result = await applications.reject_application(
        db, admin_actor(approver), application.id, "non-shariah-compliant", allows_resubmit=True
    )

    assert result.ok
    stored = await _stored(session_factory, application.id)
    assert stored.status == "rejected"
    assert stored.rejection_reason == "non-shariah-compliant"
    assert stored.rejection_allows_resubmit is False


@pytest.mark.asyncio
async def test_reject_requires_approve_capability(db):
    reviewer = await make_admin(db, "rev-1", role="reviewer")
    application = await make_application(db, "biz-1", status="review")
    result = await applications.reject_application(db, admin_actor(reviewer), application.id, "other")
    assert result.error.code == "missing_capability"


@pytest.mark.asyncio
async def test_reject_requires_reason(db):
    approver = await make_admin(db, "apr-1")
    application = await make_application(db, "biz-1", status="review")
    result = await applications.reject_application(db, admin_actor(approver), application.id, "")
    assert result.error.code == "rejection_reason_required"


# Approval limits


@pytest.mark.asyncio
async def test_approver_over_limit_is_refused(db, session_factory):
    approver = await make_admin(db, "apr-1", approval_limit=Decimal("500000"))
    application = await make_application(db, "biz-1", status="review", requested_amount=Decimal("750000"))

    result = await applications.approve_application(db, admin_actor(approver), application.id, now=BUSINESS_HOURS)

    assert result.error.kind == ErrorKind.LIMIT_EXCEEDED
    assert Decimal(result.error.details["approval_limit"]) == Decimal("500000")
    assert (await _stored(session_factory, application.id)).status == "review"
    entries = await _audit_entries(session_factory, application.id)
    assert [(entry.action, entry.success, entry.error_reason) for entry in entries] == [
        ("approve_application", False, "exceeds_limit")
    ]


@pytest.mark.asyncio
async def test_manager_with_same_limit_may_approve(db, session_factory):
    manager = await make_admin(db, "mgr-1", role="manager", approval_limit=Decimal("500000"))
    application = await make_application(db, "biz-1", status="review", requested_amount=Decimal("750000"))

    result = await applications.approve_application(db, admin_actor(manager), application.id, now=BUSINESS_HOURS)

    assert result.ok
    assert result.value.finalized
    stored = await _stored(session_factory, application.id)
    assert stored.status == "approved"
    assert stored.approved_by == "mgr-1"
    entries = await _audit_entries(session_factory, application.id)
    assert [(entry.action, entry.success) for entry in entries] == [("approve_application", True)]


# Business hours


@pytest.mark.asyncio
async def test_high_value_after_hours_needs_justification(db, session_factory):
    manager = await make_admin(db, "mgr-1", role="manager")
    application = await make_application(db, "biz-1", status="review", requested_amount=Decimal("20000000"))

    refused = await applications.approve_application(db, admin_actor(manager), application.id, now=AFTER_HOURS)
    assert refused.error.kind == ErrorKind.BUSINESS_HOURS_RESTRICTED

    approved = await applications.approve_application(
        db,
        admin_actor(manager),
        application.id,
        justification="Board sign-off obtained",
        now=AFTER_HOURS,
    )
    assert approved.ok
    entries = await _audit_entries(session_factory, application.id)
    assert entries[-1].details["business_hours_override"] is True
    assert entries[-1].details["justification"] == "Board sign-off obtained"


# Dual authorization


@pytest.mark.asyncio
async def test_dual_authorization_flow(db, session_factory):
    first = await make_admin(db, "mgr-1", role="manager")
    second = await make_admin(db, "own-1", role="super_admin")
    application = await make_application(db, "biz-1", status="review", requested_amount=Decimal("60000000"))

    pending = await applications.approve_application(
        db, admin_actor(first), application.id, notes="Collateral checked", now=BUSINESS_HOURS
    )
    assert pending.error.kind == ErrorKind.DUAL_AUTHORIZATION_REQUIRED
    outcome = pending.value
    assert outcome.finalized is False
    assert outcome.dual_authorization.status == "pending_secondary"
    assert outcome.dual_authorization.primary_approver_id == "mgr-1"
    assert (await _stored(session_factory, application.id)).status == "review"

    repeat = await applications.approve_application(db, admin_actor(first), application.id, now=BUSINESS_HOURS)
    assert repeat.error.kind == ErrorKind.SEPARATION_OF_DUTIES_VIOLATION

    final = await applications.approve_application(db, admin_actor(second), application.id, now=BUSINESS_HOURS)
    assert final.ok
    assert final.value.finalized

    async with session_factory() as fresh:
        record = (await fresh.execute(select(DualAuthorization))).scalar_one()
        stored = await fresh.get(Application, application.id)
    assert record.status == "approved"
    assert record.secondary_approver_id == "own-1"
    assert stored.status == "approved"
    assert stored.approved_by == "own-1"

    entries = await _audit_entries(session_factory, application.id)
    assert [(entry.actor_id, entry.success) for entry in entries] == [
        ("mgr-1", False),
        ("mgr-1", False),
        ("own-1", True),
    ]
    assert entries[0].error_reason == "dual_authorization_required"
    assert entries[1].error_reason == "same_actor"


@pytest.mark.asyncio
async def test_reviewer_cannot_approve_dual_case(db):
    manager = await make_admin(db, "mgr-1", role="manager")
    application = await make_application(db, "biz-1", requested_amount=Decimal("60000000"))

    review = await applications.start_review(db, admin_actor(manager), application.id, now=BUSINESS_HOURS)
    assert review.ok

    result = await applications.approve_application(db, admin_actor(manager), application.id, now=BUSINESS_HOURS)
    assert result.error.kind == ErrorKind.SEPARATION_OF_DUTIES_VIOLATION


@pytest.mark.asyncio
async def test_rejection_closes_pending_dual_authorization(db, session_factory):
    first = await make_admin(db, "mgr-1", role="manager")
    second = await make_admin(db, "mgr-2", role="manager")
    application = await make_application(db, "biz-1", status="review", requested_amount=Decimal("60000000"))

    await applications.approve_application(db, admin_actor(first), application.id, now=BUSINESS_HOURS)
    result = await applications.reject_application(
        db, admin_actor(second), application.id, "requested-amount-high", now=BUSINESS_HOURS
    )

    assert result.ok
    async with session_factory() as fresh:
        record = (await fresh.execute(select(DualAuthorization))).scalar_one()
    assert record.status == "rejected"


@pytest.mark.asyncio
async def test_first_approval_does_not_survive_more_info_round_trip(db, session_factory):
    reviewer = await make_admin(db, "rev-1", role="reviewer")
    first = await make_admin(db, "mgr-1", role="manager")
    second = await make_admin(db, "mgr-2", role="manager")
    application = await make_application(db, "biz-1", requested_amount=Decimal("60000000"))

    await applications.start_review(db, admin_actor(reviewer), application.id, now=BUSINESS_HOURS)
    pending = await applications.approve_application(db, admin_actor(first), application.id, now=BUSINESS_HOURS)
    assert pending.error.kind == ErrorKind.DUAL_AUTHORIZATION_REQUIRED

    more_info = await applications.request_more_info(db, admin_actor(second), application.id, "Send new statements")
    assert more_info.ok
    async with session_factory() as fresh:
        record = (await fresh.execute(select(DualAuthorization))).scalar_one()
    assert record.status == "superseded"

    resubmitted = await applications.resubmit_application(
        db,
        business_actor("biz-1"),
        application.id,
        ApplicationResubmit(requested_amount=Decimal("95000000")),
        now=BUSINESS_HOURS,
    )
    assert resubmitted.ok
    await applications.start_review(db, admin_actor(reviewer), application.id, now=BUSINESS_HOURS)

    result = await applications.approve_application(db, admin_actor(second), application.id, now=BUSINESS_HOURS)

    assert result.error.kind == ErrorKind.DUAL_AUTHORIZATION_REQUIRED
    assert result.value.finalized is False
    assert result.value.dual_authorization.primary_approver_id == "mgr-2"
    assert result.value.dual_authorization.requested_amount == Decimal("95000000")
    stored = await _stored(session_factory, application.id)
    assert stored.status == "review"
    assert stored.approved_by is None


@pytest.mark.asyncio
async def test_first_approval_for_another_amount_is_not_reused(db, session_factory):
    await make_admin(db, "mgr-1", role="manager")
    second = await make_admin(db, "mgr-2", role="manager")
    application = await make_application(db, "biz-1", status="review", requested_amount=Decimal("60000000"))
    db.add(
        DualAuthorization(
            application_id=application.id,
            requested_amount=Decimal("55000000"),
            primary_approver_id="mgr-1",
            primary_approved_at=BUSINESS_HOURS,
            status="pending_secondary",
        )
    )
    await db.commit()

    result = await applications.approve_application(db, admin_actor(second), application.id, now=BUSINESS_HOURS)

    assert result.error.kind == ErrorKind.DUAL_AUTHORIZATION_REQUIRED
    async with session_factory() as fresh:
        records = (await fresh.execute(select(DualAuthorization))).scalars().all()
    by_amount = {record.requested_amount: (record.status, record.primary_approver_id) for record in records}
    assert by_amount[Decimal("55000000")] == ("superseded", "mgr-1")
    assert by_amount[Decimal("60000000")] == ("pending_secondary", "mgr-2")


# Reads


@pytest.mark.asyncio
async def test_view_application_is_audited(db, session_factory):
    viewer = await make_admin(db, "view-1", role="viewer")
    application = await make_application(db, "biz-1")

    result = await applications.view_application(db, admin_actor(viewer), application.id)

    assert result.ok
    entries = await _audit_entries(session_factory, application.id)
    assert [(entry.action, entry.actor_role) for entry in entries] == [("view_application", "viewer")]


@pytest.mark.asyncio
async def test_list_applications_filters_by_status(db):
    await make_application(db, "biz-1", status="review")
    await make_application(db, "biz-2")
    items, total = await applications.list_applications(db, status="new")
    assert total == 1
    assert items[0].owner_id == "biz-2"


@pytest.mark.asyncio
async def test_unwrap_raises_engine_error(db):
    result = await applications.get_owner_application(db, business_actor("biz-1"), "missing")
    with pytest.raises(EngineError) as excinfo:
        result.unwrap()
    assert excinfo.value.kind == ErrorKind.NOT_FOUND
