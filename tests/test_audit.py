from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import UUID

import pytest
from sqlalchemy import select

from conftest import admin_actor, business_actor, make_admin

from app.models.audit_log import AuditLog, AuditLogImmutableError
from app.services import audit


async def _stage_and_commit(db, actor, **kwargs) -> AuditLog:
    entry = audit.record_audit_log(db, actor, **kwargs)
    await db.commit()
    return entry


def test_serialize_for_audit_handles_decimals_and_dates():
    payload = audit.serialize_for_audit(
        {
            "amount": Decimal("750000.00"),
            "at": datetime(2026, 3, 4, 10, 0, tzinfo=timezone.utc),
            "due": date(2026, 3, 31),
            "id": UUID("12345678-1234-5678-1234-567812345678"),
        }
    )
    assert payload == {
        "amount": "750000.00",
        "at": "2026-03-04T10:00:00+00:00",
        "due": "2026-03-31",
        "id": "12345678-1234-5678-1234-567812345678",
    }


@pytest.mark.asyncio
async def test_record_audit_log_computes_changes(db):
    actor = business_actor("biz-1")
    entry = await _stage_and_commit(
        db,
        actor,
        action=audit.AuditAction.RESUBMIT_APPLICATION,
        target_type="application",
        target_id="biz-1_1",
        old_value={"status": "rejected", "amount": Decimal("1")},
        new_value={"status": "pending", "amount": Decimal("1")},
    )
    assert entry.actor_role == "business"
    assert entry.success is True
    assert entry.details == {"changes": {"status": {"from": "rejected", "to": "pending"}}}


@pytest.mark.asyncio
async def test_audit_entries_cannot_be_updated(db):
    entry = await _stage_and_commit(
        db,
        business_actor(),
        action=audit.AuditAction.SUBMIT_APPLICATION,
        target_type="application",
        target_id="biz-1_1",
    )

    entry.success = False
    with pytest.raises(AuditLogImmutableError):
        await db.commit()
    await db.rollback()


@pytest.mark.asyncio
async def test_audit_entries_cannot_be_deleted(db):
    entry = await _stage_and_commit(
        db,
        business_actor(),
        action=audit.AuditAction.SUBMIT_APPLICATION,
        target_type="application",
        target_id="biz-1_1",
    )

    await db.delete(entry)
    with pytest.raises(AuditLogImmutableError):
        await db.commit()
    await db.rollback()

    remaining = (await db.execute(select(AuditLog))).scalars().all()
    assert len(remaining) == 1


@pytest.mark.asyncio
async def test_last_actor_for_ignores_failures(db):
    first = await make_admin(db, "rev-1", role="reviewer")
    second = await make_admin(db, "rev-2", role="reviewer")
    await _stage_and_commit(
        db,
        admin_actor(first),
        action=audit.AuditAction.REVIEW_APPLICATION,
        target_type="application",
        target_id="biz-1_1",
    )
    await _stage_and_commit(
        db,
        admin_actor(second),
        action=audit.AuditAction.REVIEW_APPLICATION,
        target_type="application",
        target_id="biz-1_1",
        success=False,
        error_reason="version_outdated",
    )

    actor_id = await audit.last_actor_for(db, "biz-1_1", [audit.AuditAction.REVIEW_APPLICATION])
    assert actor_id == "rev-1"
    assert await audit.last_actor_for(db, "biz-1_2", [audit.AuditAction.REVIEW_APPLICATION]) is None


@pytest.mark.asyncio
async def test_list_audit_logs_filters(db):
    reviewer = await make_admin(db, "rev-1", role="reviewer")
    for target_id, success in (("biz-1_1", True), ("biz-1_1", False), ("biz-2_1", True)):
        await _stage_and_commit(
            db,
            admin_actor(reviewer),
            action=audit.AuditAction.VIEW_APPLICATION,
            target_type="application",
            target_id=target_id,
            success=success,
        )

    items, total = await audit.list_audit_logs(db, target_id="biz-1_1")
    assert total == 2
    assert {item.target_id for item in items} == {"biz-1_1"}

    failures, failed_total = await audit.list_audit_logs(db, success=False)
    assert failed_total == 1
    assert failures[0].actor_role == "reviewer"

    page, paged_total = await audit.list_audit_logs(db, actor_id="rev-1", offset=1, limit=1)
    assert paged_total == 3
    assert len(page) == 1
