import pytest
from sqlalchemy import select, update

from conftest import business_actor, make_application

from app.models.application import Application
from app.models.audit_log import AuditLog
from app.services import audit
from app.services.concurrency import check_expected_version, run_with_version_retry
from app.services.results import ErrorKind, Result


def _conflicting_attempt(db, application_id: str, *, conflicts: int):
    """Attempt that bumps the row version behind the ORM's back ``conflicts`` times."""
    calls = {"count": 0}

    async def attempt() -> Result[Application]:
        calls["count"] += 1
        application = await db.get(Application, application_id, populate_existing=True)
        if calls["count"] <= conflicts:
            await db.execute(
                update(Application)
                .where(Application.id == application_id)
                .values(version=Application.version + 1)
                .execution_options(synchronize_session=False)
            )
        application.admin_message = f"attempt {calls['count']}"
        await db.flush()
        return Result.success(application)

    return attempt, calls


def test_check_expected_version():
    application = Application(id="biz-1_1", version=3)
    assert check_expected_version("Application", application, None) is None
    assert check_expected_version("Application", application, 3) is None

    stale = check_expected_version("Application", application, 2)
    assert stale.error.kind == ErrorKind.STALE_VERSION
    assert stale.error.code == "version_outdated"
    assert stale.error.details == {
        "entity": "Application",
        "id": "biz-1_1",
        "expected_version": 2,
        "current_version": 3,
    }


@pytest.mark.asyncio
async def test_conflict_is_retried_once_then_commits(db, session_factory):
    application = await make_application(db, "biz-1")
    attempt, calls = _conflicting_attempt(db, application.id, conflicts=1)

    result = await run_with_version_retry(db, attempt, entity="Application", key=application.id, retries=1)

    assert result.ok
    assert calls["count"] == 2
    async with session_factory() as fresh:
        stored = await fresh.get(Application, application.id)
    assert stored.admin_message == "attempt 2"
    assert stored.version == 2


@pytest.mark.asyncio
async def test_exhausted_retries_return_stale_and_persist_failure(db, session_factory):
    application = await make_application(db, "biz-1")
    attempt, calls = _conflicting_attempt(db, application.id, conflicts=5)
    actor = business_actor("biz-1")

    def on_exhausted(result: Result) -> None:
        audit.record_audit_log(
            db,
            actor,
            action=audit.AuditAction.RESUBMIT_APPLICATION,
            target_type="application",
            target_id=application.id,
            success=False,
            error_reason=result.error.code,
        )

    result = await run_with_version_retry(
        db, attempt, entity="Application", key=application.id, retries=1, on_exhausted=on_exhausted
    )

    assert result.error.kind == ErrorKind.STALE_VERSION
    assert calls["count"] == 2
    async with session_factory() as fresh:
        stored = await fresh.get(Application, application.id)
        entries = (await fresh.execute(select(AuditLog))).scalars().all()
    assert stored.admin_message is None
    assert stored.version == 1
    assert [(entry.success, entry.error_reason) for entry in entries] == [(False, "version_outdated")]


@pytest.mark.asyncio
async def test_failed_attempt_is_still_committed(db, session_factory):
    actor = business_actor("biz-1")

    async def attempt() -> Result:
        audit.record_audit_log(
            db,
            actor,
            action=audit.AuditAction.SUBMIT_APPLICATION,
            target_type="application",
            target_id="biz-1",
            success=False,
            error_reason="active_application_exists",
        )
        return Result.failure(ErrorKind.INVALID_REQUEST, code="active_application_exists", message="busy")

    result = await run_with_version_retry(db, attempt, entity="Application", key="biz-1")

    assert not result.ok
    async with session_factory() as fresh:
        entries = (await fresh.execute(select(AuditLog))).scalars().all()
    assert len(entries) == 1
