from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select, text

from app.core.settings import settings
from app.db.session import AsyncSessionLocal, engine
from app.models.application import Application
from app.models.dual_authorization import DualAuthorization
from app.utils.redis_client import get_redis_client

APP_VERSION = "0.1.0"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


async def _check_db() -> dict[str, str]:
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:  # pragma: no cover - exercised in runtime
        return {"status": "error", "error": str(exc)}


async def _check_redis() -> dict[str, str]:
    if not settings.rate_limit_enabled:
        return {"status": "ok", "detail": "rate limiting disabled"}
    try:
        await get_redis_client().ping()
        return {"status": "ok"}
    except Exception as exc:
        return {"status": "error", "error": str(exc)}


async def _review_queue() -> dict[str, Any]:
    """Application counts per status plus second approvals still outstanding."""
    async with AsyncSessionLocal() as session:
        rows = await session.execute(select(Application.status, func.count()).group_by(Application.status))
        by_status = {status: int(count) for status, count in rows.all()}
        awaiting = await session.execute(
            select(func.count()).select_from(DualAuthorization).where(DualAuthorization.status == "pending_secondary")
        )
        return {"applications": by_status, "awaiting_second_approval": int(awaiting.scalar_one() or 0)}


async def _run_checks() -> dict[str, dict[str, Any]]:
    return {
        "api": {"status": "ok", "version": APP_VERSION},
        "database": await _check_db(),
        "redis": await _check_redis(),
    }


def _overall_status(checks: dict[str, dict[str, Any]]) -> tuple[str, bool]:
    ready = all(check.get("status") == "ok" for check in checks.values())
    return ("ok" if ready else "degraded", ready)


async def live_payload() -> dict[str, str]:
    return {"status": "ok", "timestamp": _now_iso()}


async def ready_payload() -> dict[str, Any]:
    checks = await _run_checks()
    overall, ready = _overall_status(checks)
    return {
        "status": overall,
        "ready": ready,
        "environment": settings.environment,
        "timestamp": _now_iso(),
        "checks": checks,
    }


async def status_summary_payload() -> dict[str, Any]:
    payload = await ready_payload()
    payload["version"] = APP_VERSION
    if payload["checks"]["database"]["status"] == "ok":
        payload["review_queue"] = await _review_queue()
    return payload
