from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable
from uuid import UUID

from fastapi.encoders import jsonable_encoder
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.actor import ActorContext
from app.core.logging import get_audit_logger
from app.models.audit_log import AuditLog


class AuditAction:
    VIEW_APPLICATION = "view_application"
    LIST_APPLICATIONS = "list_applications"
    SUBMIT_APPLICATION = "submit_application"
    RESUBMIT_APPLICATION = "resubmit_application"
    REVIEW_APPLICATION = "review_application"
    REQUEST_CHANGES = "request_changes"
    APPROVE_APPLICATION = "approve_application"
    REJECT_APPLICATION = "reject_application"
    ASSIGN_REVIEWER = "assign_reviewer"
    REASSIGN_REVIEWER = "reassign_reviewer"
    COMPLETE_ASSIGNMENT = "complete_assignment"
    LIST_ASSIGNMENTS = "list_assignments"
    REGISTER_DOCUMENT = "register_document"
    VERIFY_DOCUMENT = "verify_document"
    REJECT_DOCUMENT = "reject_document"
    UPDATE_KYC_PROFILE = "update_kyc_profile"
    VIEW_KYC = "view_kyc"
    CREATE_ADMIN = "create_admin"
    UPDATE_ADMIN = "update_admin"
    DEACTIVATE_ADMIN = "deactivate_admin"
    LIST_ADMINS = "list_admins"
    ACCESS_AUDIT_LOGS = "access_audit_logs"


def serialize_for_audit(value: Any) -> Any:
    return jsonable_encoder(
        value,
        custom_encoder={
            Decimal: lambda v: str(v),
            datetime: lambda v: v.isoformat(),
            date: lambda v: v.isoformat(),
            UUID: lambda v: str(v),
        },
    )


def model_snapshot(model: Any, *, exclude: Iterable[str] | None = None) -> dict[str, Any]:
    if model is None:
        return {}
    excluded = set(exclude or [])
    data: dict[str, Any] = {}
    for column in model.__table__.columns:
        name = column.name
        if name in excluded:
            continue
        data[name] = getattr(model, name)
    return serialize_for_audit(data)


def _diff_values(old: Any, new: Any, prefix: str = "") -> dict[str, dict[str, Any]]:
    changes: dict[str, dict[str, Any]] = {}
    if isinstance(old, dict) and isinstance(new, dict):
        keys = set(old.keys()) | set(new.keys())
        for key in keys:
            path = f"{prefix}.{key}" if prefix else str(key)
            changes.update(_diff_values(old.get(key), new.get(key), path))
        return changes
    if old != new:
        changes[prefix or "value"] = {"from": old, "to": new}
    return changes


def record_audit_log(
    db: AsyncSession,
    actor: ActorContext,
    *,
    action: str,
    target_type: str,
    target_id: Any,
    success: bool = True,
    error_reason: str | None = None,
    details: dict[str, Any] | None = None,
    old_value: Any | None = None,
    new_value: Any | None = None,
) -> AuditLog:
    """Stage one audit entry; the caller's commit persists it."""
    serialized_old = serialize_for_audit(old_value) if old_value is not None else None
    serialized_new = serialize_for_audit(new_value) if new_value is not None else None
    payload = serialize_for_audit(dict(details or {}))
    if serialized_old is not None or serialized_new is not None:
        changes = _diff_values(serialized_old or {}, serialized_new or {})
        if changes:
            payload["changes"] = changes
    entry = AuditLog(
        actor_id=actor.principal_id,
        actor_role=actor.role_label,
        action=action,
        target_type=target_type,
        target_id=str(target_id),
        success=success,
        error_reason=error_reason,
        details=payload or None,
        old_value=serialized_old,
        new_value=serialized_new,
    )
    db.add(entry)
    get_audit_logger().info(
        "%s %s:%s %s",
        action,
        target_type,
        target_id,
        "ok" if success else f"refused ({error_reason or '-'})",
        extra={
            "audit": {
                "action": action,
                "target_type": target_type,
                "target_id": str(target_id),
                "actor_id": actor.principal_id,
                "actor_role": actor.role_label,
                "success": success,
                "error_reason": error_reason,
            }
        },
    )
    return entry


async def last_actor_for(
    db: AsyncSession,
    target_id: str,
    actions: Iterable[str],
) -> str | None:
    """Principal who most recently performed one of ``actions`` successfully on the target."""
    stmt = (
        select(AuditLog.actor_id)
        .where(
            AuditLog.target_id == str(target_id),
            AuditLog.action.in_(list(actions)),
            AuditLog.success.is_(True),
        )
        .order_by(AuditLog.created_at.desc())
        .limit(1)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def list_audit_logs(
    db: AsyncSession,
    *,
    target_id: str | None = None,
    actor_id: str | None = None,
    action: str | None = None,
    success: bool | None = None,
    offset: int = 0,
    limit: int = 50,
) -> tuple[list[AuditLog], int]:
    filters = []
    if target_id:
        filters.append(AuditLog.target_id == target_id)
    if actor_id:
        filters.append(AuditLog.actor_id == actor_id)
    if action:
        filters.append(AuditLog.action == action)
    if success is not None:
        filters.append(AuditLog.success.is_(success))

    count_stmt = select(func.count()).select_from(AuditLog).where(*filters)
    total = (await db.execute(count_stmt)).scalar_one()
    stmt = (
        select(AuditLog)
        .where(*filters)
        .order_by(AuditLog.created_at.desc())
        .offset(offset)
        .limit(limit)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all()), int(total or 0)
