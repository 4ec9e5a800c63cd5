from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.actor import ActorContext
from app.core.permissions import Capability
from app.schemas.audit import AuditLogEntry, AuditLogListResponse
from app.services import audit

router = APIRouter(prefix="/admin/audit-logs", tags=["audit-logs"])

audit_log_access = deps.require_capability(
    Capability.ACCESS_AUDIT_LOGS, action=audit.AuditAction.ACCESS_AUDIT_LOGS, target_type="audit_log"
)


@router.get("", response_model=AuditLogListResponse, summary="List audit log entries")
async def list_audit_logs(
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    target_id: str | None = Query(default=None),
    actor_id: str | None = Query(default=None),
    action: str | None = Query(default=None),
    success: bool | None = Query(default=None),
    _: ActorContext = Depends(audit_log_access),
    db: AsyncSession = Depends(deps.get_db_session),
) -> AuditLogListResponse:
    items, total = await audit.list_audit_logs(
        db,
        target_id=target_id,
        actor_id=actor_id,
        action=action,
        success=success,
        offset=(page - 1) * page_size,
        limit=page_size,
    )
    return AuditLogListResponse(items=[AuditLogEntry.model_validate(item) for item in items], total=total)
