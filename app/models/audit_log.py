import uuid

from sqlalchemy import JSON, Boolean, Column, DateTime, String, Uuid, event, func

from app.db.base import Base
from app.models.clock import utcnow


class AuditLogImmutableError(RuntimeError):
    pass


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    actor_id = Column(String(128), nullable=False, index=True)
    actor_role = Column(String(32), nullable=False)
    action = Column(String(64), nullable=False, index=True)
    target_type = Column(String(64), nullable=False)
    target_id = Column(String(160), nullable=False, index=True)
    success = Column(Boolean, nullable=False)
    error_reason = Column(String(255), nullable=True)
    details = Column(JSON, nullable=True)
    old_value = Column(JSON, nullable=True)
    new_value = Column(JSON, nullable=True)
    created_at = Column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False, index=True
    )


@event.listens_for(AuditLog, "before_update")
def _reject_audit_update(mapper, connection, target):
    raise AuditLogImmutableError(f"Audit log {target.id} is append-only and cannot be modified")


@event.listens_for(AuditLog, "before_delete")
def _reject_audit_delete(mapper, connection, target):
    raise AuditLogImmutableError(f"Audit log {target.id} is append-only and cannot be deleted")
