import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, String, Text, Uuid, func

from app.db.base import Base
from app.models.clock import utcnow


class Assignment(Base):
    __tablename__ = "assignments"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'in_review', 'completed', 'reassigned')",
            name="ck_assignments_status",
        ),
        CheckConstraint(
            "priority IN ('low', 'medium', 'high', 'urgent')",
            name="ck_assignments_priority",
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    application_id = Column(
        String(160), ForeignKey("applications.id", ondelete="CASCADE"), nullable=False, index=True
    )
    assigned_to = Column(String(128), ForeignKey("admin_profiles.id"), nullable=False, index=True)
    assigned_by = Column(String(128), nullable=False)
    status = Column(String(20), nullable=False, default="pending", index=True)
    priority = Column(String(10), nullable=False, default="medium")
    notes = Column(Text, nullable=True)
    due_date = Column(DateTime(timezone=True), nullable=True)
    assigned_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
