import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, Numeric, String, Text, Uuid, func

from app.db.base import Base
from app.models.clock import utcnow


class DualAuthorization(Base):
    __tablename__ = "dual_authorizations"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending_secondary', 'approved', 'rejected', 'superseded')",
            name="ck_dual_authorizations_status",
        ),
        CheckConstraint("version >= 1", name="ck_dual_authorizations_version_positive"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    application_id = Column(
        String(160), ForeignKey("applications.id", ondelete="CASCADE"), nullable=False, index=True
    )
    requested_amount = Column(Numeric(18, 2), nullable=False)
    primary_approver_id = Column(String(128), nullable=False)
    primary_approved_at = Column(DateTime(timezone=True), nullable=False)
    primary_notes = Column(Text, nullable=True)
    secondary_approver_id = Column(String(128), nullable=True)
    secondary_approved_at = Column(DateTime(timezone=True), nullable=True)
    secondary_notes = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default="pending_secondary", index=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )

    __mapper_args__ = {"version_id_col": version}
