from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, Numeric, String, Text, func

from app.db.base import Base
from app.models.clock import utcnow
from app.models.types import EncryptedString


class Application(Base):
    __tablename__ = "applications"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'review', 'more-info', 'approved', 'rejected')",
            name="ck_applications_status",
        ),
        CheckConstraint(
            "documents_status IN ('pending', 'in-review', 'verified', 'rejected')",
            name="ck_applications_documents_status",
        ),
        CheckConstraint("requested_amount > 0", name="ck_applications_amount_positive"),
        CheckConstraint("funding_duration_months > 0", name="ck_applications_duration_positive"),
        CheckConstraint("resubmission_count >= 0", name="ck_applications_resubmission_nonneg"),
        CheckConstraint("version >= 1", name="ck_applications_version_positive"),
    )

    # "{owner_id}_{epoch_ms}", kept across resubmissions
    id = Column(String(160), primary_key=True)
    owner_id = Column(String(128), nullable=False, index=True)
    business_name = Column(String(255), nullable=False)
    contract_type = Column(String(64), nullable=False)
    funding_purpose = Column(Text, nullable=True)
    funding_duration_months = Column(Integer, nullable=False)
    requested_amount = Column(Numeric(18, 2), nullable=False)
    bvn = Column(EncryptedString(), nullable=True)
    status = Column(String(20), nullable=False, default="pending", index=True)
    rejection_reason = Column(String(64), nullable=True)
    rejection_allows_resubmit = Column(Boolean, nullable=True)
    admin_message = Column(Text, nullable=True)
    documents_status = Column(String(20), nullable=False, default="pending")
    documents_submitted = Column(Boolean, nullable=False, default=False)
    assigned_to = Column(String(128), nullable=True, index=True)
    reviewed_by = Column(String(128), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    approved_by = Column(String(128), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    resubmitted_at = Column(DateTime(timezone=True), nullable=True)
    resubmission_count = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )

    __mapper_args__ = {"version_id_col": version}
