from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, String, func

from app.db.base import Base
from app.models.clock import utcnow


class KycProfile(Base):
    __tablename__ = "kyc_profiles"
    __table_args__ = (
        CheckConstraint(
            "kyc_status IN ('pending', 'in-review', 'verified', 'rejected')",
            name="ck_kyc_profiles_status",
        ),
        CheckConstraint("subject_type IN ('business', 'investor')", name="ck_kyc_profiles_subject_type"),
        CheckConstraint("version >= 1", name="ck_kyc_profiles_version_positive"),
    )

    id = Column(String(128), primary_key=True)
    subject_type = Column(String(20), nullable=False)
    display_name = Column(String(255), nullable=False)
    kyc_status = Column(String(20), nullable=False, default="pending", index=True)
    kyc_documents_uploaded = Column(Boolean, nullable=False, default=False)
    kyc_reviewed_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )

    __mapper_args__ = {"version_id_col": version}
