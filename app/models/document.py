import uuid

from sqlalchemy import CheckConstraint, Column, Date, DateTime, ForeignKey, Integer, String, Uuid, func

from app.db.base import Base
from app.models.clock import utcnow


class Document(Base):
    __tablename__ = "documents"
    __table_args__ = (
        CheckConstraint("status IN ('pending', 'verified', 'rejected')", name="ck_documents_status"),
        CheckConstraint("subject_type IN ('business', 'investor')", name="ck_documents_subject_type"),
        CheckConstraint("version >= 1", name="ck_documents_version_positive"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_id = Column(String(128), nullable=False, index=True)
    subject_type = Column(String(20), nullable=False, default="business")
    application_id = Column(
        String(160), ForeignKey("applications.id", ondelete="SET NULL"), nullable=True, index=True
    )
    document_type = Column(String(64), nullable=False)
    file_name = Column(String(255), nullable=False)
    storage_url = Column(String(1024), nullable=True)
    status = Column(String(20), nullable=False, default="pending", index=True)
    expiry_date = Column(Date, nullable=True)
    verified_by = Column(String(128), nullable=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    rejection_reason = Column(String(500), nullable=True)
    superseded_by_id = Column(Uuid(as_uuid=True), nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    __mapper_args__ = {"version_id_col": version}
