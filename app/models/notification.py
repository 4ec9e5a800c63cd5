import uuid

from sqlalchemy import Boolean, Column, DateTime, String, Text, Uuid, func

from app.db.base import Base
from app.models.clock import utcnow


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    recipient_id = Column(String(128), nullable=True, index=True)
    type = Column(String(64), nullable=False)
    application_id = Column(String(160), nullable=True, index=True)
    document_id = Column(String(64), nullable=True)
    message = Column(Text, nullable=False)
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
