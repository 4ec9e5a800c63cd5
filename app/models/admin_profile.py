from sqlalchemy import JSON, Boolean, CheckConstraint, Column, DateTime, Integer, Numeric, String, func

from app.core.permissions import AdminRole
from app.db.base import Base
from app.models.clock import utcnow

_ROLE_VALUES = ", ".join(f"'{role}'" for role in AdminRole.list_all())


class AdminProfile(Base):
    __tablename__ = "admin_profiles"
    __table_args__ = (
        CheckConstraint(f"role IN ({_ROLE_VALUES})", name="ck_admin_profiles_role"),
        CheckConstraint("approval_limit IS NULL OR approval_limit >= 0", name="ck_admin_profiles_limit_nonneg"),
        CheckConstraint("current_workload >= 0", name="ck_admin_profiles_workload_nonneg"),
        CheckConstraint("max_workload >= 0", name="ck_admin_profiles_max_workload_nonneg"),
        CheckConstraint("version >= 1", name="ck_admin_profiles_version_positive"),
    )

    id = Column(String(128), primary_key=True)
    display_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True, index=True)
    department = Column(String(120), nullable=True)
    role = Column(String(32), nullable=False, default=AdminRole.VIEWER.value, index=True)
    approval_limit = Column(Numeric(18, 2), nullable=True)
    unlimited_approval = Column(Boolean, nullable=False, default=False)
    permissions = Column(JSON, nullable=False, default=dict)
    specializations = Column(JSON, nullable=False, default=list)
    current_workload = Column(Integer, nullable=False, default=0)
    max_workload = Column(Integer, nullable=False, default=10)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    created_by = Column(String(128), nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )

    __mapper_args__ = {"version_id_col": version}
