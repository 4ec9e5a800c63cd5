from app.models.admin_profile import AdminProfile
from app.models.application import Application
from app.models.assignment import Assignment
from app.models.audit_log import AuditLog
from app.models.document import Document
from app.models.dual_authorization import DualAuthorization
from app.models.kyc_profile import KycProfile
from app.models.notification import Notification

__all__ = [
    "AdminProfile",
    "Application",
    "Assignment",
    "AuditLog",
    "Document",
    "DualAuthorization",
    "KycProfile",
    "Notification",
]
