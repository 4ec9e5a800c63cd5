from fastapi import APIRouter

from app.api.v1.routers import (
    admin_applications,
    admin_profiles,
    applications,
    audit_logs,
    documents,
    health,
    kyc,
)

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(applications.router)
api_router.include_router(admin_applications.router)
api_router.include_router(documents.router)
api_router.include_router(kyc.router)
api_router.include_router(admin_profiles.router)
api_router.include_router(audit_logs.router)

__all__ = ["api_router"]
