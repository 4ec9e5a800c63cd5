from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.actor import ActorContext
from app.core.permissions import UNLIMITED, Capability
from app.schemas.admin_profiles import (
    AdminProfileCreate,
    AdminProfileDeactivate,
    AdminProfileOut,
    AdminProfileUpdate,
    CapabilitiesOut,
)
from app.services import admin_profiles as admin_service
from app.services import authz
from app.services.audit import AuditAction

router = APIRouter(prefix="/admin", tags=["admin-profiles"])

admin_directory_access = deps.require_capability(
    Capability.MANAGE_ADMINS, action=AuditAction.LIST_ADMINS, target_type="admin_profile"
)


@router.get("/me/capabilities", response_model=CapabilitiesOut, summary="Effective capabilities of the caller")
async def my_capabilities(actor: ActorContext = Depends(deps.require_admin)) -> CapabilitiesOut:
    admin = actor.admin
    permissions = authz.permissions_of(admin)
    limit = authz.effective_approval_limit(admin)
    return CapabilitiesOut(
        admin_id=admin.id,
        role=permissions.role.value,
        capabilities=permissions.as_flags(),
        custom_permissions=dict(permissions.custom),
        approval_limit="unlimited" if limit == UNLIMITED else str(limit),
        unlimited=limit == UNLIMITED,
    )


@router.get("/profiles", response_model=list[AdminProfileOut], summary="List admin profiles")
async def list_admin_profiles(
    include_inactive: bool = Query(default=False),
    _: ActorContext = Depends(admin_directory_access),
    db: AsyncSession = Depends(deps.get_db_session),
) -> list[AdminProfileOut]:
    items = await admin_service.list_admin_profiles(db, include_inactive=include_inactive)
    return [AdminProfileOut.model_validate(item) for item in items]


@router.post(
    "/profiles",
    response_model=AdminProfileOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create an admin profile",
)
async def create_admin_profile(
    payload: AdminProfileCreate,
    actor: ActorContext = Depends(deps.require_admin),
    db: AsyncSession = Depends(deps.get_db_session),
) -> AdminProfileOut:
    result = await admin_service.create_admin_profile(db, actor, payload)
    return AdminProfileOut.model_validate(result.unwrap())


@router.patch("/profiles/{admin_id}", response_model=AdminProfileOut, summary="Update an admin profile")
async def update_admin_profile(
    admin_id: str,
    payload: AdminProfileUpdate,
    actor: ActorContext = Depends(deps.require_admin),
    db: AsyncSession = Depends(deps.get_db_session),
) -> AdminProfileOut:
    result = await admin_service.update_admin_profile(db, actor, admin_id, payload)
    return AdminProfileOut.model_validate(result.unwrap())


@router.post(
    "/profiles/{admin_id}/deactivate",
    response_model=AdminProfileOut,
    summary="Deactivate an admin profile",
)
async def deactivate_admin_profile(
    admin_id: str,
    payload: AdminProfileDeactivate | None = None,
    actor: ActorContext = Depends(deps.require_admin),
    db: AsyncSession = Depends(deps.get_db_session),
) -> AdminProfileOut:
    payload = payload or AdminProfileDeactivate()
    result = await admin_service.deactivate_admin_profile(
        db, actor, admin_id, expected_version=payload.expected_version
    )
    return AdminProfileOut.model_validate(result.unwrap())
