from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.actor import ActorContext
from app.core.permissions import AdminRole, Capability, role_level
from app.models.admin_profile import AdminProfile
from app.schemas.admin_profiles import AdminProfileCreate, AdminProfileUpdate
from app.services import audit, guards
from app.services.concurrency import check_expected_version
from app.services.results import Result

logger = logging.getLogger(__name__)

TARGET_TYPE = "admin_profile"
NULLABLE_FIELDS = ("department", "approval_limit")


def _role_ceiling(actor: ActorContext, role: str | None, target: AdminProfile | None = None) -> Result | None:
    """An admin never grants, edits or removes a role above their own."""
    actor_level = role_level(actor.admin.role)
    if role is not None and role_level(role) > actor_level:
        return guards.forbidden(
            "role_above_actor",
            f"Cannot grant role {role} above your own",
            {"role": role, "actor_role": actor.admin.role},
        )
    if target is not None and role_level(target.role) > actor_level:
        return guards.forbidden(
            "target_above_actor",
            f"Cannot modify admin {target.id} who outranks you",
            {"target_role": target.role, "actor_role": actor.admin.role},
        )
    return None


def _unlimited_guard(actor: ActorContext, unlimited: bool | None) -> Result | None:
    if unlimited and AdminRole.coerce(actor.admin.role) != AdminRole.SUPER_ADMIN:
        return guards.forbidden("unlimited_requires_super_admin", "Only a super admin can grant unlimited approval")
    return None


async def create_admin_profile(
    db: AsyncSession,
    actor: ActorContext,
    payload: AdminProfileCreate,
) -> Result[AdminProfile]:
    async def attempt() -> Result[AdminProfile]:
        await guards.reload_actor(db, actor)

        def fail(result: Result) -> Result:
            return guards.reject_with_audit(
                db, actor, result, action=audit.AuditAction.CREATE_ADMIN, target_type=TARGET_TYPE, target_id=payload.id
            )

        denied = (
            guards.require_capability(actor, Capability.MANAGE_ADMINS)
            or _role_ceiling(actor, payload.role)
            or _unlimited_guard(actor, payload.unlimited_approval)
        )
        if denied:
            return fail(denied)
        if await db.get(AdminProfile, payload.id) is not None:
            return fail(guards.invalid("admin_exists", f"Admin {payload.id} already exists"))
        email = str(payload.email).lower()
        existing_email = await db.execute(select(AdminProfile.id).where(AdminProfile.email == email))
        if existing_email.scalar_one_or_none() is not None:
            return fail(guards.invalid("email_in_use", f"Email {email} is already used by another admin"))

        profile = AdminProfile(
            id=payload.id,
            display_name=payload.display_name,
            email=email,
            role=payload.role,
            department=payload.department,
            approval_limit=payload.approval_limit,
            unlimited_approval=payload.unlimited_approval,
            permissions=dict(payload.permissions),
            specializations=list(payload.specializations),
            current_workload=0,
            max_workload=payload.max_workload,
            is_active=True,
            created_by=actor.principal_id,
        )
        db.add(profile)
        await db.flush()
        audit.record_audit_log(
            db,
            actor,
            action=audit.AuditAction.CREATE_ADMIN,
            target_type=TARGET_TYPE,
            target_id=profile.id,
            new_value=audit.model_snapshot(profile),
        )
        return Result.success(profile)

    result = await guards.run_gated(
        db, actor, attempt, action=audit.AuditAction.CREATE_ADMIN, target_type=TARGET_TYPE, target_id=payload.id
    )
    if result.ok:
        logger.info("Admin %s created with role %s by %s", payload.id, payload.role, actor.principal_id)
    return result


async def update_admin_profile(
    db: AsyncSession,
    actor: ActorContext,
    admin_id: str,
    payload: AdminProfileUpdate,
) -> Result[AdminProfile]:
    async def attempt() -> Result[AdminProfile]:
        await guards.reload_actor(db, actor)

        def fail(result: Result) -> Result:
            return guards.reject_with_audit(
                db, actor, result, action=audit.AuditAction.UPDATE_ADMIN, target_type=TARGET_TYPE, target_id=admin_id
            )

        denied = guards.require_capability(actor, Capability.MANAGE_ADMINS)
        if denied:
            return fail(denied)
        profile = await db.get(AdminProfile, admin_id, populate_existing=True)
        if profile is None:
            return fail(guards.not_found("Admin", admin_id))
        denied = _role_ceiling(actor, payload.role, profile) or _unlimited_guard(actor, payload.unlimited_approval)
        if denied:
            return fail(denied)
        if admin_id == actor.principal_id and payload.role is not None and payload.role != profile.role:
            return fail(guards.forbidden("self_role_change", "Admins cannot change their own role"))
        stale = check_expected_version("AdminProfile", profile, payload.expected_version)
        if stale:
            return fail(stale)

        changes: dict[str, Any] = payload.model_dump(exclude_unset=True, exclude={"expected_version"})
        if "email" in changes and changes["email"] is not None:
            email = str(changes["email"]).lower()
            clash = await db.execute(
                select(AdminProfile.id).where(AdminProfile.email == email, AdminProfile.id != admin_id)
            )
            if clash.scalar_one_or_none() is not None:
                return fail(guards.invalid("email_in_use", f"Email {email} is already used by another admin"))
            changes["email"] = email
        if changes.get("max_workload") is not None and changes["max_workload"] < (profile.current_workload or 0):
            return fail(
                guards.invalid(
                    "max_workload_below_current",
                    "Maximum workload cannot be lower than the current workload",
                    {"current_workload": profile.current_workload},
                )
            )

        before = audit.model_snapshot(profile)
        for field, value in changes.items():
            if value is None and field not in NULLABLE_FIELDS:
                continue
            setattr(profile, field, value)
        await db.flush()
        audit.record_audit_log(
            db,
            actor,
            action=audit.AuditAction.UPDATE_ADMIN,
            target_type=TARGET_TYPE,
            target_id=profile.id,
            old_value=before,
            new_value=audit.model_snapshot(profile),
        )
        return Result.success(profile)

    return await guards.run_gated(
        db, actor, attempt, action=audit.AuditAction.UPDATE_ADMIN, target_type=TARGET_TYPE, target_id=admin_id
    )


async def deactivate_admin_profile(
    db: AsyncSession,
    actor: ActorContext,
    admin_id: str,
    *,
    expected_version: int | None = None,
) -> Result[AdminProfile]:
    """Logical delete: the row stays so audit entries keep pointing at it."""

    async def attempt() -> Result[AdminProfile]:
        await guards.reload_actor(db, actor)

        def fail(result: Result) -> Result:
            return guards.reject_with_audit(
                db,
                actor,
                result,
                action=audit.AuditAction.DEACTIVATE_ADMIN,
                target_type=TARGET_TYPE,
                target_id=admin_id,
            )

        denied = guards.require_capability(actor, Capability.MANAGE_ADMINS)
        if denied:
            return fail(denied)
        if admin_id == actor.principal_id:
            return fail(guards.invalid("cannot_deactivate_self", "Admins cannot deactivate themselves"))
        profile = await db.get(AdminProfile, admin_id, populate_existing=True)
        if profile is None:
            return fail(guards.not_found("Admin", admin_id))
        denied = _role_ceiling(actor, None, profile)
        if denied:
            return fail(denied)
        stale = check_expected_version("AdminProfile", profile, expected_version)
        if stale:
            return fail(stale)
        if not profile.is_active:
            return fail(guards.invalid("already_inactive", f"Admin {admin_id} is already inactive"))

        profile.is_active = False
        await db.flush()
        audit.record_audit_log(
            db,
            actor,
            action=audit.AuditAction.DEACTIVATE_ADMIN,
            target_type=TARGET_TYPE,
            target_id=profile.id,
            details={"open_workload": profile.current_workload},
        )
        return Result.success(profile)

    return await guards.run_gated(
        db, actor, attempt, action=audit.AuditAction.DEACTIVATE_ADMIN, target_type=TARGET_TYPE, target_id=admin_id
    )


async def list_admin_profiles(db: AsyncSession, *, include_inactive: bool = False) -> list[AdminProfile]:
    stmt = select(AdminProfile).order_by(AdminProfile.display_name)
    if not include_inactive:
        stmt = stmt.where(AdminProfile.is_active.is_(True))
    result = await db.execute(stmt)
    return list(result.scalars().all())
