from typing import Any

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.actor import ActorContext, PrincipalKind, normalize_principal_id
from app.core.context import set_principal_id
from app.core.permissions import Capability
from app.db.session import get_db
from app.models.admin_profile import AdminProfile
from app.services import guards
from app.services.results import ErrorKind, Result


async def get_db_session(db: AsyncSession = Depends(get_db)) -> AsyncSession:
    return db


async def get_actor(
    principal_id: str | None = Header(default=None, alias="X-Principal-Id"),
    principal_kind: str | None = Header(default=None, alias="X-Principal-Kind"),
    db: AsyncSession = Depends(get_db_session),
) -> ActorContext:
    """Resolve the caller forwarded by the upstream identity layer.

    Admin callers must have a profile; an inactive profile is still bound so the
    refusal is decided (and audited) by the gated operation itself.
    """
    if not principal_id or not principal_kind:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "principal_required", "message": "X-Principal-Id and X-Principal-Kind are required"},
        )
    try:
        normalized_id = normalize_principal_id(principal_id)
        kind = PrincipalKind(principal_kind.strip().lower())
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "invalid_principal", "message": str(exc)},
        ) from exc

    set_principal_id(normalized_id)
    actor = ActorContext(principal_id=normalized_id, kind=kind)
    if kind == PrincipalKind.ADMIN:
        admin = await db.get(AdminProfile, normalized_id)
        if admin is None:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"code": "admin_profile_missing", "message": "No admin profile for this principal"},
            )
        actor.bind_admin(admin)
    return actor


async def require_admin(actor: ActorContext = Depends(get_actor)) -> ActorContext:
    if not actor.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "admin_required", "message": "Only admins may access this resource"},
        )
    return actor


async def require_owner(actor: ActorContext = Depends(get_actor)) -> ActorContext:
    if not actor.is_owner_kind:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "owner_required", "message": "Only businesses and investors may access this resource"},
        )
    return actor


def accepted(result: Result, data: Any) -> JSONResponse:
    """202 envelope for an attempt that was recorded but still awaits another party."""
    error = result.error
    payload = {
        "code": error.code,
        "message": error.message,
        "data": data,
        "details": {"kind": error.kind.value, **(error.details or {})},
    }
    return JSONResponse(status_code=status.HTTP_202_ACCEPTED, content=jsonable_encoder(payload))


def is_pending_second_party(result: Result) -> bool:
    return (
        result.error is not None
        and result.error.kind == ErrorKind.DUAL_AUTHORIZATION_REQUIRED
        and result.value is not None
    )


def require_capability(*capabilities: Capability, action: str, target_type: str, target_param: str | None = None):
    """Gate a read endpoint on ``capabilities``; the decision is audited either way.

    ``target_param`` names the path parameter that identifies the target; without
    one the entry is recorded against the whole collection (``*``).
    """

    async def dependency(
        request: Request,
        actor: ActorContext = Depends(require_admin),
        db: AsyncSession = Depends(get_db_session),
    ) -> ActorContext:
        target_id = request.path_params.get(target_param, "*") if target_param else "*"
        result = await guards.authorize_access(
            db, actor, *capabilities, action=action, target_type=target_type, target_id=target_id
        )
        return result.unwrap()

    return dependency
