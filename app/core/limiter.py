from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from app.core.settings import settings


def principal_or_remote_address(request: Request) -> str:
    """Rate-limit per authenticated principal, falling back to the client address."""
    principal_id = request.headers.get("x-principal-id", "").strip()
    if principal_id:
        return f"principal:{principal_id}"
    return get_remote_address(request)


limiter = Limiter(
    key_func=principal_or_remote_address,
    default_limits=[f"{settings.rate_limit_per_minute}/minute"],
    storage_uri=settings.redis_url,
    enabled=settings.rate_limit_enabled,
)

__all__ = ["limiter", "principal_or_remote_address"]
