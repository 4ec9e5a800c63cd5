from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.context import get_request_id
from app.services.results import EngineError, ErrorKind

logger = logging.getLogger(__name__)

STATUS_CODES = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    422: "validation_error",
    429: "rate_limited",
}

ENGINE_ERROR_STATUS = {
    ErrorKind.PERMISSION_DENIED: 403,
    ErrorKind.LIMIT_EXCEEDED: 403,
    ErrorKind.SEPARATION_OF_DUTIES_VIOLATION: 403,
    ErrorKind.BUSINESS_HOURS_RESTRICTED: 403,
    ErrorKind.DUAL_AUTHORIZATION_REQUIRED: 202,
    ErrorKind.ILLEGAL_TRANSITION: 409,
    ErrorKind.STALE_VERSION: 409,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_REQUEST: 400,
}


def _phrase(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Request failed"


def _as_details(details: Any) -> dict:
    if details is None:
        return {}
    if isinstance(details, dict):
        return details
    if isinstance(details, list):
        return {"errors": details}
    return {"detail": str(details)}


def error_response(status_code: int, code: str, message: str, details: Any | None = None) -> JSONResponse:
    payload = {"code": code, "message": message, "data": None, "details": _as_details(details)}
    return JSONResponse(status_code=status_code, content=jsonable_encoder(payload))


def engine_error_status(error: EngineError) -> int:
    return ENGINE_ERROR_STATUS.get(error.kind, 400)


async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    """Surface a refused gated operation with its machine-readable code.

    ``details.kind`` carries the error category so clients can branch on it
    without knowing every individual code.
    """
    return error_response(
        engine_error_status(exc),
        exc.code,
        exc.message,
        {"kind": exc.kind.value, **(exc.details or {})},
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    status_code = exc.status_code
    code = STATUS_CODES.get(status_code, "http_error")
    detail = exc.detail
    if isinstance(detail, dict):
        extra = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return error_response(
            status_code,
            detail.get("code") or code,
            detail.get("message") or _phrase(status_code),
            extra.get("details", extra),
        )
    if isinstance(detail, str):
        return error_response(status_code, code, detail)
    return error_response(status_code, code, _phrase(status_code), detail)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = "Validation failed"
    if errors:
        first = errors[0] or {}
        # body/query/path prefixes are noise for the caller
        field = ".".join(str(part) for part in first.get("loc") or [] if part not in {"body", "query", "path"})
        msg = first.get("msg") or message
        message = f"{field}: {msg}" if field else str(msg)
    return error_response(422, "validation_error", message, {"errors": errors})


async def rate_limit_exception_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    response = error_response(429, "rate_limited", _phrase(429), getattr(exc, "detail", None))
    headers = getattr(exc, "headers", None)
    if isinstance(headers, dict):
        response.headers.update(headers)
    return response


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = get_request_id()
    logger.exception("Unhandled error on %s %s (request_id=%s)", request.method, request.url.path, request_id)
    return error_response(500, "internal_server_error", "Internal server error", {"request_id": request_id})


def register_exception_handlers(app) -> None:
    app.add_exception_handler(EngineError, engine_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
