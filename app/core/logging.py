import json
import logging
import logging.config
from datetime import datetime, timezone
from typing import Optional

from app.core.context import get_principal_id, get_request_id
from app.core.settings import settings

AUDIT_LOGGER = "app.audit"
_SERVER_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


class RequestContextFilter(logging.Filter):
    """Stamp every record with the calling principal and request id."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.principal_id = get_principal_id()
        record.request_id = get_request_id()
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line.

    Records on the audit stream carry their structured entry under ``audit``
    (passed through ``extra``); it is flattened into the payload so log
    shippers can index action, target and outcome without parsing messages.
    """

    def __init__(self, stream_label: str = "app") -> None:
        super().__init__()
        self.stream_label = stream_label

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "stream": self.stream_label,
            "environment": settings.environment,
            "principal_id": getattr(record, "principal_id", "-"),
            "request_id": getattr(record, "request_id", "-"),
            "message": record.getMessage(),
        }
        audit_fields = getattr(record, "audit", None)
        if isinstance(audit_fields, dict):
            payload.update(audit_fields)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _handler(formatter: str, level: str) -> dict:
    return {
        "class": "logging.StreamHandler",
        "level": level,
        "formatter": formatter,
        "filters": ["request_context"],
        "stream": "ext://sys.stdout",
    }


def configure_logging(level: Optional[str] = None) -> None:
    log_level = (level or settings.log_level).upper()
    loggers = {
        "": {"handlers": ["default"], "level": log_level, "propagate": False},
        AUDIT_LOGGER: {"handlers": ["audit"], "level": "INFO", "propagate": False},
    }
    for name in _SERVER_LOGGERS:
        loggers[name] = {"handlers": ["default"], "level": log_level, "propagate": False}

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {"request_context": {"()": RequestContextFilter}},
            "formatters": {
                "json": {"()": JsonFormatter, "stream_label": "app"},
                "audit_json": {"()": JsonFormatter, "stream_label": "audit"},
            },
            "handlers": {
                "default": _handler("json", log_level),
                "audit": _handler("audit_json", "INFO"),
            },
            "loggers": loggers,
        }
    )
    logging.getLogger(__name__).info("Logging configured at level=%s", log_level)


def get_audit_logger() -> logging.Logger:
    # Audit entries are always emitted, regardless of LOG_LEVEL.
    return logging.getLogger(AUDIT_LOGGER)
