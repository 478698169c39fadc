"""
Structured logging configuration for production use.

Provides JSON-formatted logs for better parsing and aggregation. Every record
carries the current request id and, once authenticated, the athlete id, so a
single request can be followed through router, engine and analytics logs.
"""
import logging
import sys
import json
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from core.config import settings

# One mutable dict per request. Sync dependencies and endpoints run in worker
# threads with a copied context; they share the dict, not the variable.
_request_context: ContextVar[Optional[Dict[str, Any]]] = ContextVar("request_context", default=None)


def bind_request_context(request_id: str):
    """Start a fresh context for one request. Returns the token for reset_request_context."""
    return _request_context.set({"request_id": request_id, "athlete_id": None})


def reset_request_context(token) -> None:
    _request_context.reset(token)


def bind_athlete(athlete_id: int) -> None:
    """Attach the authenticated athlete to the current request, if there is one."""
    context = _request_context.get()
    if context is not None:
        context["athlete_id"] = athlete_id


def current_request_context() -> Dict[str, Any]:
    return dict(_request_context.get() or {})


class RequestContextFilter(logging.Filter):
    """Copies request_id and athlete_id onto every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = _request_context.get() or {}
        record.request_id = context.get("request_id") or "-"
        record.athlete_id = context.get("athlete_id")
        return True


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        request_id = getattr(record, "request_id", "-")
        if request_id != "-":
            log_data["request_id"] = request_id
        athlete_id = getattr(record, "athlete_id", None)
        if athlete_id is not None:
            log_data["athlete_id"] = athlete_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


def setup_logging():
    """
    Configure application-wide logging.

    Uses JSON format in production, text format in development.
    """
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    if settings.LOG_FORMAT == "json" or settings.ENVIRONMENT == "production":
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s"
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.addFilter(RequestContextFilter())
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Set levels for noisy libraries
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("alembic").setLevel(logging.INFO)

    return root_logger
