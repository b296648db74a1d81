"""
Logging setup.

Records carry the request id and caller of the request being served, so a
denied access or a skipped analytics entry can be traced back to the call
that produced it. JSON output in production, one-line text otherwise.
"""
import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from core.config import Settings, settings as default_settings

REQUEST_ID_HEADER = "X-Request-ID"

_request_context: ContextVar[Dict[str, Any]] = ContextVar("request_context", default={})

_QUIET_LOGGERS = ("sqlalchemy.engine", "urllib3", "google", "firebase_admin")


def bind_request_context(request_id: Optional[str] = None, **fields: Any):
    """
    Start a request-scoped logging context. Returns the token for
    clear_request_context().
    """
    context = {"request_id": request_id or uuid.uuid4().hex}
    context.update({k: v for k, v in fields.items() if v is not None})
    return _request_context.set(context)


def update_request_context(**fields: Any) -> None:
    # Copy so contexts captured by other tasks are untouched
    context = dict(_request_context.get())
    context.update({k: v for k, v in fields.items() if v is not None})
    _request_context.set(context)


def clear_request_context(token) -> None:
    _request_context.reset(token)


def current_request_id() -> Optional[str]:
    return _request_context.get().get("request_id")


class RequestContextFilter(logging.Filter):
    """Copies the active request context onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = _request_context.get()
        record.request_id = context.get("request_id", "-")
        record.request_context = context
        return True


class JSONFormatter(logging.Formatter):
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
        log_data.update(getattr(record, "request_context", {}) or {})

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Per-call fields win over request context
        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    def __init__(self):
        super().__init__("%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "request_id"):
            record.request_id = "-"
        return super().format(record)


def setup_logging(app_settings: Optional[Settings] = None) -> logging.Logger:
    """
    Configure the root logger from settings.

    Safe to call more than once; handlers are replaced, not stacked.
    """
    app_settings = app_settings or default_settings
    log_level = getattr(logging, app_settings.LOG_LEVEL.upper(), logging.INFO)
    use_json = app_settings.LOG_FORMAT == "json" or app_settings.ENVIRONMENT == "production"

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.addFilter(RequestContextFilter())
    handler.setFormatter(JSONFormatter() if use_json else TextFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger
