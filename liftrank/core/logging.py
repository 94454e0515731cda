"""
Structured logging for the ranking service.

- JSON lines in production, one-line key=value output elsewhere.
- request_id is bound per request through a ContextVar and stamped on every record.
- log_event() attaches ranking context (user, cohort, event fields) to a record;
  both formatters render it.
"""

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

LOGGER_NAME = "liftrank"

request_id_ctx_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# Record attributes rendered when present (set via `extra=` or log_event)
_CONTEXT_ATTRS = (
    "user_id",
    "cohort",
    "event_type",
    "error_code",
    "error_message",
    "status",
    "path",
    "method",
    "latency_bucket",
)

_MAX_FIELD_CHARS = 500

_LATENCY_BUCKETS = ((10, "<10ms"), (100, "10-100ms"), (500, "100-500ms"), (1000, "500-1000ms"))


def get_request_id(default: Optional[str] = None) -> Optional[str]:
    rid = request_id_ctx_var.get()
    return default if rid is None else rid


def latency_bucket_ms(latency_ms: Optional[float]) -> str:
    """Coarse latency label for request logs and metrics."""
    if latency_ms is None:
        return "unknown"
    for upper, label in _LATENCY_BUCKETS:
        if latency_ms < upper:
            return label
    return ">=1000ms"


def _iso_utc(record: logging.LogRecord) -> str:
    stamp = datetime.fromtimestamp(record.created, timezone.utc)
    return stamp.strftime("%Y-%m-%dT%H:%M:%S.") + f"{stamp.microsecond // 1000:03d}Z"


def _context(record: logging.LogRecord) -> Dict[str, Any]:
    fields = {name: getattr(record, name) for name in _CONTEXT_ATTRS if getattr(record, name, None) is not None}
    fields.update(getattr(record, "event_fields", None) or {})
    return fields


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = get_request_id()
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": _iso_utc(record),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "request_id": getattr(record, "request_id", None),
        }
        payload.update(_context(record))
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class KeyValueFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        parts = [_iso_utc(record), record.levelname, record.name]
        rid = getattr(record, "request_id", None)
        if rid:
            parts.append(f"rid={rid}")
        parts.append(record.getMessage())
        parts.extend(f"{key}={value}" for key, value in _context(record).items())
        line = " ".join(str(part) for part in parts)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(env: str = "development", level: int = logging.INFO) -> logging.Logger:
    """Install a single stdout handler on the liftrank logger tree."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter() if env.lower() == "production" else KeyValueFormatter())
    handler.addFilter(RequestIdFilter())
    logger.handlers = [handler]
    # Propagate so pytest's caplog still sees records
    logger.propagate = True

    for noisy in ("uvicorn", "uvicorn.error"):
        logging.getLogger(noisy).propagate = False
    return logger


def _clip(value: Any) -> str:
    try:
        text = str(value)
    except Exception:
        return "<unserializable>"
    return text if len(text) <= _MAX_FIELD_CHARS else text[:_MAX_FIELD_CHARS] + "...<truncated>"


def log_event(
    level: str,
    msg: str,
    *,
    request_id: Optional[str] = None,
    user_id: Optional[str] = None,
    cohort: Optional[str] = None,
    event_type: Optional[str] = None,
    error_code: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Emit one structured ranking event.

    `extra` values are stringified and clipped so a large payload (a weight
    map, a failing record) never floods the log.
    """
    logger = logging.getLogger(LOGGER_NAME)
    if not logger.handlers:
        configure_logging(os.getenv("ENV", "development"))

    record_extra: Dict[str, Any] = {
        "request_id": request_id or get_request_id(),
        "user_id": user_id,
        "cohort": cohort,
        "event_type": event_type,
        "error_code": error_code,
        "event_fields": {key: _clip(value) for key, value in (extra or {}).items()},
    }
    logger.log(getattr(logging, level.upper(), logging.INFO), msg, extra=record_extra)
