"""
Structured logging for tenantpay.

Every record emitted under the ``tenantpay`` logger carries the request_id of
the HTTP request that produced it (when there is one). Production renders one
JSON object per line; everything else gets a single human-readable line.

Payment details and verification codes are replaced before they are attached
to a record, so callers can hand ``log_event`` a raw payload.
"""

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

LOGGER_NAME = "tenantpay"

request_id_ctx_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

SENSITIVE_FIELDS = frozenset({"code", "cvv", "cardNumber", "accountNumber", "routingNumber"})

# Fields copied from the record onto the rendered line when present
CONTEXT_FIELDS = ("request_id", "admin_id", "attempt_id", "event_type", "error_code")

_LATENCY_BUCKETS = ((10, "<10ms"), (100, "10-100ms"), (500, "100-500ms"), (1000, "500-1000ms"))

MAX_VALUE_LENGTH = 500


def get_request_id(default: Optional[str] = None) -> Optional[str]:
    current = request_id_ctx_var.get()
    return default if current is None else current


def latency_bucket_ms(latency_ms: Optional[float]) -> str:
    """Coarse latency label for request logs."""
    if latency_ms is None:
        return "unknown"
    for ceiling, label in _LATENCY_BUCKETS:
        if latency_ms < ceiling:
            return label
    return ">=1000ms"


def _utc_stamp(record: logging.LogRecord) -> str:
    stamp = datetime.fromtimestamp(record.created, timezone.utc)
    return stamp.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = request_id_ctx_var.get()
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        body: Dict[str, Any] = {
            "timestamp": _utc_stamp(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", None),
        }
        for field in CONTEXT_FIELDS[1:]:
            value = getattr(record, field, None)
            if value is not None:
                body[field] = value
        if record.exc_info:
            body["exception"] = self.formatException(record.exc_info)
        return json.dumps(body, default=str)


class PrettyFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        tags = []
        for field, label in (("request_id", "rid"), ("admin_id", "admin")):
            value = getattr(record, field, None)
            if value:
                tags.append(f"[{label}={value}]")
        head = " ".join([_utc_stamp(record), record.levelname, f"[{LOGGER_NAME}]", *tags])
        line = f"{head} {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(env: str = "development") -> None:
    """Install a single stdout handler on the tenantpay logger."""
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestIdFilter())
    handler.setFormatter(JsonFormatter() if env.lower() == "production" else PrettyFormatter())

    root = logging.getLogger(LOGGER_NAME)
    root.setLevel(logging.INFO)
    root.handlers = [handler]
    root.propagate = True

    # uvicorn keeps its own handlers
    for name in ("uvicorn", "uvicorn.error"):
        logging.getLogger(name).propagate = False


def scrub(key: str, value: Any) -> str:
    """Render a payload value for logging, hiding secrets and clipping long text."""
    if key in SENSITIVE_FIELDS:
        return "<redacted>"
    try:
        text = str(value)
    except Exception:
        return "<unserializable>"
    if len(text) > MAX_VALUE_LENGTH:
        return text[:MAX_VALUE_LENGTH] + "...<truncated>"
    return text


def log_event(
    level: str,
    msg: str,
    *,
    request_id: Optional[str] = None,
    admin_id: Optional[str] = None,
    attempt_id: Optional[str] = None,
    event_type: Optional[str] = None,
    error_code: Optional[str] = None,
    extra: Optional[Dict[str, object]] = None,
):
    logger = logging.getLogger(LOGGER_NAME)
    if not logger.handlers:
        configure_logging(os.getenv("ENV", "development"))

    fields: Dict[str, Any] = {
        "request_id": request_id or get_request_id(),
        "admin_id": admin_id,
        "attempt_id": attempt_id,
    }
    if event_type:
        fields["event_type"] = event_type
    if error_code:
        fields["error_code"] = error_code
    for key, value in (extra or {}).items():
        fields[key] = scrub(key, value)

    emit = getattr(logger, level, logger.info)
    emit(msg, extra=fields)
