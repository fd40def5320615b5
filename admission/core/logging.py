"""Structured logging for admission control.

Log lines are JSON on stdout, tagged with the current request id. Identity
keys (client addresses, phone numbers) never appear in clear: call sites log
``hash_key(key)``, and the redaction filter blanks known sensitive fields in
case one slips through as an ``extra``.
"""

from __future__ import annotations

import hashlib
import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from logging import LogRecord
from typing import Any, Iterable, Mapping

from admission.core.config import LogSettings, settings

_request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)

SENSITIVE_KEYS_DEFAULT: frozenset[str] = frozenset(
    {
        "authorization",
        "cookie",
        "set-cookie",
        "token",
        "secret",
        "password",
        "redis_url",
        "override_key",
        "identity",
        "phone",
        "x-forwarded-for",
        "x-real-ip",
    }
)

REDACTED = "[REDACTED]"

# LogRecord attributes that are not structured extras
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


def set_request_id(request_id: str | None) -> None:
    _request_id_var.set(request_id)


def get_request_id() -> str | None:
    return _request_id_var.get()


def clear_request_id() -> None:
    _request_id_var.set(None)


def hash_key(key: str) -> str:
    """Hash an identity key for logging without exposing it.

    Returns:
        First 16 hex chars of the SHA-256 digest.
    """

    return hashlib.sha256(key.encode()).hexdigest()[:16]


def _redact(value: Any, sensitive_keys: frozenset[str]) -> Any:
    if isinstance(value, Mapping):
        return {
            k: REDACTED if str(k).lower() in sensitive_keys else _redact(v, sensitive_keys)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return type(value)(_redact(v, sensitive_keys) for v in value)
    return value


def _extras(record: LogRecord, sensitive_keys: frozenset[str]) -> dict[str, Any]:
    """Return the record's ``extra`` fields with sensitive values redacted."""

    return {
        key: REDACTED if key.lower() in sensitive_keys else _redact(value, sensitive_keys)
        for key, value in vars(record).items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }


class RequestIdFilter(logging.Filter):
    """Attach request_id from context when absent on the record."""

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        if getattr(record, "request_id", None) is None:
            record.request_id = get_request_id()
        return True


class SensitiveDataFilter(logging.Filter):
    """Redact sensitive extras on the record before any formatter sees it."""

    def __init__(self, sensitive_keys: Iterable[str] | None = None) -> None:
        super().__init__()
        self.sensitive_keys = frozenset(k.lower() for k in (sensitive_keys or SENSITIVE_KEYS_DEFAULT))

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        for key, value in _extras(record, self.sensitive_keys).items():
            setattr(record, key, value)
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, message, extras."""

    def __init__(self, sensitive_keys: Iterable[str] | None = None) -> None:
        super().__init__()
        self.sensitive_keys = frozenset(k.lower() for k in (sensitive_keys or SENSITIVE_KEYS_DEFAULT))

    def format(self, record: LogRecord) -> str:  # noqa: D401
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(
            {k: v for k, v in _extras(record, self.sensitive_keys).items() if v is not None}
        )
        if "request_id" not in payload and get_request_id():
            payload["request_id"] = get_request_id()
        if record.exc_info and record.exc_info[0] is not None:
            payload["exc_type"] = record.exc_info[0].__name__

        return json.dumps(payload, default=str)


def configure_logging(log_settings: LogSettings | None = None) -> None:
    """Install a single stdout handler on the root logger.

    Args:
        log_settings: Optional log settings; defaults to global settings if omitted.
    """

    cfg = log_settings or settings.log

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestIdFilter())
    handler.addFilter(SensitiveDataFilter())
    if cfg.format == "plain":
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    else:
        handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, cfg.level.upper(), logging.INFO))

    # Avoid double logging from uvicorn if it gets re-configured
    logging.getLogger("uvicorn").propagate = False
    logging.getLogger("uvicorn.access").propagate = False
