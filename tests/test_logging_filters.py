"""Tests for sensitive data filtering and key hashing in logs."""

from __future__ import annotations

import json
import logging
from io import StringIO

import pytest

from admission.core.config import LogSettings
from admission.core.logging import (
    JsonFormatter,
    SensitiveDataFilter,
    clear_request_id,
    configure_logging,
    hash_key,
    set_request_id,
)


@pytest.fixture
def capture():
    def _build(name: str) -> tuple[logging.Logger, StringIO]:
        logger = logging.getLogger(name)
        logger.setLevel(logging.INFO)
        logger.handlers.clear()
        logger.propagate = False

        stream = StringIO()
        handler = logging.StreamHandler(stream)
        handler.addFilter(SensitiveDataFilter())
        handler.setFormatter(JsonFormatter())
        logger.addHandler(handler)
        return logger, stream

    return _build


def test_sensitive_filter_redacts_identity_fields(capture):
    """Ensure client addresses and override keys never reach the output."""
    logger, stream = capture("test_identity_redaction")

    logger.info(
        "admission_event",
        extra={
            "override_key": "phone:+355691234567",
            "x-forwarded-for": "203.0.113.7",
            "phone": "+355691234567",
            "policy": "phoneVerify",
        },
    )

    output = stream.getvalue()

    assert "+355691234567" not in output
    assert "203.0.113.7" not in output
    assert "[REDACTED]" in output
    assert "phoneVerify" in output


def test_sensitive_filter_redacts_store_url(capture):
    logger, stream = capture("test_store_redaction")

    logger.info("store_event", extra={"redis_url": "redis://:hunter2@cache:6379/0"})

    assert "hunter2" not in stream.getvalue()


def test_sensitive_filter_allows_safe_fields(capture):
    """Verify safe fields pass through unmodified."""
    logger, stream = capture("test_safe_fields")

    logger.info(
        "request.completed",
        extra={
            "request_id": "req-123",
            "request_path": "/store/purchase-limit/check",
            "status": 429,
            "duration_ms": 1.5,
        },
    )

    record = json.loads(stream.getvalue())

    assert record["request_id"] == "req-123"
    assert record["request_path"] == "/store/purchase-limit/check"
    assert record["status"] == 429
    assert "[REDACTED]" not in stream.getvalue()


def test_sensitive_filter_redacts_nested_dicts(capture):
    """Ensure nested sensitive fields are redacted."""
    logger, stream = capture("test_nested")

    logger.info(
        "nested_event",
        extra={
            "headers": {
                "X-Real-IP": "198.51.100.4",
                "user-agent": "pytest",
            },
        },
    )

    output = stream.getvalue()

    assert "198.51.100.4" not in output
    assert "pytest" in output


def test_hash_key_is_stable_and_opaque():
    digest = hash_key("phone:+355691234567")

    assert digest == hash_key("phone:+355691234567")
    assert digest != hash_key("phone:+355691234568")
    assert len(digest) == 16


@pytest.mark.parametrize("log_format, formatter_cls", [("json", JsonFormatter), ("plain", logging.Formatter)])
def test_configure_logging_installs_one_stdout_handler(log_format, formatter_cls):
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        configure_logging(LogSettings(level="DEBUG", format=log_format))

        assert len(root.handlers) == 1
        assert type(root.handlers[0].formatter) is formatter_cls
        assert root.level == logging.DEBUG
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)


def test_json_formatter_tags_request_id():
    formatter = JsonFormatter()
    record = logging.makeLogRecord({"name": "admission", "levelname": "INFO", "msg": "request.completed"})

    set_request_id("req-ctx")
    try:
        line = json.loads(formatter.format(record))
    finally:
        clear_request_id()

    assert line["request_id"] == "req-ctx"
    assert line["message"] == "request.completed"
