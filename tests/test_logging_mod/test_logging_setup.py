"""Unit tests for certdesk.logging.setup -- formatters and configure_logging."""

from __future__ import annotations

import json
import logging
import sys

import pytest
from flask import Flask, g

from certdesk.config.settings import AuditLogSettings, LoggingSettings
from certdesk.logging.setup import (
    AUDIT_LOGGER,
    ROOT_LOGGER,
    RequestContextFilter,
    StructuredFormatter,
    audit_event,
    configure_logging,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _settings(fmt="json", level="INFO", audit_file=None) -> LoggingSettings:
    return LoggingSettings(
        level=level,
        format=fmt,
        audit=AuditLogSettings(
            enabled=audit_file is not None,
            file=audit_file,
            max_file_size_bytes=1024 * 1024,
            backup_count=1,
        ),
    )


def _record(msg="hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord("certdesk.test", logging.INFO, __file__, 1, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture()
def restore_loggers():
    """configure_logging mutates global loggers; put them back afterwards."""
    saved = {}
    for name in (ROOT_LOGGER, AUDIT_LOGGER):
        lg = logging.getLogger(name)
        saved[name] = (list(lg.handlers), lg.level, lg.propagate, lg.disabled)
    yield
    for name, (handlers, level, propagate, disabled) in saved.items():
        lg = logging.getLogger(name)
        for handler in lg.handlers:
            if handler not in handlers:
                handler.close()
        lg.handlers[:] = handlers
        lg.setLevel(level)
        lg.propagate = propagate
        lg.disabled = disabled


# ---------------------------------------------------------------------------
# Formatters and filter
# ---------------------------------------------------------------------------


class TestStructuredFormatter:
    def test_extras_are_included(self):
        line = StructuredFormatter().format(
            _record(event="status_transition", resource_id="r1", request_id="-"),
        )
        data = json.loads(line)
        assert data["message"] == "hello"
        assert data["level"] == "INFO"
        assert data["event"] == "status_transition"
        assert data["resource_id"] == "r1"
        assert "request_id" not in data

    def test_exception_is_rendered(self):
        try:
            raise RuntimeError("kaboom")
        except RuntimeError:
            record = _record()
            record.exc_info = sys.exc_info()
        data = json.loads(StructuredFormatter().format(record))
        assert "kaboom" in data["exception"]


class TestRequestContextFilter:
    def test_defaults_outside_request(self):
        record = _record()
        assert RequestContextFilter().filter(record)
        assert record.request_id == "-"
        assert record.actor_id is None

    def test_request_values(self):
        app = Flask("t")
        with app.test_request_context("/api/x", method="POST"):
            g.request_id = "abc123"
            g.actor_id = "adm1"
            record = _record()
            RequestContextFilter().filter(record)
        assert record.request_id == "abc123"
        assert record.actor_id == "adm1"
        assert record.method == "POST"
        assert record.path == "/api/x"


# ---------------------------------------------------------------------------
# configure_logging
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    def test_replaces_handlers(self, restore_loggers):
        root = configure_logging(_settings(level="debug"))
        assert root.name == ROOT_LOGGER
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, StructuredFormatter)
        assert logging.getLogger(AUDIT_LOGGER).disabled

    def test_text_format(self, restore_loggers):
        root = configure_logging(_settings(fmt="text"))
        assert not isinstance(root.handlers[0].formatter, StructuredFormatter)

    def test_audit_file(self, restore_loggers, tmp_path):
        path = tmp_path / "audit.jsonl"
        configure_logging(_settings(audit_file=str(path)))

        audit_event("bulk_status_update", actor_id="adm1", total=3)
        for handler in logging.getLogger(AUDIT_LOGGER).handlers:
            handler.flush()

        data = json.loads(path.read_text(encoding="utf-8").splitlines()[0])
        assert data["action"] == "bulk_status_update"
        assert data["total"] == 3
