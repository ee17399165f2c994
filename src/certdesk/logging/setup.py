"""Logging for certdesk.

Everything logs under the ``certdesk`` logger tree.  Records leave as
JSON lines (``logging.format: json``) or as a single readable line
(``text``), enriched with the current HTTP request's id, client
address, method, path and acting operator when there is one.  Operator
actions additionally go to ``certdesk.audit``, which can be routed to
its own rotating file.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from certdesk.config.settings import LoggingSettings

ROOT_LOGGER = "certdesk"
AUDIT_LOGGER = "certdesk.audit"

_CONTEXT_ATTRS = ("request_id", "client_ip", "actor_id", "method", "path")

# Attributes every LogRecord has; anything else on a record came from extra=.
_BUILTIN_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

_NOISY_LOGGERS = ("werkzeug", "gunicorn.error", "gunicorn.access")


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: core fields, request context, then extras."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(
            (attr, getattr(record, attr))
            for attr in _CONTEXT_ATTRS
            if getattr(record, attr, None) not in (None, "-")
        )
        payload.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _BUILTIN_ATTRS
            and key not in _CONTEXT_ATTRS
            and key not in payload
            and not key.startswith("_")
        )
        if record.exc_info and record.exc_info[0] is not None:
            payload["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack_info"] = self.formatStack(record.stack_info)
        return json.dumps(payload, default=str)


class TextFormatter(logging.Formatter):
    """``2026-01-01 12:00:00 INFO     [req-id] logger: message``."""

    def __init__(self) -> None:
        super().__init__(
            "%(asctime)s %(levelname)-8s [%(request_id)s] %(name)s: %(message)s",
            "%Y-%m-%d %H:%M:%S",
        )


class RequestContextFilter(logging.Filter):
    """Copy request context from Flask onto each record.

    Outside a request the attributes are still set (``"-"`` or
    ``None``) so that format strings referencing them never fail.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        from flask import g, has_request_context, request  # noqa: PLC0415

        for attr in _CONTEXT_ATTRS:
            if not hasattr(record, attr):
                setattr(record, attr, "-" if attr in ("request_id", "client_ip") else None)

        if has_request_context():
            record.request_id = g.get("request_id", record.request_id)  # type: ignore[attr-defined]
            record.client_ip = request.remote_addr or "-"  # type: ignore[attr-defined]
            record.method = request.method  # type: ignore[attr-defined]
            record.path = request.path  # type: ignore[attr-defined]
            record.actor_id = g.get("actor_id") or record.actor_id  # type: ignore[attr-defined]
        return True


def _audit_file_handler(settings: LoggingSettings, context: logging.Filter):
    audit = settings.audit
    try:
        handler = RotatingFileHandler(
            audit.file,
            maxBytes=audit.max_file_size_bytes,
            backupCount=audit.backup_count,
        )
    except OSError as exc:
        logging.getLogger(ROOT_LOGGER).warning(
            "Audit log %s could not be opened: %s", audit.file, exc
        )
        return None
    handler.setFormatter(StructuredFormatter())
    handler.addFilter(context)
    return handler


def configure_logging(settings: LoggingSettings) -> logging.Logger:
    """(Re)configure the ``certdesk`` logger tree and return its root.

    Bootstrap handlers are dropped and the tree stops propagating to
    the Python root logger.
    """
    context = RequestContextFilter()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(StructuredFormatter() if settings.format == "json" else TextFormatter())
    console.addFilter(context)

    root = logging.getLogger(ROOT_LOGGER)
    root.handlers.clear()
    root.addHandler(console)
    root.setLevel(getattr(logging, settings.level.upper(), logging.INFO))
    root.propagate = False

    audit = logging.getLogger(AUDIT_LOGGER)
    audit.handlers.clear()
    audit.setLevel(logging.INFO)
    audit.disabled = not settings.audit.enabled
    if settings.audit.enabled and settings.audit.file:
        handler = _audit_file_handler(settings, context)
        if handler is not None:
            audit.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return root


def audit_event(action: str, **fields) -> None:
    """Record one operator action on ``certdesk.audit``."""
    logging.getLogger(AUDIT_LOGGER).info(
        action,
        extra={"event": "audit", "action": action, **fields},
    )
