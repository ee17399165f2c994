"""Per-request hooks: correlation id, timing and the access log line.

Clients (or an upstream proxy) may supply ``X-Request-ID``; otherwise a
fresh hex id is minted.  The id is echoed on every response and picked
up by :class:`certdesk.logging.setup.RequestContextFilter`.
"""

from __future__ import annotations

import logging
import time
from uuid import uuid4

from flask import Flask, g, request

access_log = logging.getLogger("certdesk.access")

REQUEST_ID_HEADER = "X-Request-ID"


def _log_level_for(status: int) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    return logging.INFO


def register_request_hooks(app: Flask) -> None:
    """Install the before/after hooks on *app*."""

    @app.before_request
    def _stamp_request() -> None:
        g.request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
        g.started_at = time.monotonic()

    @app.after_request
    def _finish_request(response):
        rid = g.get("request_id")
        if rid:
            response.headers[REQUEST_ID_HEADER] = rid
        response.headers.setdefault("X-Content-Type-Options", "nosniff")

        started = g.get("started_at")
        elapsed = 0.0 if started is None else (time.monotonic() - started) * 1000

        container = app.extensions.get("container")
        metrics = getattr(container, "metrics", None)
        if metrics is not None:
            metrics.increment(
                "certdesk_http_requests_total",
                labels={"method": request.method, "status": str(response.status_code)},
            )

        access_log.log(
            _log_level_for(response.status_code),
            "%s %s %s %.1fms",
            request.method,
            request.path,
            response.status_code,
            elapsed,
            extra={
                "status": response.status_code,
                "duration_ms": round(elapsed, 1),
                "response_bytes": response.content_length,
            },
        )
        return response
