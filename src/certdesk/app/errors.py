"""Problem Details (RFC 7807) responses for the certdesk HTTP API.

Handlers raise :class:`Problem` directly, or let a domain
:class:`~certdesk.core.errors.TransitionError` escape; both end up as an
``application/problem+json`` body whose ``type`` is a
``urn:certdesk:error:<code>`` URN.
"""

from __future__ import annotations

import logging
from typing import Any

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from certdesk.core.errors import TransitionError

log = logging.getLogger(__name__)

_URN_PREFIX = "urn:certdesk:error:"

PROBLEM_CONTENT_TYPE = "application/problem+json"


def error_type(code: str) -> str:
    """Problem ``type`` URN for a machine error *code*."""
    return _URN_PREFIX + code


MALFORMED = error_type("malformed")
NOT_FOUND = error_type("not_found")
LIMIT_EXCEEDED = error_type("limit_exceeded")
SERVER_INTERNAL = error_type("serverInternal")


class Problem(Exception):
    """Exception carrying an RFC 7807 body.

    ``error_type`` is one of the URN constants above (or
    ``"about:blank"`` for plain HTTP errors); ``status`` defaults to 400.
    """

    def __init__(
        self,
        error_type: str,
        detail: str,
        status: int = 400,
        *,
        title: str | None = None,
    ) -> None:
        super().__init__(detail)
        self.error_type = error_type
        self.detail = detail
        self.status = status
        self.title = title

    def to_dict(self) -> dict[str, Any]:
        body = {"type": self.error_type, "detail": self.detail, "status": self.status}
        if self.title:
            body["title"] = self.title
        return body

    def to_response(self):
        response = jsonify(self.to_dict())
        response.status_code = self.status
        response.content_type = PROBLEM_CONTENT_TYPE
        response.headers["Cache-Control"] = "no-store"
        return response


def register_error_handlers(app: Flask) -> None:
    """Map every error raised inside a view onto a problem response."""

    @app.errorhandler(Problem)
    def _problem(exc: Problem):
        return exc.to_response()

    @app.errorhandler(TransitionError)
    def _transition_refused(exc: TransitionError):
        return Problem(error_type(exc.code), exc.detail, exc.status).to_response()

    @app.errorhandler(HTTPException)
    def _http_error(exc: HTTPException):
        status = exc.code or 500
        detail = exc.description or exc.name
        return Problem("about:blank", detail, status, title=exc.name).to_response()

    @app.errorhandler(Exception)
    def _unexpected(exc: Exception):
        log.exception("Unhandled %s while serving request", type(exc).__name__)
        return Problem(SERVER_INTERNAL, "Internal server error", 500).to_response()
