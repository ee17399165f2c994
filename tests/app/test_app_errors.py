"""Unit tests for certdesk.app.errors -- RFC 7807 problem responses."""

from __future__ import annotations

import pytest
from flask import Flask

from certdesk.app.errors import (
    MALFORMED,
    PROBLEM_CONTENT_TYPE,
    SERVER_INTERNAL,
    Problem,
    error_type,
    register_error_handlers,
)
from certdesk.core.errors import IllegalTransition


@pytest.fixture()
def app():
    application = Flask("t")
    register_error_handlers(application)

    @application.route("/problem")
    def _problem():
        raise Problem(MALFORMED, "bad body", title="Malformed")

    @application.route("/transition")
    def _transition():
        raise IllegalTransition("APPROVED is terminal")

    @application.route("/crash")
    def _crash():
        raise RuntimeError("secret internals")

    return application


class TestProblem:
    def test_to_dict(self):
        body = Problem(MALFORMED, "x", 422).to_dict()
        assert body == {"type": MALFORMED, "detail": "x", "status": 422}

    def test_error_type(self):
        assert error_type("missing_reason") == "urn:certdesk:error:missing_reason"


class TestHandlers:
    def test_problem(self, app):
        resp = app.test_client().get("/problem")
        assert resp.status_code == 400
        assert resp.content_type == PROBLEM_CONTENT_TYPE
        assert resp.headers["Cache-Control"] == "no-store"
        assert resp.get_json()["title"] == "Malformed"

    def test_transition_error(self, app):
        resp = app.test_client().get("/transition")
        assert resp.status_code == 409
        assert resp.get_json()["type"] == "urn:certdesk:error:illegal_transition"

    def test_http_exception(self, app):
        resp = app.test_client().get("/nowhere")
        assert resp.status_code == 404
        assert resp.get_json()["type"] == "about:blank"

    def test_unhandled_hides_detail(self, app):
        resp = app.test_client().get("/crash")
        assert resp.status_code == 500
        body = resp.get_json()
        assert body["type"] == SERVER_INTERNAL
        assert "secret" not in body["detail"]
