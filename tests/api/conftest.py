"""Fixtures for the HTTP API tests: a Flask app wired to a stub container."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from certdesk.api import register_blueprints
from certdesk.api.metrics import metrics_bp
from certdesk.app.factory import create_app
from certdesk.metrics.collector import MetricsCollector


@pytest.fixture()
def container(settings):
    stub = MagicMock()
    stub.settings = settings
    stub.metrics = MetricsCollector()
    stub.workers = []
    return stub


@pytest.fixture()
def app(settings, container):
    application = create_app(config=SimpleNamespace(settings=settings), database=None)
    application.extensions["container"] = container
    register_blueprints(application)
    application.register_blueprint(metrics_bp, url_prefix=settings.metrics.path)
    application.testing = True
    return application


@pytest.fixture()
def client(app):
    return app.test_client()
