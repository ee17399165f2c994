"""HTTP API layer: Flask blueprint registration.

Call :func:`register_blueprints` during application startup to wire
the request, job and bulk blueprints into the Flask app.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from flask import Flask

log = logging.getLogger(__name__)

API_PREFIX = "/api"


def register_blueprints(app: Flask) -> None:
    """Register every API blueprint under :data:`API_PREFIX`."""
    from certdesk.api.bulk import bulk_bp  # noqa: PLC0415
    from certdesk.api.jobs import jobs_bp  # noqa: PLC0415
    from certdesk.api.requests import requests_bp  # noqa: PLC0415

    app.register_blueprint(requests_bp, url_prefix=API_PREFIX)
    app.register_blueprint(jobs_bp, url_prefix=API_PREFIX)
    app.register_blueprint(bulk_bp, url_prefix=API_PREFIX)

    log.info(
        "Registered API blueprints under %s (%d URL rules)",
        API_PREFIX,
        len(list(app.url_map.iter_rules())),
    )
