"""``GET <metrics.path>``: counters in the Prometheus text format."""

from __future__ import annotations

from flask import Blueprint, Response

from certdesk.app.context import get_container

metrics_bp = Blueprint("metrics", __name__)

_EXPOSITION_TYPE = "text/plain; version=0.0.4; charset=utf-8"


@metrics_bp.route("", methods=["GET"])
def export_metrics():
    collector = get_container().metrics
    body = collector.export() if collector is not None else "# metrics disabled\n"
    return Response(body, content_type=_EXPOSITION_TYPE)
