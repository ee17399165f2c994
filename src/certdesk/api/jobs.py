"""Scheduler triggers and operator listings.

- ``POST /jobs/retry-queue``: one retry-processing pass
- ``POST /jobs/bounce-monitor``: one bounce evaluation
- ``GET  /retry-queue``: list retry entries
- ``GET  /alerts``: list delivery alerts
- ``POST /alerts/{id}/resolve``: resolve an alert
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from certdesk.api.decorators import actor_from, int_arg, json_body
from certdesk.api.serializers import serialize_alert, serialize_retry_entry
from certdesk.app.context import get_container
from certdesk.app.errors import MALFORMED, NOT_FOUND, Problem
from certdesk.core.types import RetryStatus

jobs_bp = Blueprint("jobs", __name__)


@jobs_bp.route("/jobs/retry-queue", methods=["POST"])
def run_retry_queue():
    summary = get_container().retry_processor.process()
    return jsonify(summary.to_dict())


@jobs_bp.route("/jobs/bounce-monitor", methods=["POST"])
def run_bounce_monitor():
    body = json_body()
    window = body.get("windowHours")
    if window is not None and (not isinstance(window, int) or isinstance(window, bool) or window < 1):
        raise Problem(MALFORMED, "'windowHours' must be a positive integer")
    alerts = get_container().bounce_monitor.evaluate(window)
    return jsonify({"alerts": [serialize_alert(a) for a in alerts]})


@jobs_bp.route("/retry-queue", methods=["GET"])
def list_retry_queue():
    status = request.args.get("status") or None
    if status is not None and status not in {s.value for s in RetryStatus}:
        raise Problem(MALFORMED, f"Unknown retry status {status!r}")
    entries = get_container().retries.find_all_paginated(
        status=status,
        limit=int_arg("limit", 50, minimum=1, maximum=500),
        offset=int_arg("offset", 0),
    )
    return jsonify([serialize_retry_entry(e) for e in entries])


@jobs_bp.route("/alerts", methods=["GET"])
def list_alerts():
    include_resolved = request.args.get("include_resolved", "").lower() in ("1", "true", "yes")
    alerts = get_container().bounce_monitor.list_alerts(
        include_resolved=include_resolved,
        limit=int_arg("limit", 50, minimum=1, maximum=500),
        offset=int_arg("offset", 0),
    )
    return jsonify([serialize_alert(a) for a in alerts])


@jobs_bp.route("/alerts/<uuid:alert_id>/resolve", methods=["POST"])
def resolve_alert(alert_id):
    body = json_body()
    actor = actor_from(body)
    if not actor:
        raise Problem(MALFORMED, "'actorId' is required")
    alert = get_container().bounce_monitor.resolve(alert_id, actor)
    if alert is None:
        raise Problem(NOT_FOUND, f"Alert {alert_id} not found or already resolved", 404)
    return jsonify(serialize_alert(alert))
