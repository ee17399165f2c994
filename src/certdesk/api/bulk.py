"""Bulk operation endpoints.

Every endpoint returns a ``BulkOperationResult`` with HTTP 200, even
when some or all items failed.  Only requests that cannot start (bad
body, over the item limit, missing actor) are errors.
"""

from __future__ import annotations

from flask import Blueprint, jsonify

from certdesk.api.decorators import actor_from, json_body, uuid_list
from certdesk.api.serializers import serialize_bulk_result
from certdesk.app.context import get_container
from certdesk.app.errors import LIMIT_EXCEEDED, MALFORMED, Problem
from certdesk.core.types import ProfileRole

bulk_bp = Blueprint("bulk", __name__)


def _run(fn, *args, **kwargs):
    try:
        return fn(*args, **kwargs)
    except ValueError as exc:
        raise Problem(LIMIT_EXCEEDED, str(exc)) from None


def _status_args(body: dict) -> tuple[str, str | None]:
    target = body.get("targetStatus")
    if not isinstance(target, str) or not target:
        raise Problem(MALFORMED, "'targetStatus' is required")
    reason = body.get("rejectionReason")
    if reason is not None and not isinstance(reason, str):
        raise Problem(MALFORMED, "'rejectionReason' must be a string")
    return target, reason


@bulk_bp.route("/bulk/request-status", methods=["POST"])
def bulk_request_status():
    body = json_body()
    target, reason = _status_args(body)
    result = _run(
        get_container().bulk_service.update_request_status,
        uuid_list(body, "requestIds"),
        target,
        actor_from(body),
        reason,
    )
    return jsonify(serialize_bulk_result(result))


@bulk_bp.route("/bulk/batch/<batch_id>/status", methods=["POST"])
def bulk_batch_status(batch_id):
    body = json_body()
    target, reason = _status_args(body)
    result = _run(
        get_container().bulk_service.batch_status,
        batch_id,
        target,
        actor_from(body),
        reason,
    )
    return jsonify(serialize_bulk_result(result))


@bulk_bp.route("/bulk/certificate-email", methods=["POST"])
def bulk_certificate_email():
    body = json_body()
    message = body.get("customMessage")
    if message is not None and not isinstance(message, str):
        raise Problem(MALFORMED, "'customMessage' must be a string")
    result = _run(
        get_container().bulk_service.send_certificate_emails,
        uuid_list(body, "requestIds"),
        message,
    )
    return jsonify(serialize_bulk_result(result))


@bulk_bp.route("/bulk/profiles/role", methods=["POST"])
def bulk_change_role():
    body = json_body()
    try:
        role = ProfileRole(body.get("role"))
    except ValueError:
        allowed = ", ".join(r.value for r in ProfileRole)
        raise Problem(MALFORMED, f"'role' must be one of: {allowed}") from None
    result = _run(
        get_container().bulk_service.change_roles,
        uuid_list(body, "profileIds"),
        role,
    )
    return jsonify(serialize_bulk_result(result))


@bulk_bp.route("/bulk/profiles/deactivate", methods=["POST"])
def bulk_deactivate():
    body = json_body()
    result = _run(
        get_container().bulk_service.deactivate,
        uuid_list(body, "profileIds"),
    )
    return jsonify(serialize_bulk_result(result))
