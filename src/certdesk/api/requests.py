"""Certificate request endpoints.

- ``GET  /requests/{id}``: fetch one request
- ``POST /requests/{id}/transition``: apply an operator transition
- ``POST /requests/{id}/generate``: run document generation inline
"""

from __future__ import annotations

from flask import Blueprint, jsonify

from certdesk.api.decorators import actor_from, json_body
from certdesk.api.serializers import serialize_request
from certdesk.app.context import get_container
from certdesk.app.errors import MALFORMED, Problem
from certdesk.core.errors import RequestNotFound

requests_bp = Blueprint("requests", __name__)


@requests_bp.route("/requests/<uuid:request_id>", methods=["GET"])
def get_request(request_id):
    req = get_container().requests.find_by_id(request_id)
    if req is None:
        msg = f"Certificate request {request_id} not found"
        raise RequestNotFound(msg)
    return jsonify(serialize_request(req))


@requests_bp.route("/requests/<uuid:request_id>/transition", methods=["POST"])
def transition_request(request_id):
    """Phase 1 of an approval, or a rejection / archive.

    Approvals return the request in ``PROCESSING``; generation then
    runs in the background.
    """
    body = json_body()
    target = body.get("targetStatus")
    if not isinstance(target, str) or not target:
        raise Problem(MALFORMED, "'targetStatus' is required")
    reason = body.get("rejectionReason")
    if reason is not None and not isinstance(reason, str):
        raise Problem(MALFORMED, "'rejectionReason' must be a string")

    updated = get_container().transition_service.transition(
        request_id,
        target,
        actor_from(body),
        reason,
    )
    return jsonify(serialize_request(updated))


@requests_bp.route("/requests/<uuid:request_id>/generate", methods=["POST"])
def generate_request(request_id):
    body = json_body()
    actor = actor_from(body)
    updated = get_container().generation.on_approved(request_id, actor or None)
    return jsonify(serialize_request(updated))
