"""Request parsing helpers shared by the API blueprints."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from flask import g, request

from certdesk.app.errors import MALFORMED, Problem


def json_body() -> dict[str, Any]:
    """Return the request body as a JSON object.

    An empty body is treated as ``{}``; anything other than an object
    raises a ``malformed`` problem.
    """
    if not request.get_data():
        return {}
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise Problem(MALFORMED, "Request body must be a JSON object")
    return body


def actor_from(body: dict[str, Any]) -> str:
    """Read ``actorId`` and bind it to the request for logging."""
    actor = body.get("actorId") or ""
    if not isinstance(actor, str):
        raise Problem(MALFORMED, "'actorId' must be a string")
    if actor:
        g.actor_id = actor
    return actor


def uuid_list(body: dict[str, Any], field: str) -> list[UUID]:
    """Parse ``body[field]`` as a list of UUID strings."""
    raw = body.get(field)
    if not isinstance(raw, list):
        raise Problem(MALFORMED, f"'{field}' must be a list of ids")
    ids = []
    for value in raw:
        try:
            ids.append(UUID(str(value)))
        except ValueError:
            raise Problem(MALFORMED, f"Invalid id in '{field}': {value!r}") from None
    return ids


def int_arg(name: str, default: int, *, minimum: int = 0, maximum: int | None = None) -> int:
    """Integer query argument clamped to ``[minimum, maximum]``."""
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise Problem(MALFORMED, f"Query argument '{name}' must be an integer") from None
    value = max(minimum, value)
    if maximum is not None:
        value = min(maximum, value)
    return value
