"""Certificate request state machine.

Defines the valid status transitions for a certificate request.  All
transitions are enforced via :func:`assert_transition`.

Usage::

    from certdesk.core.state import REQUEST_TRANSITIONS, assert_transition
    from certdesk.core.types import RequestStatus

    assert_transition(
        RequestStatus.PENDING, RequestStatus.PROCESSING,
        REQUEST_TRANSITIONS,
    )
"""

from __future__ import annotations

import logging

from certdesk.core.types import AssessmentOutcome, RequestStatus

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Request: pending → processing/rejected/archived/archive_failed,
#          processing → approved/approval_failed,
#          approval_failed → processing (human re-approval).
# ---------------------------------------------------------------------------

REQUEST_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.PENDING: frozenset(
        {
            RequestStatus.PROCESSING,
            RequestStatus.REJECTED,
            RequestStatus.ARCHIVED,
            RequestStatus.ARCHIVE_FAILED,
        }
    ),
    RequestStatus.PROCESSING: frozenset(
        {
            RequestStatus.APPROVED,
            RequestStatus.APPROVAL_FAILED,
        }
    ),
    RequestStatus.APPROVAL_FAILED: frozenset({RequestStatus.PROCESSING}),
    RequestStatus.APPROVED: frozenset(),
    RequestStatus.REJECTED: frozenset(),
    RequestStatus.ARCHIVED: frozenset(),
    RequestStatus.ARCHIVE_FAILED: frozenset(),
}

# A failed assessment may only ever be archived.
FAILED_ASSESSMENT_TARGETS = frozenset(
    {RequestStatus.ARCHIVED, RequestStatus.ARCHIVE_FAILED},
)

# States the generation coordinator treats as already settled.
GENERATION_TERMINAL = frozenset(
    {
        RequestStatus.APPROVED,
        RequestStatus.APPROVAL_FAILED,
        RequestStatus.REJECTED,
        RequestStatus.ARCHIVED,
        RequestStatus.ARCHIVE_FAILED,
    }
)


def assert_transition(
    current: RequestStatus,
    target: RequestStatus,
    table: dict,
) -> None:
    """Raise :class:`ValueError` if *current* → *target* is not allowed.

    Parameters
    ----------
    current:
        The current status of the request.
    target:
        The status about to be persisted.
    table:
        Normally :data:`REQUEST_TRANSITIONS`.

    """
    allowed = table.get(current)
    if allowed is None:
        msg = f"Unknown status {current!r}"
        raise ValueError(msg)
    if target not in allowed:
        msg = (
            f"Invalid transition {current.value!r} -> {target.value!r}; "
            f"allowed targets: {sorted(s.value for s in allowed) or '(terminal)'}"
        )
        raise ValueError(msg)


def outcome_permits(
    outcome: AssessmentOutcome | None,
    target: RequestStatus,
) -> bool:
    """Return False when a ``FAIL`` assessment would reach a non-archive state."""
    if outcome is AssessmentOutcome.FAIL:
        return target in FAILED_ASSESSMENT_TARGETS
    return True


def log_transition(
    resource_type: str,
    resource_id,
    from_status,
    to_status,
    *,
    reason: str | None = None,
    actor_id: str | None = None,
) -> None:
    """Emit a structured log entry for a state transition."""
    extra = {
        "event": "state_transition",
        "resource_type": resource_type,
        "resource_id": str(resource_id),
        "from_status": from_status.value if hasattr(from_status, "value") else str(from_status),
        "to_status": to_status.value if hasattr(to_status, "value") else str(to_status),
    }
    if reason:
        extra["reason"] = reason
    if actor_id:
        extra["actor_id"] = actor_id
    log.info(
        "%s %s: %s -> %s%s",
        resource_type,
        resource_id,
        extra["from_status"],
        extra["to_status"],
        f" ({reason})" if reason else "",
        extra=extra,
    )
