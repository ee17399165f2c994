"""State machine engine for certificate requests.

:meth:`TransitionService.transition` is the only way a request's
status changes in response to an operator.  Preconditions are checked
before anything is written, in this order:

1. a non-empty actor id
2. the target is one an operator may request
3. the request exists
4. a ``FAIL`` assessment may only be archived
5. ``REJECTED`` needs a non-empty reason
6. the move is legal from the current status

Approval is two-phase.  The engine writes ``PROCESSING`` (never
``APPROVED``) and hands the request to the generation coordinator,
which performs the terminal write.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from certdesk.core.errors import (
    IllegalTransition,
    MissingActor,
    MissingReason,
    RequestNotFound,
)
from certdesk.core.state import (
    REQUEST_TRANSITIONS,
    assert_transition,
    log_transition,
    outcome_permits,
)
from certdesk.core.types import REQUESTABLE_TARGETS, RequestStatus
from certdesk.logging import audit_event
from certdesk.notifications.events import event_for_transition

if TYPE_CHECKING:
    from collections.abc import Callable
    from uuid import UUID

    from certdesk.models.request import CertificateRequest
    from certdesk.repositories.request import CertificateRequestRepository
    from certdesk.services.notification import NotificationDispatcher

log = logging.getLogger(__name__)


def parse_target(value: str | RequestStatus) -> RequestStatus:
    """Coerce *value* to a requestable status or raise :class:`IllegalTransition`."""
    try:
        target = RequestStatus(str(value).upper())
    except ValueError:
        msg = f"Unknown target status {value!r}"
        raise IllegalTransition(msg) from None
    if target not in REQUESTABLE_TARGETS:
        msg = (
            f"{target.value} cannot be requested directly; "
            f"allowed targets: {sorted(t.value for t in REQUESTABLE_TARGETS)}"
        )
        raise IllegalTransition(msg)
    return target


class TransitionService:
    """Validates and applies operator-requested status transitions.

    Parameters
    ----------
    request_repo:
        Persistence for certificate requests.
    dispatcher:
        Sends the status-change notification after every applied
        transition.  Its failures are logged and never undo the write.
    on_processing:
        Called with the updated request after ``PROCESSING`` has been
        written.  Normally :meth:`GenerationCoordinator.schedule`.

    """

    def __init__(
        self,
        request_repo: CertificateRequestRepository,
        dispatcher: NotificationDispatcher | None,
        *,
        on_processing: Callable[[CertificateRequest], object] | None = None,
        metrics=None,
    ) -> None:
        self._requests = request_repo
        self._dispatcher = dispatcher
        self._on_processing = on_processing
        self._metrics = metrics

    def transition(
        self,
        request_id: UUID,
        target_status: RequestStatus | str,
        actor_id: str,
        rejection_reason: str | None = None,
    ) -> CertificateRequest:
        """Apply one transition and return the request as written.

        Raises
        ------
        MissingActor, IllegalTransition, RequestNotFound, MissingReason
            On any failed precondition; the request is left untouched.

        """
        try:
            return self._apply(request_id, target_status, actor_id, rejection_reason)
        except (MissingActor, IllegalTransition, RequestNotFound, MissingReason) as exc:
            if self._metrics:
                self._metrics.increment(
                    "certdesk_transition_rejections_total",
                    labels={"code": exc.code},
                )
            raise

    def _apply(
        self,
        request_id: UUID,
        target_status: RequestStatus | str,
        actor_id: str,
        rejection_reason: str | None,
    ) -> CertificateRequest:
        if not actor_id or not actor_id.strip():
            msg = "An actor id is required to change a request's status"
            raise MissingActor(msg)

        target = parse_target(target_status)

        request = self._requests.find_by_id(request_id)
        if request is None:
            msg = f"Certificate request {request_id} not found"
            raise RequestNotFound(msg)

        if not outcome_permits(request.assessment_outcome, target):
            msg = (
                f"Request {request_id} has a FAIL assessment and can only be "
                f"archived, not moved to {target.value}"
            )
            raise IllegalTransition(msg)

        if target is RequestStatus.REJECTED and not (rejection_reason and rejection_reason.strip()):
            msg = "A rejection reason is required to reject a request"
            raise MissingReason(msg)

        written = RequestStatus.PROCESSING if target is RequestStatus.APPROVED else target
        try:
            assert_transition(request.status, written, REQUEST_TRANSITIONS)
        except ValueError as exc:
            raise IllegalTransition(str(exc)) from None

        updated = self._requests.transition_status(
            request.id,
            request.status,
            written,
            reviewer_id=actor_id,
            rejection_reason=rejection_reason if target is RequestStatus.REJECTED else None,
        )
        if updated is None:
            msg = (
                f"Request {request_id} changed while it was being updated; "
                "reload and try again"
            )
            raise IllegalTransition(msg)

        log_transition(
            "certificate_request",
            updated.id,
            request.status,
            written,
            reason=updated.rejection_reason if written is RequestStatus.REJECTED else None,
            actor_id=actor_id,
        )
        audit_event(
            "request_transition",
            request_id=str(updated.id),
            from_status=request.status.value,
            to_status=written.value,
            actor_id=actor_id,
        )
        if self._metrics:
            self._metrics.increment(
                "certdesk_transitions_total",
                labels={"to": written.value},
            )

        self._notify(request.status, updated)

        if written is RequestStatus.PROCESSING and self._on_processing is not None:
            try:
                self._on_processing(updated)
            except Exception:
                # Phase 2 stays recoverable through the stale-PROCESSING sweep.
                log.exception("Could not schedule generation for request %s", updated.id)

        return updated

    def _notify(self, old_status: RequestStatus, request: CertificateRequest) -> None:
        if self._dispatcher is None:
            return
        try:
            event = event_for_transition(
                request,
                old_status,
                request.status,
                self._dispatcher.portal_url,
            )
            result = self._dispatcher.dispatch(event)
        except Exception:
            log.exception("Notification for request %s failed", request.id)
            return
        if result.error:
            log.warning(
                "Notification for request %s not delivered: %s",
                request.id,
                result.error,
            )
