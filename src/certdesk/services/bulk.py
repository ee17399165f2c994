"""Bulk operations with per-item failure isolation.

:class:`BulkOperationRunner` applies one operation to many independent
targets and tallies the outcome instead of stopping at the first
error.  It never raises for item failures; it only raises
:class:`ValueError` before starting when the input is over the
configured ``bulk.max_items`` limit.

:class:`BulkOperationService` wires the runner to the concrete
operations exposed over HTTP: request status changes (by id or by
batch), certificate emails, role changes and deactivations.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, TypeVar

from certdesk.core.errors import MissingActor, MissingReason
from certdesk.core.types import BulkOperationKind, ProfileRole, RequestStatus
from certdesk.logging import audit_event
from certdesk.models.bulk import BulkOperationResult
from certdesk.notifications.events import (
    BatchApproved,
    BatchRejected,
    certificate_issued,
)
from certdesk.services.transitions import parse_target

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping, Sequence
    from uuid import UUID

    from certdesk.config.settings import BulkSettings
    from certdesk.repositories.profile import ProfileRepository
    from certdesk.repositories.request import CertificateRequestRepository
    from certdesk.services.notification import NotificationDispatcher
    from certdesk.services.transitions import TransitionService

log = logging.getLogger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


class BulkOperationRunner:
    """Runs an operation over a list of items, one at a time or in chunks."""

    def __init__(self, settings: BulkSettings, metrics=None) -> None:
        self._settings = settings
        self._metrics = metrics

    def _start(self, items: Iterable[T], kind: str) -> tuple[list[T], BulkOperationResult]:
        items = list(items)
        if len(items) > self._settings.max_items:
            msg = (
                f"Bulk {kind} over {len(items)} items exceeds the limit of "
                f"{self._settings.max_items}"
            )
            raise ValueError(msg)
        return items, BulkOperationResult(total=len(items))

    def run(
        self,
        items: Iterable[T],
        operation: Callable[[T], Any],
        *,
        key: Callable[[T], str] = str,
        kind: str = "operation",
        on_progress: Callable[[BulkOperationResult], None] | None = None,
    ) -> BulkOperationResult:
        """Apply *operation* to each item; any exception fails that item only."""
        items, result = self._start(items, kind)
        for item in items:
            try:
                operation(item)
            except Exception as exc:
                log.warning("Bulk %s failed for %s: %s", kind, key(item), exc)
                result.record_failure(key(item), str(exc))
                self._count(kind, "failure")
            else:
                result.record_success()
                self._count(kind, "success")
            self._report(on_progress, result)
        return self._finish(result, kind)

    def run_chunked(
        self,
        items: Iterable[T],
        operation: Callable[[Sequence[T]], Mapping[str, str] | None],
        *,
        key: Callable[[T], str] = str,
        kind: str = "operation",
        chunk_size: int | None = None,
        on_progress: Callable[[BulkOperationResult], None] | None = None,
    ) -> BulkOperationResult:
        """Apply *operation* to fixed-size chunks.

        *operation* returns a mapping of ``key(item) → error`` for the
        items of the chunk that failed (``None`` or empty when all
        succeeded).  If it raises, every item of that chunk fails with
        the exception message.
        """
        items, result = self._start(items, kind)
        size = max(1, chunk_size or self._settings.chunk_size)
        for start in range(0, len(items), size):
            chunk = items[start : start + size]
            try:
                failures = operation(chunk) or {}
            except Exception as exc:
                log.warning(
                    "Bulk %s chunk %d-%d failed: %s",
                    kind,
                    start + 1,
                    start + len(chunk),
                    exc,
                )
                failures = {key(item): str(exc) for item in chunk}
            for item in chunk:
                error = failures.get(key(item))
                if error is None:
                    result.record_success()
                    self._count(kind, "success")
                else:
                    result.record_failure(key(item), error)
                    self._count(kind, "failure")
            self._report(on_progress, result)
        return self._finish(result, kind)

    @staticmethod
    def _report(
        on_progress: Callable[[BulkOperationResult], None] | None,
        result: BulkOperationResult,
    ) -> None:
        if on_progress is None:
            return
        try:
            on_progress(result)
        except Exception:
            log.exception("Bulk progress callback failed")

    def _count(self, kind: str, outcome: str) -> None:
        if self._metrics:
            self._metrics.increment(
                "certdesk_bulk_items_total",
                labels={"kind": kind, "outcome": outcome},
            )

    @staticmethod
    def _finish(result: BulkOperationResult, kind: str) -> BulkOperationResult:
        log.info(
            "Bulk %s finished: %d succeeded, %d failed of %d",
            kind,
            result.successes,
            result.failures,
            result.total,
        )
        return result


# ---------------------------------------------------------------------------
# Concrete bulk operations
# ---------------------------------------------------------------------------


class BulkOperationService:
    """Bulk request, email and profile operations."""

    def __init__(
        self,
        runner: BulkOperationRunner,
        transitions: TransitionService,
        request_repo: CertificateRequestRepository,
        profile_repo: ProfileRepository,
        dispatcher: NotificationDispatcher | None,
    ) -> None:
        self._runner = runner
        self._transitions = transitions
        self._requests = request_repo
        self._profiles = profile_repo
        self._dispatcher = dispatcher

    # -- requests ----------------------------------------------------------

    def update_request_status(
        self,
        request_ids: Sequence[UUID],
        target_status: RequestStatus | str,
        actor_id: str,
        rejection_reason: str | None = None,
        on_progress: Callable[[BulkOperationResult], None] | None = None,
    ) -> BulkOperationResult:
        """Transition every request in *request_ids* to *target_status*.

        Arguments that would fail every item (no actor, unknown target,
        rejection without reason) are refused before the run starts.
        """
        if not actor_id or not actor_id.strip():
            msg = "An actor id is required for bulk status changes"
            raise MissingActor(msg)
        target = parse_target(target_status)
        if target is RequestStatus.REJECTED and not (rejection_reason and rejection_reason.strip()):
            msg = "A rejection reason is required to reject requests"
            raise MissingReason(msg)

        result = self._runner.run(
            request_ids,
            lambda rid: self._transitions.transition(rid, target, actor_id, rejection_reason),
            key=lambda rid: f"Request {rid}",
            kind=BulkOperationKind.REQUEST_STATUS.value,
            on_progress=on_progress,
        )
        audit_event(
            "bulk_request_status",
            target_status=target.value,
            actor_id=actor_id,
            **result.to_dict(),
        )
        return result

    def batch_status(
        self,
        batch_id: str,
        target_status: RequestStatus | str,
        actor_id: str,
        rejection_reason: str | None = None,
        on_progress: Callable[[BulkOperationResult], None] | None = None,
    ) -> BulkOperationResult:
        """Transition all ``PENDING`` requests of *batch_id* and notify the submitter."""
        pending = self._requests.find_by_batch(batch_id, RequestStatus.PENDING)
        target = parse_target(target_status)
        result = self.update_request_status(
            [r.id for r in pending],
            target,
            actor_id,
            rejection_reason,
            on_progress=on_progress,
        )
        if pending and result.successes:
            self._notify_batch(batch_id, pending[0], target, result, rejection_reason)
        return result

    def send_certificate_emails(
        self,
        request_ids: Sequence[UUID],
        custom_message: str | None = None,
        on_progress: Callable[[BulkOperationResult], None] | None = None,
    ) -> BulkOperationResult:
        """Email each issued certificate to its recipient, in chunks.

        A request without an email address, or without a generated
        certificate, counts as a failure.  A send that fails on its
        first attempt also counts as a failure even though the
        dispatcher has queued it for retry.
        """

        def send_chunk(chunk: Sequence[UUID]) -> dict[str, str]:
            failures: dict[str, str] = {}
            for rid in chunk:
                error = self._send_certificate(rid, custom_message)
                if error:
                    failures[f"Request {rid}"] = error
            return failures

        return self._runner.run_chunked(
            request_ids,
            send_chunk,
            key=lambda rid: f"Request {rid}",
            kind=BulkOperationKind.CERTIFICATE_EMAIL.value,
            on_progress=on_progress,
        )

    # -- profiles ----------------------------------------------------------

    def change_roles(
        self,
        profile_ids: Sequence[UUID],
        role: ProfileRole | str,
        on_progress: Callable[[BulkOperationResult], None] | None = None,
    ) -> BulkOperationResult:
        new_role = ProfileRole(role)

        def change(profile_id: UUID) -> None:
            if self._profiles.change_role(profile_id, new_role) is None:
                msg = "profile not found"
                raise LookupError(msg)

        result = self._runner.run(
            profile_ids,
            change,
            key=lambda pid: f"User {pid}",
            kind=BulkOperationKind.ROLE_CHANGE.value,
            on_progress=on_progress,
        )
        audit_event("bulk_role_change", role=new_role.value, **result.to_dict())
        return result

    def deactivate(
        self,
        profile_ids: Sequence[UUID],
        on_progress: Callable[[BulkOperationResult], None] | None = None,
    ) -> BulkOperationResult:
        def deactivate_one(profile_id: UUID) -> None:
            if self._profiles.deactivate(profile_id) is None:
                msg = "profile not found"
                raise LookupError(msg)

        result = self._runner.run(
            profile_ids,
            deactivate_one,
            key=lambda pid: f"User {pid}",
            kind=BulkOperationKind.DEACTIVATION.value,
            on_progress=on_progress,
        )
        audit_event("bulk_deactivation", **result.to_dict())
        return result

    # -- helpers -----------------------------------------------------------

    def _send_certificate(self, request_id: UUID, custom_message: str | None) -> str | None:
        """Send one certificate email; return an error string or ``None``."""
        request = self._requests.find_by_id(request_id)
        if request is None:
            return "request not found"
        if not request.recipient_email:
            return "no email address"
        if not request.artifact_ref:
            return "no certificate has been generated"
        if self._dispatcher is None:
            return "notifications are not configured"
        event = certificate_issued(request, self._dispatcher.portal_url, custom_message)
        outcome = self._dispatcher.dispatch(event)
        if outcome.skipped:
            return "notifications are disabled"
        if not outcome.sent:
            return outcome.error or "delivery failed"
        return None

    def _notify_batch(
        self,
        batch_id: str,
        sample,
        target: RequestStatus,
        result: BulkOperationResult,
        rejection_reason: str | None,
    ) -> None:
        if self._dispatcher is None or not sample.submitter_email:
            return
        common = {
            "batch_id": batch_id,
            "recipient_email": sample.submitter_email,
            "recipient_name": sample.submitted_by or "",
            "portal_url": self._dispatcher.portal_url,
        }
        if target is RequestStatus.APPROVED:
            event = BatchApproved(
                **common,
                approved_count=result.successes,
                failed_count=result.failures,
            )
        elif target is RequestStatus.REJECTED:
            event = BatchRejected(
                **common,
                rejected_count=result.successes,
                rejection_reason=rejection_reason or "",
                failed_count=result.failures,
            )
        else:
            return
        try:
            self._dispatcher.dispatch(event)
        except Exception:
            log.exception("Batch summary notification failed for %s", batch_id)
