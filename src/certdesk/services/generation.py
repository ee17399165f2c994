"""Generation coordinator: phase 2 of the approval protocol.

Phase 1 (the transition engine) leaves an approved request in
``PROCESSING``.  :meth:`GenerationCoordinator.on_approved` picks it up,
asks the document generator for the certificate artifact, and performs
the terminal write:

- generator success → ``APPROVED`` with the artifact reference
- generator failure, exception, or timeout → ``APPROVAL_FAILED`` with
  the error recorded; no automatic regeneration
- no free generator slot within the timeout → unchanged, left in
  ``PROCESSING`` for the stale sweep

An attempt is recorded when the generator call actually starts, and it
holds the request for ``stale_seconds`` so that concurrent entry points
never run the generator twice for the same request.

Phase 2 can run inline (API ``generate`` endpoint, CLI sweep), on the
coordinator's own thread pool (:meth:`schedule`), or from the stale
``PROCESSING`` sweep after a crash.  Every entry point tolerates
duplicates: a request already settled is returned unchanged.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import TYPE_CHECKING

from certdesk.core.errors import GenerationError, IllegalTransition, RequestNotFound
from certdesk.core.state import GENERATION_TERMINAL, log_transition
from certdesk.core.types import RequestStatus
from certdesk.delivery.base import GenerationResult
from certdesk.logging import audit_event
from certdesk.notifications.events import approval_failed, certificate_issued

if TYPE_CHECKING:
    from concurrent.futures import Future
    from uuid import UUID

    from certdesk.config.settings import GenerationSettings
    from certdesk.delivery.base import DocumentGenerator
    from certdesk.models.request import CertificateRequest
    from certdesk.repositories.request import CertificateRequestRepository
    from certdesk.services.notification import NotificationDispatcher

log = logging.getLogger(__name__)


class _GeneratorCall:
    """Start signal and claimed row of one generator call."""

    def __init__(self) -> None:
        self.started = threading.Event()
        self.claimed: CertificateRequest | None = None


class GenerationCoordinator:
    """Runs document generation for ``PROCESSING`` requests."""

    def __init__(
        self,
        request_repo: CertificateRequestRepository,
        generator: DocumentGenerator,
        dispatcher: NotificationDispatcher | None,
        settings: GenerationSettings,
        metrics=None,
    ) -> None:
        self._requests = request_repo
        self._generator = generator
        self._dispatcher = dispatcher
        self._settings = settings
        self._metrics = metrics
        # Generator calls run here so the wait can be bounded.
        self._calls = ThreadPoolExecutor(
            max_workers=settings.max_workers,
            thread_name_prefix="generator-call",
        )
        # Background phase-2 jobs submitted by schedule().
        self._jobs = ThreadPoolExecutor(
            max_workers=settings.max_workers,
            thread_name_prefix="generation",
        )
        self._lock = threading.Lock()
        self._shutdown = False

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def on_approved(
        self,
        request_id: UUID,
        reviewer_id: str | None = None,
    ) -> CertificateRequest:
        """Generate the artifact for *request_id* and write the final status.

        Raises :class:`RequestNotFound` for an unknown id and
        :class:`IllegalTransition` if the request was never approved.
        Generator problems are recorded on the request, not raised.
        """
        request = self._requests.find_by_id(request_id)
        if request is None:
            msg = f"Certificate request {request_id} not found"
            raise RequestNotFound(msg)

        if request.status in GENERATION_TERMINAL:
            log.info(
                "Request %s already %s, generation skipped",
                request_id,
                request.status.value,
            )
            return request
        if request.status is not RequestStatus.PROCESSING:
            msg = (
                f"Request {request_id} is {request.status.value}; "
                "only PROCESSING requests can be generated"
            )
            raise IllegalTransition(msg)

        issuer = reviewer_id or request.reviewer_id or ""
        started, result = self._generate(request.id, issuer)
        if started is None:
            return self._current(request)

        if result.success and result.artifact_ref:
            updated = self._requests.complete_generation(request.id, result.artifact_ref)
            outcome = "success"
        else:
            error = result.error_message or "generator returned no artifact"
            updated = self._requests.fail_generation(request.id, error)
            outcome = "failure"

        if updated is None:
            # A concurrent run settled it first.
            return self._current(request)

        if self._metrics:
            self._metrics.increment(
                "certdesk_generation_total",
                labels={"outcome": outcome},
            )
        log_transition(
            "certificate_request",
            updated.id,
            RequestStatus.PROCESSING,
            updated.status,
            reason=updated.generation_error,
            actor_id=issuer or None,
        )
        audit_event(
            "request_generation",
            request_id=str(updated.id),
            to_status=updated.status.value,
            attempt=started.generation_attempts,
            artifact_ref=updated.artifact_ref,
            error=updated.generation_error,
        )
        self._notify(updated)
        return updated

    def schedule(self, request: CertificateRequest) -> Future | None:
        """Run :meth:`on_approved` for *request* on the background pool."""
        with self._lock:
            if self._shutdown:
                log.warning(
                    "Coordinator shut down; request %s left for the stale sweep",
                    request.id,
                )
                return None
            return self._jobs.submit(self._run_job, request.id, request.reviewer_id)

    def recover_stale(self) -> int:
        """Re-run phase 2 for requests stuck in ``PROCESSING``.  Returns the number settled."""
        stale = self._requests.find_stale_processing(self._settings.stale_seconds)
        recovered = 0
        for request in stale:
            log.warning(
                "Request %s stuck in PROCESSING since %s, re-running generation",
                request.id,
                request.updated_at,
            )
            try:
                settled = self.on_approved(request.id, request.reviewer_id)
            except Exception:
                log.exception("Stale generation recovery failed for %s", request.id)
                continue
            if settled.status is not RequestStatus.PROCESSING:
                recovered += 1
        if stale:
            log.info("Generation sweep: %d of %d stale request(s) settled", recovered, len(stale))
        return recovered

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            self._shutdown = True
        self._jobs.shutdown(wait=wait)
        self._calls.shutdown(wait=False, cancel_futures=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _run_job(self, request_id: UUID, reviewer_id: str | None) -> None:
        try:
            self.on_approved(request_id, reviewer_id)
        except Exception:
            log.exception("Background generation failed for request %s", request_id)

    def _generate(
        self,
        request_id: UUID,
        issuer_id: str,
    ) -> tuple[CertificateRequest | None, GenerationResult | None]:
        """Run one generator call on the call pool.

        The timeout counts from the moment the call starts.  A call still
        queued after a full timeout is withdrawn and the request stays in
        ``PROCESSING`` for a later run.  Returns ``(None, None)`` when the
        call was withdrawn or another attempt holds the request.
        """
        timeout = self._settings.timeout_seconds
        call = _GeneratorCall()
        future = self._calls.submit(self._attempt, call, request_id, issuer_id)

        if not call.started.wait(timeout) and future.cancel():
            log.warning(
                "No generator slot for request %s within %ds; left in PROCESSING",
                request_id,
                timeout,
            )
            if self._metrics:
                self._metrics.increment(
                    "certdesk_generation_total",
                    labels={"outcome": "deferred"},
                )
            return None, None

        try:
            return future.result(timeout=timeout)
        except FutureTimeout:
            log.error("Generation for %s timed out after %ds", request_id, timeout)
            return call.claimed, GenerationResult.failed(
                f"generation timed out after {timeout}s",
            )

    def _attempt(
        self,
        call: _GeneratorCall,
        request_id: UUID,
        issuer_id: str,
    ) -> tuple[CertificateRequest | None, GenerationResult | None]:
        call.started.set()
        call.claimed = self._requests.begin_generation(request_id, self._settings.stale_seconds)
        if call.claimed is None:
            log.info("Request %s is held by another generation attempt", request_id)
            return None, None
        return call.claimed, self._call_generator(request_id, issuer_id)

    def _call_generator(self, request_id: UUID, issuer_id: str) -> GenerationResult:
        try:
            result = self._generator.generate(request_id, issuer_id)
        except GenerationError as exc:
            log.warning("Generator rejected request %s: %s", request_id, exc.detail)
            return GenerationResult.failed(exc.detail)
        except Exception as exc:
            log.exception("Generator raised for request %s", request_id)
            return GenerationResult.failed(f"generator error: {exc}")
        if not isinstance(result, GenerationResult):
            return GenerationResult.failed("generator returned an invalid result")
        return result

    def _current(self, request: CertificateRequest) -> CertificateRequest:
        current = self._requests.find_by_id(request.id)
        return current if current is not None else request

    def _notify(self, request: CertificateRequest) -> None:
        if self._dispatcher is None:
            return
        try:
            if request.status is RequestStatus.APPROVED:
                event = certificate_issued(request, self._dispatcher.portal_url)
            elif request.submitter_email:
                event = approval_failed(request, self._dispatcher.portal_url)
            else:
                log.info("No submitter email for %s, failure not notified", request.id)
                return
            self._dispatcher.dispatch(event)
        except Exception:
            log.exception("Generation notification failed for request %s", request.id)
