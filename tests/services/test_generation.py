"""Unit tests for certdesk.services.generation -- GenerationCoordinator."""

from __future__ import annotations

import dataclasses
import threading
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock
from uuid import uuid4

import pytest

from certdesk.core.errors import GenerationError, IllegalTransition, RequestNotFound
from certdesk.core.types import RequestStatus
from certdesk.delivery.base import GenerationResult
from certdesk.metrics.collector import MetricsCollector
from certdesk.notifications.events import ApprovalFailed, CertificateIssued
from certdesk.services.generation import GenerationCoordinator
from certdesk.services.notification import DispatchResult

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _generation_settings(settings, **overrides):
    return dataclasses.replace(settings.generation, **overrides)


def _dispatcher():
    dispatcher = MagicMock()
    dispatcher.portal_url = "https://certs.example.com"
    dispatcher.dispatch.return_value = DispatchResult(sent=True)
    return dispatcher


@pytest.fixture()
def generator():
    gen = MagicMock()
    gen.generate.return_value = GenerationResult.ok("https://files.example.com/c/1.pdf")
    return gen


@pytest.fixture()
def coordinator_factory(request_repo, generator, settings):
    created = []

    def _make(dispatcher=None, metrics=None, **overrides):
        coordinator = GenerationCoordinator(
            request_repo,
            generator,
            dispatcher if dispatcher is not None else _dispatcher(),
            _generation_settings(settings, **overrides),
            metrics=metrics,
        )
        created.append(coordinator)
        return coordinator

    yield _make
    for coordinator in created:
        coordinator.shutdown(wait=True)


# ---------------------------------------------------------------------------
# on_approved
# ---------------------------------------------------------------------------


class TestOnApproved:
    def test_success_writes_approved_with_artifact(
        self,
        coordinator_factory,
        make_request,
        generator,
    ):
        req = make_request(status=RequestStatus.PROCESSING, reviewer_id="adm1")
        result = coordinator_factory().on_approved(req.id)

        assert result.status is RequestStatus.APPROVED
        assert result.artifact_ref == "https://files.example.com/c/1.pdf"
        assert result.generation_attempts == 1
        generator.generate.assert_called_once_with(req.id, "adm1")

    def test_explicit_reviewer_wins(self, coordinator_factory, make_request, generator):
        req = make_request(status=RequestStatus.PROCESSING, reviewer_id="adm1")
        coordinator_factory().on_approved(req.id, "adm9")
        generator.generate.assert_called_once_with(req.id, "adm9")

    def test_generator_failure_writes_approval_failed(
        self,
        coordinator_factory,
        make_request,
        generator,
    ):
        generator.generate.return_value = GenerationResult.failed("template not found")
        req = make_request(status=RequestStatus.PROCESSING)
        result = coordinator_factory().on_approved(req.id)

        assert result.status is RequestStatus.APPROVAL_FAILED
        assert result.generation_error == "template not found"
        assert result.artifact_ref is None

    def test_success_without_artifact_is_failure(
        self,
        coordinator_factory,
        make_request,
        generator,
    ):
        generator.generate.return_value = GenerationResult(success=True)
        req = make_request(status=RequestStatus.PROCESSING)
        result = coordinator_factory().on_approved(req.id)
        assert result.status is RequestStatus.APPROVAL_FAILED
        assert result.generation_error == "generator returned no artifact"

    def test_generation_error_is_recorded(self, coordinator_factory, make_request, generator):
        generator.generate.side_effect = GenerationError("font missing")
        req = make_request(status=RequestStatus.PROCESSING)
        result = coordinator_factory().on_approved(req.id)
        assert result.status is RequestStatus.APPROVAL_FAILED
        assert result.generation_error == "font missing"

    def test_unexpected_exception_is_recorded(
        self,
        coordinator_factory,
        make_request,
        generator,
    ):
        generator.generate.side_effect = ConnectionError("reset by peer")
        req = make_request(status=RequestStatus.PROCESSING)
        result = coordinator_factory().on_approved(req.id)
        assert result.status is RequestStatus.APPROVAL_FAILED
        assert "reset by peer" in result.generation_error

    def test_invalid_result_type(self, coordinator_factory, make_request, generator):
        generator.generate.return_value = {"success": True}
        req = make_request(status=RequestStatus.PROCESSING)
        result = coordinator_factory().on_approved(req.id)
        assert result.status is RequestStatus.APPROVAL_FAILED
        assert result.generation_error == "generator returned an invalid result"

    def test_timeout_writes_approval_failed(
        self,
        coordinator_factory,
        make_request,
        generator,
    ):
        release = threading.Event()

        def _slow(request_id, issuer_id):
            release.wait(5)
            return GenerationResult.ok("late")

        generator.generate.side_effect = _slow
        req = make_request(status=RequestStatus.PROCESSING)
        try:
            result = coordinator_factory(timeout_seconds=1).on_approved(req.id)
        finally:
            release.set()

        assert result.status is RequestStatus.APPROVAL_FAILED
        assert result.generation_error == "generation timed out after 1s"

    def test_unknown_request(self, coordinator_factory):
        with pytest.raises(RequestNotFound):
            coordinator_factory().on_approved(uuid4())

    def test_pending_request_is_illegal(self, coordinator_factory, make_request, generator):
        req = make_request()
        with pytest.raises(IllegalTransition, match="only PROCESSING"):
            coordinator_factory().on_approved(req.id)
        generator.generate.assert_not_called()

    def test_outcome_counted(self, coordinator_factory, make_request):
        metrics = MetricsCollector()
        req = make_request(status=RequestStatus.PROCESSING)
        coordinator_factory(metrics=metrics).on_approved(req.id)
        assert metrics.get("certdesk_generation_total", labels={"outcome": "success"}) == 1


# ---------------------------------------------------------------------------
# Idempotence
# ---------------------------------------------------------------------------


class TestIdempotence:
    @pytest.mark.parametrize(
        "outcome",
        [GenerationResult.ok("ref-1"), GenerationResult.failed("nope")],
    )
    def test_second_call_is_a_no_op(
        self,
        coordinator_factory,
        make_request,
        generator,
        request_repo,
        outcome,
    ):
        generator.generate.return_value = outcome
        dispatcher = _dispatcher()
        coordinator = coordinator_factory(dispatcher=dispatcher)
        req = make_request(status=RequestStatus.PROCESSING)

        first = coordinator.on_approved(req.id)
        second = coordinator.on_approved(req.id)

        assert second.status is first.status
        assert second.artifact_ref == first.artifact_ref
        assert second.generation_attempts == 1
        assert generator.generate.call_count == 1
        assert dispatcher.dispatch.call_count <= 1
        assert request_repo.find_by_id(req.id) == first

    def test_lost_race_returns_current_row(
        self,
        coordinator_factory,
        make_request,
        request_repo,
    ):
        req = make_request(status=RequestStatus.PROCESSING)
        settled = dataclasses.replace(req, status=RequestStatus.APPROVED, artifact_ref="other")
        original_complete = request_repo.complete_generation

        def _concurrent_winner(request_id, artifact_ref):
            request_repo.rows[request_id] = settled
            return original_complete(request_id, artifact_ref)

        request_repo.complete_generation = _concurrent_winner
        result = coordinator_factory().on_approved(req.id)
        assert result.artifact_ref == "other"


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class TestGenerationNotifications:
    def test_success_sends_certificate_to_recipient(self, coordinator_factory, make_request):
        dispatcher = _dispatcher()
        req = make_request(status=RequestStatus.PROCESSING, verification_code="VC-1")
        coordinator_factory(dispatcher=dispatcher).on_approved(req.id)

        event = dispatcher.dispatch.call_args.args[0]
        assert isinstance(event, CertificateIssued)
        assert event.recipient_email == "ada@example.org"
        assert event.certificate_url == "https://files.example.com/c/1.pdf"
        assert event.verification_code == "VC-1"

    def test_failure_notifies_submitter(self, coordinator_factory, make_request, generator):
        generator.generate.return_value = GenerationResult.failed("bad template")
        dispatcher = _dispatcher()
        req = make_request(status=RequestStatus.PROCESSING)
        coordinator_factory(dispatcher=dispatcher).on_approved(req.id)

        event = dispatcher.dispatch.call_args.args[0]
        assert isinstance(event, ApprovalFailed)
        assert event.recipient_email == "trainer@training.example.com"
        assert event.error_message == "bad template"

    def test_failure_without_submitter_email_is_silent(
        self,
        coordinator_factory,
        make_request,
        generator,
    ):
        generator.generate.return_value = GenerationResult.failed("bad template")
        dispatcher = _dispatcher()
        req = make_request(status=RequestStatus.PROCESSING, submitter_email=None)
        coordinator_factory(dispatcher=dispatcher).on_approved(req.id)
        dispatcher.dispatch.assert_not_called()

    def test_dispatch_exception_keeps_result(self, coordinator_factory, make_request):
        dispatcher = _dispatcher()
        dispatcher.dispatch.side_effect = RuntimeError("smtp down")
        req = make_request(status=RequestStatus.PROCESSING)
        result = coordinator_factory(dispatcher=dispatcher).on_approved(req.id)
        assert result.status is RequestStatus.APPROVED


# ---------------------------------------------------------------------------
# schedule / recover_stale / shutdown
# ---------------------------------------------------------------------------


class TestScheduling:
    def test_schedule_runs_in_background(self, coordinator_factory, make_request, request_repo):
        req = make_request(status=RequestStatus.PROCESSING, reviewer_id="adm1")
        future = coordinator_factory().schedule(req)
        future.result(timeout=5)
        assert request_repo.find_by_id(req.id).status is RequestStatus.APPROVED

    def test_schedule_after_shutdown_returns_none(self, coordinator_factory, make_request):
        coordinator = coordinator_factory()
        coordinator.shutdown()
        req = make_request(status=RequestStatus.PROCESSING)
        assert coordinator.schedule(req) is None

    def test_background_errors_are_contained(self, coordinator_factory):
        missing = MagicMock(id=uuid4(), reviewer_id=None)
        future = coordinator_factory().schedule(missing)
        assert future.result(timeout=5) is None

    def test_recover_stale_settles_old_processing(
        self,
        coordinator_factory,
        make_request,
        request_repo,
    ):
        old = datetime.now(UTC) - timedelta(hours=2)
        stale = make_request(status=RequestStatus.PROCESSING, updated_at=old)
        fresh = make_request(status=RequestStatus.PROCESSING)

        recovered = coordinator_factory(stale_seconds=900).recover_stale()

        assert recovered == 1
        assert request_repo.find_by_id(stale.id).status is RequestStatus.APPROVED
        assert request_repo.find_by_id(fresh.id).status is RequestStatus.PROCESSING


# ---------------------------------------------------------------------------
# Saturated generator pool and concurrent attempts
# ---------------------------------------------------------------------------


class TestGeneratorSlots:
    def test_queued_call_is_withdrawn_not_failed(
        self,
        coordinator_factory,
        make_request,
        generator,
        request_repo,
    ):
        busy = make_request(status=RequestStatus.PROCESSING)
        waiting = make_request(status=RequestStatus.PROCESSING)
        entered = threading.Event()
        release = threading.Event()

        def _generate(request_id, issuer_id):
            if request_id == busy.id:
                entered.set()
                release.wait(5)
                return GenerationResult.ok("late")
            return GenerationResult.ok("https://files.example.com/c/2.pdf")

        generator.generate.side_effect = _generate
        metrics = MetricsCollector()
        coordinator = coordinator_factory(metrics=metrics, max_workers=1, timeout_seconds=1)
        try:
            background = coordinator.schedule(busy)
            assert entered.wait(5)
            result = coordinator.on_approved(waiting.id)
        finally:
            release.set()
        background.result(timeout=5)

        assert result.status is RequestStatus.PROCESSING
        assert result.generation_attempts == 0
        assert result.generation_error is None
        assert [c.args[0] for c in generator.generate.call_args_list] == [busy.id]
        assert metrics.get("certdesk_generation_total", labels={"outcome": "deferred"}) == 1

        # the slot is free again; the next run generates normally
        settled = coordinator.on_approved(waiting.id)
        assert settled.status is RequestStatus.APPROVED
        assert request_repo.find_by_id(waiting.id).generation_attempts == 1

    def test_recent_attempt_holds_request(
        self,
        coordinator_factory,
        make_request,
        generator,
    ):
        old = datetime.now(UTC) - timedelta(hours=2)
        in_flight = make_request(
            status=RequestStatus.PROCESSING,
            updated_at=old,
            generation_attempts=1,
            last_generation_attempt_at=datetime.now(UTC) - timedelta(seconds=30),
        )

        coordinator = coordinator_factory(stale_seconds=900)
        assert coordinator.recover_stale() == 0
        result = coordinator.on_approved(in_flight.id)

        generator.generate.assert_not_called()
        assert result.status is RequestStatus.PROCESSING
        assert result.generation_attempts == 1

    def test_abandoned_attempt_is_retaken(
        self,
        coordinator_factory,
        make_request,
        generator,
    ):
        old = datetime.now(UTC) - timedelta(hours=2)
        crashed = make_request(
            status=RequestStatus.PROCESSING,
            updated_at=old,
            generation_attempts=1,
            last_generation_attempt_at=old,
        )
        assert coordinator_factory(stale_seconds=900).recover_stale() == 1
        generator.generate.assert_called_once()
        assert crashed.id == generator.generate.call_args.args[0]

    def test_reapproval_is_not_held_by_failed_attempt(
        self,
        coordinator_factory,
        make_request,
        generator,
        request_repo,
    ):
        generator.generate.return_value = GenerationResult.failed("template not found")
        req = make_request(status=RequestStatus.PROCESSING)
        coordinator = coordinator_factory()
        assert coordinator.on_approved(req.id).status is RequestStatus.APPROVAL_FAILED

        request_repo.transition_status(
            req.id,
            RequestStatus.APPROVAL_FAILED,
            RequestStatus.PROCESSING,
            reviewer_id="adm1",
        )
        generator.generate.return_value = GenerationResult.ok("ref-2")
        result = coordinator.on_approved(req.id)

        assert result.status is RequestStatus.APPROVED
        assert result.generation_attempts == 2
