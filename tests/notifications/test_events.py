"""Unit tests for certdesk.notifications.events."""

from __future__ import annotations

import dataclasses
from datetime import date
from uuid import uuid4

import pytest

from certdesk.core.types import AssessmentOutcome, NotificationKind, RequestStatus
from certdesk.models.request import CertificateRequest
from certdesk.notifications.events import (
    EVENT_TYPES,
    ApprovalFailed,
    BatchSubmitted,
    CertificateIssued,
    RequestApproved,
    RequestArchived,
    RequestRejected,
    approval_failed,
    certificate_issued,
    event_for_transition,
    from_payload,
    refresh_recipient,
    template_context,
    to_payload,
)


def _request(**overrides) -> CertificateRequest:
    fields = {
        "id": uuid4(),
        "recipient_name": "Grace Hopper",
        "recipient_email": "grace@example.org",
        "course_name": "Forklift Safety",
        "submitted_by": "Trainer Two",
        "submitter_email": "t2@training.example.com",
    }
    fields.update(overrides)
    return CertificateRequest(**fields)


class TestEventTypes:
    def test_one_class_per_kind(self):
        assert set(EVENT_TYPES) == set(NotificationKind)

    def test_required_fields_are_enforced(self):
        with pytest.raises(TypeError):
            RequestRejected(
                request_id="1",
                recipient_email="a@b.c",
                recipient_name="A",
                course_name="C",
                old_status="PENDING",
                new_status="REJECTED",
            )


class TestEventForTransition:
    def test_processing_maps_to_approved(self):
        req = _request(status=RequestStatus.PROCESSING, issue_date=date(2026, 3, 1))
        event = event_for_transition(req, RequestStatus.PENDING, RequestStatus.PROCESSING)
        assert isinstance(event, RequestApproved)
        assert event.issue_date == "2026-03-01"
        assert event.expiry_date is None

    def test_rejected_carries_reason(self):
        req = _request(status=RequestStatus.REJECTED, rejection_reason="wrong name")
        event = event_for_transition(req, RequestStatus.PENDING, RequestStatus.REJECTED)
        assert isinstance(event, RequestRejected)
        assert event.rejection_reason == "wrong name"

    @pytest.mark.parametrize("status", [RequestStatus.ARCHIVED, RequestStatus.ARCHIVE_FAILED])
    def test_archive_carries_outcome(self, status):
        req = _request(status=status, assessment_outcome=AssessmentOutcome.FAIL)
        event = event_for_transition(req, RequestStatus.PENDING, status)
        assert isinstance(event, RequestArchived)
        assert event.assessment_outcome == "FAIL"
        assert event.new_status == status.value

    def test_missing_email_becomes_empty(self):
        event = event_for_transition(
            _request(recipient_email=None),
            RequestStatus.PENDING,
            RequestStatus.ARCHIVED,
        )
        assert event.recipient_email == ""

    def test_no_event_for_pending(self):
        with pytest.raises(ValueError, match="No notification"):
            event_for_transition(_request(), RequestStatus.APPROVAL_FAILED, RequestStatus.PENDING)


class TestBuilders:
    def test_certificate_issued_requires_artifact(self):
        with pytest.raises(ValueError, match="no generated certificate"):
            certificate_issued(_request())

    def test_certificate_issued(self):
        req = _request(status=RequestStatus.APPROVED, artifact_ref="https://f/c.pdf")
        event = certificate_issued(req, "https://portal", "See you soon")
        assert isinstance(event, CertificateIssued)
        assert event.certificate_url == "https://f/c.pdf"
        assert event.custom_message == "See you soon"
        assert event.portal_url == "https://portal"

    def test_approval_failed_goes_to_submitter(self):
        req = _request(status=RequestStatus.APPROVAL_FAILED, generation_error="timeout")
        event = approval_failed(req)
        assert isinstance(event, ApprovalFailed)
        assert event.recipient_email == "t2@training.example.com"
        assert event.recipient_name == "Trainer Two"
        assert event.error_message == "timeout"


class TestSerialisation:
    def test_round_trip(self):
        req = _request(status=RequestStatus.REJECTED, rejection_reason="blurry")
        event = event_for_transition(req, RequestStatus.PENDING, RequestStatus.REJECTED)
        assert from_payload(event.kind, to_payload(event)) == event

    def test_unknown_keys_ignored(self):
        payload = {
            "batch_id": "B1",
            "recipient_email": "t@x.org",
            "recipient_name": "T",
            "request_count": 4,
            "legacy_field": True,
        }
        event = from_payload("batch_submitted", payload)
        assert event == BatchSubmitted(
            batch_id="B1",
            recipient_email="t@x.org",
            recipient_name="T",
            request_count=4,
        )

    def test_missing_required_field(self):
        with pytest.raises(TypeError):
            from_payload(NotificationKind.BATCH_SUBMITTED, {"batch_id": "B1"})

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            from_payload("carrier_pigeon", {})

    def test_template_context_omits_none(self):
        event = event_for_transition(
            _request(status=RequestStatus.PROCESSING),
            RequestStatus.PENDING,
            RequestStatus.PROCESSING,
        )
        context = template_context(event)
        assert context["kind"] == "approved"
        assert "issue_date" not in context
        assert "portal_url" not in context


class TestRefreshRecipient:
    def test_request_event_uses_recipient(self):
        req = _request(status=RequestStatus.REJECTED, rejection_reason="x")
        event = event_for_transition(req, RequestStatus.PENDING, RequestStatus.REJECTED)
        moved = dataclasses.replace(req, recipient_email="grace@new.org")
        assert refresh_recipient(event, moved).recipient_email == "grace@new.org"

    def test_approval_failed_uses_submitter(self):
        req = _request(generation_error="boom")
        event = approval_failed(req)
        moved = dataclasses.replace(req, submitter_email="lead@training.example.com")
        assert refresh_recipient(event, moved).recipient_email == "lead@training.example.com"
