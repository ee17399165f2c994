"""Notification events: a closed set of typed payloads.

Every notification kind has exactly one event class with the fields
its templates need.  Required fields are plain attributes, so an event
cannot be built without them; optional fields default to ``None`` and
are left out of the template context when absent.

Events serialise to plain dicts (:func:`to_payload`) so a failed
delivery can be stored in the retry queue and rebuilt later
(:func:`from_payload`).
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar

from certdesk.core.types import NotificationKind, RequestStatus

if TYPE_CHECKING:
    from certdesk.models.request import CertificateRequest

# ---------------------------------------------------------------------------
# Request-bound events
# ---------------------------------------------------------------------------


@dataclass(frozen=True, kw_only=True)
class _RequestEvent:
    kind: ClassVar[NotificationKind]

    request_id: str
    recipient_email: str
    recipient_name: str
    course_name: str
    old_status: str
    new_status: str
    portal_url: str | None = None

    @property
    def certificate_id(self) -> str | None:
        return self.request_id


@dataclass(frozen=True, kw_only=True)
class RequestApproved(_RequestEvent):
    kind: ClassVar[NotificationKind] = NotificationKind.APPROVED

    issue_date: str | None = None
    expiry_date: str | None = None
    location_name: str | None = None


@dataclass(frozen=True, kw_only=True)
class RequestRejected(_RequestEvent):
    kind: ClassVar[NotificationKind] = NotificationKind.REJECTED

    rejection_reason: str


@dataclass(frozen=True, kw_only=True)
class RequestArchived(_RequestEvent):
    kind: ClassVar[NotificationKind] = NotificationKind.ARCHIVED

    assessment_outcome: str | None = None


@dataclass(frozen=True, kw_only=True)
class ApprovalFailed(_RequestEvent):
    """Sent to the batch submitter when document generation fails."""

    kind: ClassVar[NotificationKind] = NotificationKind.APPROVAL_FAILED

    error_message: str


@dataclass(frozen=True, kw_only=True)
class CertificateIssued(_RequestEvent):
    kind: ClassVar[NotificationKind] = NotificationKind.CERTIFICATE_ISSUED

    certificate_url: str
    verification_code: str | None = None
    issue_date: str | None = None
    expiry_date: str | None = None
    location_name: str | None = None
    custom_message: str | None = None


# ---------------------------------------------------------------------------
# Batch events (addressed to whoever submitted the batch)
# ---------------------------------------------------------------------------


@dataclass(frozen=True, kw_only=True)
class _BatchEvent:
    kind: ClassVar[NotificationKind]

    batch_id: str
    recipient_email: str
    recipient_name: str
    portal_url: str | None = None

    @property
    def certificate_id(self) -> str | None:
        return None


@dataclass(frozen=True, kw_only=True)
class BatchSubmitted(_BatchEvent):
    kind: ClassVar[NotificationKind] = NotificationKind.BATCH_SUBMITTED

    request_count: int


@dataclass(frozen=True, kw_only=True)
class BatchApproved(_BatchEvent):
    kind: ClassVar[NotificationKind] = NotificationKind.BATCH_APPROVED

    approved_count: int
    failed_count: int = 0


@dataclass(frozen=True, kw_only=True)
class BatchRejected(_BatchEvent):
    kind: ClassVar[NotificationKind] = NotificationKind.BATCH_REJECTED

    rejected_count: int
    rejection_reason: str
    failed_count: int = 0


NotificationEvent = (
    RequestApproved
    | RequestRejected
    | RequestArchived
    | ApprovalFailed
    | CertificateIssued
    | BatchSubmitted
    | BatchApproved
    | BatchRejected
)

EVENT_TYPES: dict[NotificationKind, type] = {
    cls.kind: cls
    for cls in (
        RequestApproved,
        RequestRejected,
        RequestArchived,
        ApprovalFailed,
        CertificateIssued,
        BatchSubmitted,
        BatchApproved,
        BatchRejected,
    )
}

# ---------------------------------------------------------------------------
# Serialisation
# ---------------------------------------------------------------------------


def to_payload(event: NotificationEvent) -> dict[str, Any]:
    return dataclasses.asdict(event)


def from_payload(kind: NotificationKind, payload: dict[str, Any]) -> NotificationEvent:
    """Rebuild an event from :func:`to_payload` output.

    Unknown keys are ignored so payloads written by an older release
    still load.  Missing required fields raise :class:`TypeError`.
    """
    cls = EVENT_TYPES[NotificationKind(kind)]
    names = {f.name for f in dataclasses.fields(cls)}
    return cls(**{k: v for k, v in payload.items() if k in names})


def template_context(event: NotificationEvent) -> dict[str, Any]:
    """Template variables for *event*; ``None`` fields are omitted."""
    context = {k: v for k, v in dataclasses.asdict(event).items() if v is not None}
    context["kind"] = event.kind.value
    return context


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def _iso(value) -> str | None:
    return value.isoformat() if value is not None else None


def _request_fields(
    request: CertificateRequest,
    old_status: RequestStatus,
    new_status: RequestStatus,
    portal_url: str | None,
) -> dict[str, Any]:
    return {
        "request_id": str(request.id),
        "recipient_email": request.recipient_email or "",
        "recipient_name": request.recipient_name,
        "course_name": request.course_name,
        "old_status": old_status.value,
        "new_status": new_status.value,
        "portal_url": portal_url,
    }


def event_for_transition(
    request: CertificateRequest,
    old_status: RequestStatus,
    new_status: RequestStatus,
    portal_url: str | None = None,
) -> NotificationEvent:
    """Build the status-change event for an applied transition.

    *request* is the row as written, so it already carries the new
    status, reviewer and rejection reason.
    """
    base = _request_fields(request, old_status, new_status, portal_url)
    if new_status in (RequestStatus.PROCESSING, RequestStatus.APPROVED):
        return RequestApproved(
            **base,
            issue_date=_iso(request.issue_date),
            expiry_date=_iso(request.expiry_date),
            location_name=request.location_name,
        )
    if new_status is RequestStatus.REJECTED:
        return RequestRejected(**base, rejection_reason=request.rejection_reason or "")
    if new_status in (RequestStatus.ARCHIVED, RequestStatus.ARCHIVE_FAILED):
        outcome = request.assessment_outcome
        return RequestArchived(
            **base,
            assessment_outcome=outcome.value if outcome is not None else None,
        )
    msg = f"No notification is defined for status {new_status.value!r}"
    raise ValueError(msg)


def certificate_issued(
    request: CertificateRequest,
    portal_url: str | None = None,
    custom_message: str | None = None,
) -> CertificateIssued:
    """Event delivering a generated certificate to its recipient."""
    if not request.artifact_ref:
        msg = f"Request {request.id} has no generated certificate"
        raise ValueError(msg)
    return CertificateIssued(
        **_request_fields(request, RequestStatus.PROCESSING, request.status, portal_url),
        certificate_url=request.artifact_ref,
        verification_code=request.verification_code,
        issue_date=_iso(request.issue_date),
        expiry_date=_iso(request.expiry_date),
        location_name=request.location_name,
        custom_message=custom_message,
    )


def approval_failed(
    request: CertificateRequest,
    portal_url: str | None = None,
) -> ApprovalFailed:
    """Event telling the submitter that generation failed for *request*."""
    return ApprovalFailed(
        request_id=str(request.id),
        recipient_email=request.submitter_email or "",
        recipient_name=request.submitted_by or "",
        course_name=request.course_name,
        old_status=RequestStatus.PROCESSING.value,
        new_status=RequestStatus.APPROVAL_FAILED.value,
        portal_url=portal_url,
        error_message=request.generation_error or "unknown error",
    )


def refresh_recipient(
    event: NotificationEvent,
    request: CertificateRequest,
) -> NotificationEvent:
    """Point a request-bound event at the request's current contact details."""
    if isinstance(event, ApprovalFailed):
        email, name = request.submitter_email, request.submitted_by
    else:
        email, name = request.recipient_email, request.recipient_name
    return dataclasses.replace(
        event,
        recipient_email=email or "",
        recipient_name=name or event.recipient_name,
    )
