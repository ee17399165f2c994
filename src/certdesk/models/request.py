"""Certificate request entity."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import TYPE_CHECKING

from certdesk.core.types import RequestStatus

if TYPE_CHECKING:
    from uuid import UUID

    from certdesk.core.types import AssessmentOutcome

_EPOCH = datetime(1970, 1, 1)


@dataclass(frozen=True)
class CertificateRequest:
    id: UUID
    recipient_name: str
    recipient_email: str | None
    course_name: str
    status: RequestStatus = RequestStatus.PENDING
    course_id: str | None = None
    assessment_outcome: AssessmentOutcome | None = None
    issue_date: date | None = None
    expiry_date: date | None = None
    location_name: str | None = None
    batch_id: str | None = None
    submitted_by: str | None = None
    submitter_email: str | None = None
    rejection_reason: str | None = None
    reviewer_id: str | None = None
    artifact_ref: str | None = None
    verification_code: str | None = None
    generation_error: str | None = None
    generation_attempts: int = 0
    last_generation_attempt_at: datetime | None = None
    created_at: datetime = _EPOCH
    updated_at: datetime = _EPOCH
