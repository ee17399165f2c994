"""Certificate request repository."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pypgkit import BaseRepository, Database

from certdesk.core.types import AssessmentOutcome, RequestStatus
from certdesk.models.request import CertificateRequest

if TYPE_CHECKING:
    from uuid import UUID


class CertificateRequestRepository(BaseRepository[CertificateRequest]):
    table_name = "certificate_requests"
    primary_key = "id"

    def _row_to_entity(self, row: dict) -> CertificateRequest:
        outcome = row.get("assessment_outcome")
        return CertificateRequest(
            id=row["id"],
            recipient_name=row["recipient_name"],
            recipient_email=row.get("recipient_email"),
            course_name=row["course_name"],
            status=RequestStatus(row["status"]),
            course_id=row.get("course_id"),
            assessment_outcome=AssessmentOutcome(outcome) if outcome else None,
            issue_date=row.get("issue_date"),
            expiry_date=row.get("expiry_date"),
            location_name=row.get("location_name"),
            batch_id=row.get("batch_id"),
            submitted_by=row.get("submitted_by"),
            submitter_email=row.get("submitter_email"),
            rejection_reason=row.get("rejection_reason"),
            reviewer_id=row.get("reviewer_id"),
            artifact_ref=row.get("artifact_ref"),
            verification_code=row.get("verification_code"),
            generation_error=row.get("generation_error"),
            generation_attempts=row.get("generation_attempts", 0),
            last_generation_attempt_at=row.get("last_generation_attempt_at"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _entity_to_row(self, entity: CertificateRequest) -> dict:
        return {
            "id": entity.id,
            "recipient_name": entity.recipient_name,
            "recipient_email": entity.recipient_email,
            "course_id": entity.course_id,
            "course_name": entity.course_name,
            "assessment_outcome": (
                entity.assessment_outcome.value if entity.assessment_outcome else None
            ),
            "issue_date": entity.issue_date,
            "expiry_date": entity.expiry_date,
            "location_name": entity.location_name,
            "batch_id": entity.batch_id,
            "submitted_by": entity.submitted_by,
            "submitter_email": entity.submitter_email,
            "status": entity.status.value,
            "rejection_reason": entity.rejection_reason,
            "reviewer_id": entity.reviewer_id,
            "artifact_ref": entity.artifact_ref,
            "verification_code": entity.verification_code,
        }

    def transition_status(
        self,
        request_id: UUID,
        from_status: RequestStatus,
        to_status: RequestStatus,
        *,
        reviewer_id: str,
        rejection_reason: str | None = None,
    ) -> CertificateRequest | None:
        """Atomic compare-and-swap of status and reviewer.

        Status, reviewer and rejection reason land in one row write.
        Entering ``PROCESSING`` clears ``last_generation_attempt_at`` so a
        re-approval is not held by the attempt that failed before it.
        Returns ``None`` if the current status no longer matches
        *from_status* (a concurrent writer got there first).
        """
        db = Database.get_instance()
        row = db.fetch_one(
            "UPDATE certificate_requests "
            "SET status = %s, reviewer_id = %s, "
            "    rejection_reason = COALESCE(%s, rejection_reason), "
            "    last_generation_attempt_at = CASE WHEN %s THEN NULL "
            "        ELSE last_generation_attempt_at END "
            "WHERE id = %s AND status = %s "
            "RETURNING *",
            (
                to_status.value,
                reviewer_id,
                rejection_reason,
                to_status is RequestStatus.PROCESSING,
                request_id,
                from_status.value,
            ),
            as_dict=True,
        )
        return self._row_to_entity(row) if row else None

    def begin_generation(
        self,
        request_id: UUID,
        stale_seconds: int | None = None,
    ) -> CertificateRequest | None:
        """Record a generation attempt on a ``PROCESSING`` request.

        With *stale_seconds*, an attempt started less than that long ago
        still holds the request.  Returns ``None`` when the request is
        not in ``PROCESSING`` or is held by such an attempt.
        """
        db = Database.get_instance()
        sql = (
            "UPDATE certificate_requests "
            "SET generation_attempts = generation_attempts + 1, "
            "    last_generation_attempt_at = now() "
            "WHERE id = %s AND status = %s "
        )
        params: tuple = (request_id, RequestStatus.PROCESSING.value)
        if stale_seconds is not None:
            sql += (
                "AND (last_generation_attempt_at IS NULL "
                "     OR last_generation_attempt_at < now() - make_interval(secs => %s)) "
            )
            params += (stale_seconds,)
        row = db.fetch_one(sql + "RETURNING *", params, as_dict=True)
        return self._row_to_entity(row) if row else None

    def complete_generation(
        self,
        request_id: UUID,
        artifact_ref: str,
    ) -> CertificateRequest | None:
        """``PROCESSING`` → ``APPROVED`` with the artifact reference."""
        db = Database.get_instance()
        row = db.fetch_one(
            "UPDATE certificate_requests "
            "SET status = %s, artifact_ref = %s, generation_error = NULL "
            "WHERE id = %s AND status = %s "
            "RETURNING *",
            (
                RequestStatus.APPROVED.value,
                artifact_ref,
                request_id,
                RequestStatus.PROCESSING.value,
            ),
            as_dict=True,
        )
        return self._row_to_entity(row) if row else None

    def fail_generation(
        self,
        request_id: UUID,
        error: str,
    ) -> CertificateRequest | None:
        """``PROCESSING`` → ``APPROVAL_FAILED`` recording *error*."""
        db = Database.get_instance()
        row = db.fetch_one(
            "UPDATE certificate_requests "
            "SET status = %s, generation_error = %s "
            "WHERE id = %s AND status = %s "
            "RETURNING *",
            (
                RequestStatus.APPROVAL_FAILED.value,
                error,
                request_id,
                RequestStatus.PROCESSING.value,
            ),
            as_dict=True,
        )
        return self._row_to_entity(row) if row else None

    def find_by_batch(
        self,
        batch_id: str,
        status: RequestStatus | None = None,
    ) -> list[CertificateRequest]:
        """Return the requests of *batch_id*, optionally filtered by status."""
        db = Database.get_instance()
        if status is not None:
            rows = db.fetch_all(
                "SELECT * FROM certificate_requests "
                "WHERE batch_id = %s AND status = %s ORDER BY created_at",
                (batch_id, status.value),
                as_dict=True,
            )
        else:
            rows = db.fetch_all(
                "SELECT * FROM certificate_requests WHERE batch_id = %s ORDER BY created_at",
                (batch_id,),
                as_dict=True,
            )
        return [self._row_to_entity(r) for r in rows]

    def find_stale_processing(
        self,
        stale_seconds: int,
        limit: int = 100,
    ) -> list[CertificateRequest]:
        """Requests left in ``PROCESSING`` longer than *stale_seconds*."""
        db = Database.get_instance()
        rows = db.fetch_all(
            "SELECT * FROM certificate_requests "
            "WHERE status = %s "
            "AND updated_at < now() - make_interval(secs => %s) "
            "ORDER BY updated_at "
            "LIMIT %s",
            (RequestStatus.PROCESSING.value, stale_seconds, limit),
            as_dict=True,
        )
        return [self._row_to_entity(r) for r in rows]
