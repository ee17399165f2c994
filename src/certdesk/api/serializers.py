"""Response serialization for certdesk resources.

Each function takes a model entity and produces a camelCase dictionary
suitable for ``flask.jsonify``.  Unset optional fields are omitted.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from certdesk.models import (
        BulkOperationResult,
        CertificateRequest,
        DeliveryAlert,
        RetryQueueEntry,
    )


def serialize_request(req: CertificateRequest) -> dict:
    result: dict = {
        "id": str(req.id),
        "status": req.status.value,
        "recipientName": req.recipient_name,
        "courseName": req.course_name,
        "generationAttempts": req.generation_attempts,
        "createdAt": req.created_at.isoformat(),
        "updatedAt": req.updated_at.isoformat(),
    }
    optional = {
        "recipientEmail": req.recipient_email,
        "courseId": req.course_id,
        "assessmentOutcome": req.assessment_outcome.value if req.assessment_outcome else None,
        "issueDate": req.issue_date.isoformat() if req.issue_date else None,
        "expiryDate": req.expiry_date.isoformat() if req.expiry_date else None,
        "locationName": req.location_name,
        "batchId": req.batch_id,
        "rejectionReason": req.rejection_reason,
        "reviewerId": req.reviewer_id,
        "artifactRef": req.artifact_ref,
        "verificationCode": req.verification_code,
        "generationError": req.generation_error,
        "lastGenerationAttemptAt": (
            req.last_generation_attempt_at.isoformat() if req.last_generation_attempt_at else None
        ),
    }
    result.update({k: v for k, v in optional.items() if v is not None})
    return result


def serialize_retry_entry(entry: RetryQueueEntry) -> dict:
    result: dict = {
        "id": str(entry.id),
        "notificationKind": entry.notification_kind.value,
        "recipient": entry.recipient,
        "retryCount": entry.retry_count,
        "status": entry.status.value,
        "nextRetryAt": entry.next_retry_at.isoformat(),
        "createdAt": entry.created_at.isoformat(),
    }
    if entry.certificate_id:
        result["certificateId"] = str(entry.certificate_id)
    if entry.error_message:
        result["errorMessage"] = entry.error_message
    return result


def serialize_alert(alert: DeliveryAlert) -> dict:
    result: dict = {
        "id": str(alert.id),
        "type": alert.alert_type.value,
        "severity": alert.severity.value,
        "domain": alert.domain,
        "bounceRate": alert.bounce_rate,
        "sampleSize": alert.sample_size,
        "message": alert.message,
        "createdAt": alert.created_at.isoformat(),
    }
    if alert.resolved_at:
        result["resolvedAt"] = alert.resolved_at.isoformat()
        result["resolvedBy"] = alert.resolved_by
    return result


def serialize_bulk_result(result: BulkOperationResult) -> dict:
    return result.to_dict()
