"""Enumerated types for the certdesk persistence layer.

All enums inherit from :class:`enum.StrEnum` so their ``.value`` is a
plain string that psycopg serialises as TEXT and JSON round-trips
naturally.
"""

from __future__ import annotations

from enum import StrEnum

# ---------------------------------------------------------------------------
# Certificate request
# ---------------------------------------------------------------------------


class RequestStatus(StrEnum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    APPROVAL_FAILED = "APPROVAL_FAILED"
    ARCHIVED = "ARCHIVED"
    ARCHIVE_FAILED = "ARCHIVE_FAILED"


class AssessmentOutcome(StrEnum):
    PASS = "PASS"
    FAIL = "FAIL"


# Targets an operator may ask the engine for.  PROCESSING is never
# requested directly; it is the intermediate state written for APPROVED.
REQUESTABLE_TARGETS = frozenset(
    {
        RequestStatus.APPROVED,
        RequestStatus.REJECTED,
        RequestStatus.ARCHIVED,
        RequestStatus.ARCHIVE_FAILED,
    }
)

# ---------------------------------------------------------------------------
# Retry queue
# ---------------------------------------------------------------------------


class RetryStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Delivery outcomes
# ---------------------------------------------------------------------------


class DeliveryStatus(StrEnum):
    SENT = "sent"
    FAILED = "failed"
    BOUNCED = "bounced"


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------


class AlertSeverity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertType(StrEnum):
    HIGH_BOUNCE_RATE = "high_bounce_rate"


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class NotificationKind(StrEnum):
    APPROVED = "approved"
    REJECTED = "rejected"
    ARCHIVED = "archived"
    APPROVAL_FAILED = "approval_failed"
    BATCH_SUBMITTED = "batch_submitted"
    BATCH_APPROVED = "batch_approved"
    BATCH_REJECTED = "batch_rejected"
    CERTIFICATE_ISSUED = "certificate_issued"


# ---------------------------------------------------------------------------
# Profiles (bulk targets)
# ---------------------------------------------------------------------------


class ProfileRole(StrEnum):
    ADMIN = "admin"
    INSTRUCTOR = "instructor"
    STUDENT = "student"
    CLIENT = "client"


class ProfileStatus(StrEnum):
    ACTIVE = "active"
    DEACTIVATED = "deactivated"


class BulkOperationKind(StrEnum):
    REQUEST_STATUS = "request_status"
    CERTIFICATE_EMAIL = "certificate_email"
    ROLE_CHANGE = "role_change"
    DEACTIVATION = "deactivation"
