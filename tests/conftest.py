"""Root conftest for the certdesk test suite."""

from __future__ import annotations

import dataclasses
import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path
from uuid import uuid4

import pytest
import yaml

# ---------------------------------------------------------------------------
# Make ``src/`` importable without installing the package
# ---------------------------------------------------------------------------
_SRC = str(Path(__file__).resolve().parent.parent / "src")
if _SRC not in sys.path:
    sys.path.insert(0, _SRC)

from certdesk.config.settings import build_settings  # noqa: E402
from certdesk.core.types import (  # noqa: E402
    AlertType,
    DeliveryStatus,
    ProfileRole,
    ProfileStatus,
    RequestStatus,
    RetryStatus,
)
from certdesk.models import (  # noqa: E402
    CertificateRequest,
    DeliveryAlert,
    DeliveryOutcome,
    DomainDeliveryStats,
    Profile,
    RetryQueueEntry,
)

# ---------------------------------------------------------------------------
# Minimal config data shared by multiple test modules
# ---------------------------------------------------------------------------


@pytest.fixture()
def minimal_config_data() -> dict:
    """Return a dict containing the minimum required config fields."""
    return {
        "server": {"external_url": "https://certs.example.com"},
        "database": {"database": "certdesk_test", "user": "testuser"},
        "generation": {"http": {"url": "https://render.example.com/render"}},
    }


@pytest.fixture()
def tmp_config_file(tmp_path: Path, minimal_config_data: dict) -> Path:
    """Write *minimal_config_data* to a temp YAML file and return its path."""
    cfg = tmp_path / "config.yaml"
    cfg.write_text(
        yaml.safe_dump(minimal_config_data, default_flow_style=False, sort_keys=False),
        encoding="utf-8",
    )
    return cfg


@pytest.fixture()
def settings(minimal_config_data: dict):
    """Fully-defaulted settings tree built from the minimal config."""
    return build_settings(minimal_config_data)


# ---------------------------------------------------------------------------
# ConfigKit singleton cleanup -- autouse so every test gets a fresh slate
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def fresh_config():
    """Reset the CertdeskConfig singleton before and after every test."""
    from certdesk.config.certdesk_config import CertdeskConfig

    CertdeskConfig.reset()
    yield
    CertdeskConfig.reset()


# ---------------------------------------------------------------------------
# In-memory repositories
#
# Same method contracts as the PostgreSQL repositories, including the
# conditional writes: an update whose precondition no longer holds
# returns None and changes nothing.
# ---------------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(UTC)


class MemoryRequestRepository:
    def __init__(self) -> None:
        self.rows: dict = {}

    def add(self, request: CertificateRequest) -> CertificateRequest:
        self.rows[request.id] = request
        return request

    def find_by_id(self, request_id):
        return self.rows.get(request_id)

    def _swap(self, request_id, expected: RequestStatus, **changes):
        current = self.rows.get(request_id)
        if current is None or current.status is not expected:
            return None
        updated = dataclasses.replace(current, updated_at=_now(), **changes)
        self.rows[request_id] = updated
        return updated

    def transition_status(
        self,
        request_id,
        from_status,
        to_status,
        *,
        reviewer_id,
        rejection_reason=None,
    ):
        changes = {"status": to_status, "reviewer_id": reviewer_id}
        if rejection_reason is not None:
            changes["rejection_reason"] = rejection_reason
        if to_status is RequestStatus.PROCESSING:
            changes["last_generation_attempt_at"] = None
        return self._swap(request_id, from_status, **changes)

    def begin_generation(self, request_id, stale_seconds=None):
        current = self.rows.get(request_id)
        if current is None:
            return None
        last = current.last_generation_attempt_at
        if (
            stale_seconds is not None
            and last is not None
            and last >= _now() - timedelta(seconds=stale_seconds)
        ):
            return None
        return self._swap(
            request_id,
            RequestStatus.PROCESSING,
            generation_attempts=current.generation_attempts + 1,
            last_generation_attempt_at=_now(),
        )

    def complete_generation(self, request_id, artifact_ref):
        return self._swap(
            request_id,
            RequestStatus.PROCESSING,
            status=RequestStatus.APPROVED,
            artifact_ref=artifact_ref,
            generation_error=None,
        )

    def fail_generation(self, request_id, error):
        return self._swap(
            request_id,
            RequestStatus.PROCESSING,
            status=RequestStatus.APPROVAL_FAILED,
            generation_error=error,
        )

    def find_by_batch(self, batch_id, status=None):
        return [
            r
            for r in self.rows.values()
            if r.batch_id == batch_id and (status is None or r.status is status)
        ]

    def find_stale_processing(self, stale_seconds, limit=100):
        cutoff = _now() - timedelta(seconds=stale_seconds)
        stale = [
            r
            for r in self.rows.values()
            if r.status is RequestStatus.PROCESSING and r.updated_at < cutoff
        ]
        return stale[:limit]


class MemoryRetryRepository:
    def __init__(self) -> None:
        self.rows: dict = {}

    def _live_duplicate(self, certificate_id, kind, retry_count) -> bool:
        if certificate_id is None:
            return False
        return any(
            e.certificate_id == certificate_id
            and e.notification_kind == kind
            and e.retry_count == retry_count
            and e.status in (RetryStatus.PENDING, RetryStatus.PROCESSING)
            for e in self.rows.values()
        )

    def enqueue(
        self,
        *,
        certificate_id,
        kind,
        recipient,
        payload,
        error_message,
        next_retry_at=None,
        retry_count=0,
    ):
        if self._live_duplicate(certificate_id, kind, retry_count):
            return None
        entry = RetryQueueEntry(
            id=uuid4(),
            certificate_id=certificate_id,
            notification_kind=kind,
            recipient=recipient,
            next_retry_at=next_retry_at or _now(),
            retry_count=retry_count,
            error_message=error_message,
            payload=dict(payload),
            created_at=_now(),
            updated_at=_now(),
        )
        self.rows[entry.id] = entry
        return entry

    def add(self, entry: RetryQueueEntry) -> RetryQueueEntry:
        self.rows[entry.id] = entry
        return entry

    def find_due(self, limit=50):
        due = [
            e
            for e in self.rows.values()
            if e.status is RetryStatus.PENDING and e.next_retry_at <= _now()
        ]
        due.sort(key=lambda e: e.next_retry_at)
        return due[:limit]

    def _swap(self, entry_id, expected: RetryStatus, **changes):
        current = self.rows.get(entry_id)
        if current is None or current.status is not expected:
            return None
        updated = dataclasses.replace(current, updated_at=_now(), **changes)
        self.rows[entry_id] = updated
        return updated

    def claim(self, entry_id):
        return self._swap(
            entry_id,
            RetryStatus.PENDING,
            status=RetryStatus.PROCESSING,
            claimed_at=_now(),
        )

    def mark_completed(self, entry_id):
        return self._swap(
            entry_id,
            RetryStatus.PROCESSING,
            status=RetryStatus.COMPLETED,
            error_message=None,
        )

    def mark_failed(self, entry_id, error_message):
        return self._swap(
            entry_id,
            RetryStatus.PROCESSING,
            status=RetryStatus.FAILED,
            error_message=error_message,
        )

    def supersede(self, entry, error_message, next_retry_at):
        closed = self.mark_failed(entry.id, error_message)
        if closed is None:
            return None
        return self.enqueue(
            certificate_id=entry.certificate_id,
            kind=entry.notification_kind,
            recipient=entry.recipient,
            payload=entry.payload,
            error_message=error_message,
            next_retry_at=next_retry_at,
            retry_count=entry.retry_count + 1,
        )

    def release_stale(self, stale_seconds):
        cutoff = _now() - timedelta(seconds=stale_seconds)
        released = 0
        for entry in list(self.rows.values()):
            if (
                entry.status is RetryStatus.PROCESSING
                and entry.claimed_at is not None
                and entry.claimed_at < cutoff
            ):
                self.rows[entry.id] = dataclasses.replace(
                    entry,
                    status=RetryStatus.PENDING,
                    claimed_at=None,
                )
                released += 1
        return released

    def by_status(self, status: RetryStatus) -> list[RetryQueueEntry]:
        return [e for e in self.rows.values() if e.status is status]


class MemoryOutcomeRepository:
    def __init__(self) -> None:
        self.rows: list[DeliveryOutcome] = []

    def record(
        self,
        *,
        recipient,
        kind,
        status,
        certificate_id=None,
        retry_entry_id=None,
        message_id=None,
        error=None,
    ):
        self.rows.append(
            DeliveryOutcome(
                id=uuid4(),
                recipient=recipient,
                domain=recipient.rpartition("@")[2].lower(),
                notification_kind=kind,
                status=status,
                certificate_id=certificate_id,
                retry_entry_id=retry_entry_id,
                message_id=message_id,
                error=error,
                created_at=_now(),
            ),
        )

    def add_many(self, domain: str, *, sent: int = 0, bounced: int = 0, failed: int = 0):
        """Seed outcomes for *domain* directly."""
        from certdesk.core.types import NotificationKind

        for status, count in (
            (DeliveryStatus.SENT, sent),
            (DeliveryStatus.BOUNCED, bounced),
            (DeliveryStatus.FAILED, failed),
        ):
            for _ in range(count):
                self.record(
                    recipient=f"user-{uuid4().hex[:8]}@{domain}",
                    kind=NotificationKind.APPROVED,
                    status=status,
                )

    def stats_by_domain(self, window_hours):
        cutoff = _now() - timedelta(hours=window_hours)
        totals: dict[str, list[int]] = {}
        for o in self.rows:
            if o.created_at < cutoff or not o.domain:
                continue
            counts = totals.setdefault(o.domain, [0, 0])
            counts[0] += 1
            if o.status is DeliveryStatus.BOUNCED:
                counts[1] += 1
        return [
            DomainDeliveryStats(domain=d, total=t, bounced=b)
            for d, (t, b) in sorted(totals.items())
        ]


class MemoryAlertRepository:
    def __init__(self) -> None:
        self.rows: dict = {}

    def _open_recent(self, alert_type, domain, within_hours):
        cutoff = _now() - timedelta(hours=within_hours)
        matches = [
            a
            for a in self.rows.values()
            if a.alert_type is alert_type
            and a.domain == domain
            and a.resolved_at is None
            and a.created_at >= cutoff
        ]
        return max(matches, key=lambda a: a.created_at) if matches else None

    def find_open_recent(self, alert_type, domain, within_hours):
        return self._open_recent(alert_type, domain, within_hours)

    def insert_unless_recent(
        self,
        *,
        alert_type,
        severity,
        domain,
        bounce_rate,
        sample_size,
        message,
        dedup_hours,
    ):
        if self._open_recent(alert_type, domain, dedup_hours) is not None:
            return None
        alert = DeliveryAlert(
            id=uuid4(),
            alert_type=alert_type,
            severity=severity,
            domain=domain,
            bounce_rate=bounce_rate,
            sample_size=sample_size,
            message=message,
            created_at=_now(),
        )
        self.rows[alert.id] = alert
        return alert

    def add(self, alert: DeliveryAlert) -> DeliveryAlert:
        self.rows[alert.id] = alert
        return alert

    def resolve(self, alert_id, resolved_by):
        current = self.rows.get(alert_id)
        if current is None or current.resolved_at is not None:
            return None
        updated = dataclasses.replace(current, resolved_at=_now(), resolved_by=resolved_by)
        self.rows[alert_id] = updated
        return updated

    def list_alerts(self, *, include_resolved=False, limit=50, offset=0):
        alerts = sorted(self.rows.values(), key=lambda a: a.created_at, reverse=True)
        if not include_resolved:
            alerts = [a for a in alerts if a.resolved_at is None]
        return alerts[offset : offset + limit]


class MemoryProfileRepository:
    def __init__(self) -> None:
        self.rows: dict = {}

    def add(self, **overrides) -> Profile:
        fields = {
            "id": uuid4(),
            "email": f"{uuid4().hex[:8]}@example.org",
            "display_name": "Test User",
            "role": ProfileRole.STUDENT,
            "status": ProfileStatus.ACTIVE,
        }
        fields.update(overrides)
        profile = Profile(**fields)
        self.rows[profile.id] = profile
        return profile

    def change_role(self, profile_id, role):
        current = self.rows.get(profile_id)
        if current is None:
            return None
        self.rows[profile_id] = dataclasses.replace(current, role=role)
        return self.rows[profile_id]

    def deactivate(self, profile_id):
        current = self.rows.get(profile_id)
        if current is None:
            return None
        self.rows[profile_id] = dataclasses.replace(current, status=ProfileStatus.DEACTIVATED)
        return self.rows[profile_id]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def request_repo() -> MemoryRequestRepository:
    return MemoryRequestRepository()


@pytest.fixture()
def retry_repo() -> MemoryRetryRepository:
    return MemoryRetryRepository()


@pytest.fixture()
def outcome_repo() -> MemoryOutcomeRepository:
    return MemoryOutcomeRepository()


@pytest.fixture()
def alert_repo() -> MemoryAlertRepository:
    return MemoryAlertRepository()


@pytest.fixture()
def profile_repo() -> MemoryProfileRepository:
    return MemoryProfileRepository()


@pytest.fixture()
def make_request(request_repo):
    """Factory that stores and returns a :class:`CertificateRequest`."""

    def _make(**overrides) -> CertificateRequest:
        fields = {
            "id": uuid4(),
            "recipient_name": "Ada Lovelace",
            "recipient_email": "ada@example.org",
            "course_name": "First Aid Level 2",
            "submitted_by": "Trainer One",
            "submitter_email": "trainer@training.example.com",
            "created_at": _now(),
            "updated_at": _now(),
        }
        fields.update(overrides)
        return request_repo.add(CertificateRequest(**fields))

    return _make


@pytest.fixture()
def open_alert(alert_repo):
    """Factory for an unresolved alert created *hours_ago*."""
    from certdesk.core.types import AlertSeverity

    def _make(domain: str, hours_ago: float = 1.0) -> DeliveryAlert:
        return alert_repo.add(
            DeliveryAlert(
                id=uuid4(),
                alert_type=AlertType.HIGH_BOUNCE_RATE,
                severity=AlertSeverity.HIGH,
                domain=domain,
                bounce_rate=15.0,
                sample_size=20,
                created_at=_now() - timedelta(hours=hours_ago),
            ),
        )

    return _make
