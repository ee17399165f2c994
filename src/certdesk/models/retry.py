"""Retry queue entry entity."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from certdesk.core.types import RetryStatus

if TYPE_CHECKING:
    from uuid import UUID

    from certdesk.core.types import NotificationKind

_EPOCH = datetime(1970, 1, 1)


@dataclass(frozen=True)
class RetryQueueEntry:
    """One scheduled re-delivery attempt.

    ``payload`` holds the serialised notification event so that batch
    notifications (which have no single certificate) can be rebuilt.
    Entries are never deleted; superseded and exhausted entries stay
    ``failed`` for audit.
    """

    id: UUID
    certificate_id: UUID | None
    notification_kind: NotificationKind
    recipient: str
    next_retry_at: datetime
    retry_count: int = 0
    status: RetryStatus = RetryStatus.PENDING
    error_message: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    claimed_at: datetime | None = None
    created_at: datetime = _EPOCH
    updated_at: datetime = _EPOCH
