"""Delivery outcome record, the input of the bounce monitor."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from uuid import UUID

    from certdesk.core.types import DeliveryStatus, NotificationKind

_EPOCH = datetime(1970, 1, 1)


@dataclass(frozen=True)
class DeliveryOutcome:
    id: UUID
    recipient: str
    domain: str
    notification_kind: NotificationKind
    status: DeliveryStatus
    certificate_id: UUID | None = None
    retry_entry_id: UUID | None = None
    message_id: str | None = None
    error: str | None = None
    created_at: datetime = _EPOCH


@dataclass(frozen=True)
class DomainDeliveryStats:
    """Per-domain delivery totals over a trailing window."""

    domain: str
    total: int
    bounced: int

    @property
    def bounce_rate(self) -> float:
        """Bounce percentage in ``[0, 100]``."""
        if self.total == 0:
            return 0.0
        return self.bounced * 100.0 / self.total
