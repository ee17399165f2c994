"""Delivery alert entity."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from uuid import UUID

    from certdesk.core.types import AlertSeverity, AlertType

_EPOCH = datetime(1970, 1, 1)


@dataclass(frozen=True)
class DeliveryAlert:
    id: UUID
    alert_type: AlertType
    severity: AlertSeverity
    domain: str
    bounce_rate: float
    sample_size: int
    message: str = ""
    created_at: datetime = _EPOCH
    resolved_at: datetime | None = None
    resolved_by: str | None = None

    @property
    def is_open(self) -> bool:
        return self.resolved_at is None
