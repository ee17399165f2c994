"""Delivery alert repository."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pypgkit import BaseRepository, Database

from certdesk.core.types import AlertSeverity, AlertType
from certdesk.models.alert import DeliveryAlert

if TYPE_CHECKING:
    from uuid import UUID


class DeliveryAlertRepository(BaseRepository[DeliveryAlert]):
    table_name = "delivery_alerts"
    primary_key = "id"

    def _row_to_entity(self, row: dict) -> DeliveryAlert:
        return DeliveryAlert(
            id=row["id"],
            alert_type=AlertType(row["alert_type"]),
            severity=AlertSeverity(row["severity"]),
            domain=row["domain"],
            bounce_rate=float(row["bounce_rate"]),
            sample_size=row["sample_size"],
            message=row.get("message", ""),
            created_at=row["created_at"],
            resolved_at=row.get("resolved_at"),
            resolved_by=row.get("resolved_by"),
        )

    def _entity_to_row(self, entity: DeliveryAlert) -> dict:
        return {
            "id": entity.id,
            "alert_type": entity.alert_type.value,
            "severity": entity.severity.value,
            "domain": entity.domain,
            "bounce_rate": entity.bounce_rate,
            "sample_size": entity.sample_size,
            "message": entity.message,
            "resolved_at": entity.resolved_at,
            "resolved_by": entity.resolved_by,
        }

    def find_open_recent(
        self,
        alert_type: AlertType,
        domain: str,
        within_hours: int,
    ) -> DeliveryAlert | None:
        """Newest unresolved alert of *alert_type* for *domain* inside the window."""
        db = Database.get_instance()
        row = db.fetch_one(
            "SELECT * FROM delivery_alerts "
            "WHERE alert_type = %s AND domain = %s "
            "AND resolved_at IS NULL "
            "AND created_at >= now() - make_interval(hours => %s) "
            "ORDER BY created_at DESC "
            "LIMIT 1",
            (alert_type.value, domain, within_hours),
            as_dict=True,
        )
        return self._row_to_entity(row) if row else None

    def insert_unless_recent(
        self,
        *,
        alert_type: AlertType,
        severity: AlertSeverity,
        domain: str,
        bounce_rate: float,
        sample_size: int,
        message: str,
        dedup_hours: int,
    ) -> DeliveryAlert | None:
        """Insert an alert unless an open one exists inside the dedup window.

        The existence check and the insert are one statement, so two
        monitors racing on the same domain produce a single row in the
        common case.  Returns ``None`` when suppressed.
        """
        db = Database.get_instance()
        row = db.fetch_one(
            "INSERT INTO delivery_alerts "
            "(alert_type, severity, domain, bounce_rate, sample_size, message) "
            "SELECT %s, %s, %s, %s, %s, %s "
            "WHERE NOT EXISTS ("
            "    SELECT 1 FROM delivery_alerts "
            "    WHERE alert_type = %s AND domain = %s "
            "    AND resolved_at IS NULL "
            "    AND created_at >= now() - make_interval(hours => %s)"
            ") "
            "RETURNING *",
            (
                alert_type.value,
                severity.value,
                domain,
                bounce_rate,
                sample_size,
                message,
                alert_type.value,
                domain,
                dedup_hours,
            ),
            as_dict=True,
        )
        return self._row_to_entity(row) if row else None

    def resolve(self, alert_id: UUID, resolved_by: str) -> DeliveryAlert | None:
        """Mark an open alert resolved; ``None`` if missing or already resolved."""
        db = Database.get_instance()
        row = db.fetch_one(
            "UPDATE delivery_alerts SET resolved_at = now(), resolved_by = %s "
            "WHERE id = %s AND resolved_at IS NULL "
            "RETURNING *",
            (resolved_by, alert_id),
            as_dict=True,
        )
        return self._row_to_entity(row) if row else None

    def list_alerts(
        self,
        *,
        include_resolved: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> list[DeliveryAlert]:
        db = Database.get_instance()
        where = "" if include_resolved else "WHERE resolved_at IS NULL "
        rows = db.fetch_all(
            f"SELECT * FROM delivery_alerts {where}"  # noqa: S608
            "ORDER BY created_at DESC LIMIT %s OFFSET %s",
            (limit, offset),
            as_dict=True,
        )
        return [self._row_to_entity(r) for r in rows]
