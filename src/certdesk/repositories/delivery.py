"""Delivery outcome repository."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pypgkit import BaseRepository, Database

from certdesk.core.types import DeliveryStatus, NotificationKind
from certdesk.models.delivery import DeliveryOutcome, DomainDeliveryStats

if TYPE_CHECKING:
    from uuid import UUID


def recipient_domain(address: str) -> str:
    """Lower-cased domain part of *address* (``""`` if there is none)."""
    _, sep, domain = address.rpartition("@")
    return domain.strip().lower() if sep else ""


class DeliveryOutcomeRepository(BaseRepository[DeliveryOutcome]):
    table_name = "delivery_outcomes"
    primary_key = "id"

    def _row_to_entity(self, row: dict) -> DeliveryOutcome:
        return DeliveryOutcome(
            id=row["id"],
            recipient=row["recipient"],
            domain=row["domain"],
            notification_kind=NotificationKind(row["notification_kind"]),
            status=DeliveryStatus(row["status"]),
            certificate_id=row.get("certificate_id"),
            retry_entry_id=row.get("retry_entry_id"),
            message_id=row.get("message_id"),
            error=row.get("error"),
            created_at=row["created_at"],
        )

    def _entity_to_row(self, entity: DeliveryOutcome) -> dict:
        return {
            "id": entity.id,
            "recipient": entity.recipient,
            "domain": entity.domain,
            "notification_kind": entity.notification_kind.value,
            "status": entity.status.value,
            "certificate_id": entity.certificate_id,
            "retry_entry_id": entity.retry_entry_id,
            "message_id": entity.message_id,
            "error": entity.error,
        }

    def record(
        self,
        *,
        recipient: str,
        kind: NotificationKind,
        status: DeliveryStatus,
        certificate_id: UUID | None = None,
        retry_entry_id: UUID | None = None,
        message_id: str | None = None,
        error: str | None = None,
    ) -> None:
        """Append one delivery attempt outcome."""
        db = Database.get_instance()
        db.execute(
            "INSERT INTO delivery_outcomes "
            "(recipient, domain, notification_kind, status, "
            " certificate_id, retry_entry_id, message_id, error) "
            "VALUES (%s, %s, %s, %s, %s, %s, %s, %s)",
            (
                recipient,
                recipient_domain(recipient),
                kind.value,
                status.value,
                certificate_id,
                retry_entry_id,
                message_id,
                error,
            ),
        )

    def stats_by_domain(self, window_hours: int) -> list[DomainDeliveryStats]:
        """Totals and bounce counts per recipient domain over the window."""
        db = Database.get_instance()
        rows = db.fetch_all(
            "SELECT domain, "
            "       count(*) AS total, "
            "       count(*) FILTER (WHERE status = %s) AS bounced "
            "FROM delivery_outcomes "
            "WHERE created_at >= now() - make_interval(hours => %s) "
            "AND domain <> '' "
            "GROUP BY domain "
            "ORDER BY domain",
            (DeliveryStatus.BOUNCED.value, window_hours),
            as_dict=True,
        )
        return [
            DomainDeliveryStats(
                domain=r["domain"],
                total=int(r["total"]),
                bounced=int(r["bounced"]),
            )
            for r in rows
        ]
