"""Retry queue repository.

Only ``pending`` rows are ever claimed, and only ``processing`` rows
are ever closed.  Every state change is a conditional update so that
concurrent processors cannot both act on the same entry.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from psycopg.types.json import Jsonb
from pypgkit import BaseRepository, Database

from certdesk.core.types import NotificationKind, RetryStatus
from certdesk.db.unit_of_work import UnitOfWork
from certdesk.models.retry import RetryQueueEntry

if TYPE_CHECKING:
    from uuid import UUID


class RetryQueueRepository(BaseRepository[RetryQueueEntry]):
    table_name = "retry_queue"
    primary_key = "id"

    def _row_to_entity(self, row: dict) -> RetryQueueEntry:
        return RetryQueueEntry(
            id=row["id"],
            certificate_id=row.get("certificate_id"),
            notification_kind=NotificationKind(row["notification_kind"]),
            recipient=row["recipient"],
            next_retry_at=row["next_retry_at"],
            retry_count=row.get("retry_count", 0),
            status=RetryStatus(row["status"]),
            error_message=row.get("error_message"),
            payload=row.get("payload") or {},
            claimed_at=row.get("claimed_at"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _entity_to_row(self, entity: RetryQueueEntry) -> dict:
        return {
            "id": entity.id,
            "certificate_id": entity.certificate_id,
            "notification_kind": entity.notification_kind.value,
            "recipient": entity.recipient,
            "payload": Jsonb(entity.payload),
            "retry_count": entity.retry_count,
            "next_retry_at": entity.next_retry_at,
            "status": entity.status.value,
            "error_message": entity.error_message,
        }

    def enqueue(
        self,
        *,
        certificate_id: UUID | None,
        kind: NotificationKind,
        recipient: str,
        payload: dict,
        error_message: str | None,
        next_retry_at: datetime | None = None,
        retry_count: int = 0,
    ) -> RetryQueueEntry | None:
        """Insert a ``pending`` entry.

        Returns ``None`` if a live entry for the same certificate,
        notification kind and retry count already exists (the partial
        unique index fired).
        """
        db = Database.get_instance()
        row = db.fetch_one(
            "INSERT INTO retry_queue "
            "(certificate_id, notification_kind, recipient, payload, "
            " retry_count, next_retry_at, status, error_message) "
            "VALUES (%s, %s, %s, %s, %s, %s, %s, %s) "
            "ON CONFLICT DO NOTHING "
            "RETURNING *",
            (
                certificate_id,
                kind.value,
                recipient,
                Jsonb(payload),
                retry_count,
                next_retry_at or datetime.now(UTC),
                RetryStatus.PENDING.value,
                error_message,
            ),
            as_dict=True,
        )
        return self._row_to_entity(row) if row else None

    def find_due(self, limit: int = 50) -> list[RetryQueueEntry]:
        """Pending entries whose ``next_retry_at`` has passed, oldest first.

        Reading takes no locks; only the per-entry :meth:`claim` grants
        the right to process an entry.
        """
        db = Database.get_instance()
        rows = db.fetch_all(
            "SELECT * FROM retry_queue "
            "WHERE status = %s AND next_retry_at <= now() "
            "ORDER BY next_retry_at "
            "LIMIT %s",
            (RetryStatus.PENDING.value, limit),
            as_dict=True,
        )
        return [self._row_to_entity(r) for r in rows]

    def claim(self, entry_id: UUID) -> RetryQueueEntry | None:
        """``pending`` → ``processing``; ``None`` if another worker won."""
        db = Database.get_instance()
        row = db.fetch_one(
            "UPDATE retry_queue SET status = %s, claimed_at = now() "
            "WHERE id = %s AND status = %s "
            "RETURNING *",
            (RetryStatus.PROCESSING.value, entry_id, RetryStatus.PENDING.value),
            as_dict=True,
        )
        return self._row_to_entity(row) if row else None

    def mark_completed(self, entry_id: UUID) -> RetryQueueEntry | None:
        db = Database.get_instance()
        row = db.fetch_one(
            "UPDATE retry_queue SET status = %s, error_message = NULL "
            "WHERE id = %s AND status = %s "
            "RETURNING *",
            (RetryStatus.COMPLETED.value, entry_id, RetryStatus.PROCESSING.value),
            as_dict=True,
        )
        return self._row_to_entity(row) if row else None

    def mark_failed(self, entry_id: UUID, error_message: str) -> RetryQueueEntry | None:
        """Close a claimed entry permanently with no successor."""
        db = Database.get_instance()
        row = db.fetch_one(
            "UPDATE retry_queue SET status = %s, error_message = %s "
            "WHERE id = %s AND status = %s "
            "RETURNING *",
            (
                RetryStatus.FAILED.value,
                error_message,
                entry_id,
                RetryStatus.PROCESSING.value,
            ),
            as_dict=True,
        )
        return self._row_to_entity(row) if row else None

    def supersede(
        self,
        entry: RetryQueueEntry,
        error_message: str,
        next_retry_at: datetime,
    ) -> RetryQueueEntry | None:
        """Close *entry* as ``failed`` and insert its ``retry_count + 1`` successor.

        Both writes share one transaction.  Returns the successor, or
        ``None`` if *entry* was no longer ``processing`` (nothing is
        written in that case).
        """
        with UnitOfWork() as uow:
            closed = uow.update_where(
                self.table_name,
                {
                    "status": RetryStatus.FAILED.value,
                    "error_message": error_message,
                },
                {"id": entry.id, "status": RetryStatus.PROCESSING.value},
            )
            if closed is None:
                return None
            row = uow.insert_or_skip(
                self.table_name,
                {
                    "certificate_id": entry.certificate_id,
                    "notification_kind": entry.notification_kind.value,
                    "recipient": entry.recipient,
                    "payload": Jsonb(entry.payload),
                    "retry_count": entry.retry_count + 1,
                    "next_retry_at": next_retry_at,
                    "status": RetryStatus.PENDING.value,
                    "error_message": error_message,
                },
            )
        return self._row_to_entity(row) if row else None

    def release_stale(self, stale_seconds: int) -> int:
        """Return long-``processing`` claims to ``pending``.  Returns count."""
        db = Database.get_instance()
        return db.execute(
            "UPDATE retry_queue SET status = %s, claimed_at = NULL "
            "WHERE status = %s "
            "AND claimed_at < now() - make_interval(secs => %s)",
            (RetryStatus.PENDING.value, RetryStatus.PROCESSING.value, stale_seconds),
        )

    def find_by_certificate(self, certificate_id: UUID) -> list[RetryQueueEntry]:
        db = Database.get_instance()
        rows = db.fetch_all(
            "SELECT * FROM retry_queue WHERE certificate_id = %s ORDER BY created_at",
            (certificate_id,),
            as_dict=True,
        )
        return [self._row_to_entity(r) for r in rows]

    def find_all_paginated(
        self,
        status: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[RetryQueueEntry]:
        """Entries, newest first, with an optional status filter."""
        db = Database.get_instance()
        if status:
            rows = db.fetch_all(
                "SELECT * FROM retry_queue "
                "WHERE status = %s "
                "ORDER BY created_at DESC "
                "LIMIT %s OFFSET %s",
                (status, limit, offset),
                as_dict=True,
            )
        else:
            rows = db.fetch_all(
                "SELECT * FROM retry_queue ORDER BY created_at DESC LIMIT %s OFFSET %s",
                (limit, offset),
                as_dict=True,
            )
        return [self._row_to_entity(r) for r in rows]
