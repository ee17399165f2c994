"""Unit of Work: several writes committed on one connection.

Every :class:`pypgkit.BaseRepository` call checks out its own pooled
connection, so two repository calls never share a transaction.  The
retry queue needs exactly that when it supersedes an entry (close the
old row, open its successor), and this helper provides it.

Usage::

    from certdesk.db import UnitOfWork

    with UnitOfWork(db) as uow:
        old = uow.update_where(
            "retry_queue",
            {"status": "failed"},
            {"id": entry_id, "status": "processing"},
        )
        if old is not None:
            uow.insert_or_skip("retry_queue", {...})
    # COMMIT on clean exit, ROLLBACK if the block raises
"""

from __future__ import annotations

from typing import Any, Self

from psycopg.rows import dict_row
from pypgkit import Database


class UnitOfWork:
    """Transaction-scoped SQL helpers over a single pooled connection."""

    def __init__(self, database: Database | None = None) -> None:
        self._db = database or Database.get_instance()
        self._tx = None
        self._conn = None

    def __enter__(self) -> Self:
        self._tx = self._db.transaction()
        self._conn = self._tx.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self._tx.__exit__(exc_type, exc_val, exc_tb)
        self._tx = None
        self._conn = None

    def _cursor(self, *, rows: bool = True):
        if self._conn is None:
            msg = "UnitOfWork used outside of its 'with' block"
            raise RuntimeError(msg)
        if rows:
            return self._conn.cursor(row_factory=dict_row)
        return self._conn.cursor()

    def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        """INSERT *row* into *table* and return it via ``RETURNING *``."""
        cols = ", ".join(row)
        marks = ", ".join(["%s"] * len(row))
        with self._cursor() as cur:
            cur.execute(
                f"INSERT INTO {table} ({cols}) VALUES ({marks}) RETURNING *",
                list(row.values()),
            )
            return cur.fetchone()

    def insert_or_skip(self, table: str, row: dict[str, Any]) -> dict[str, Any] | None:
        """INSERT unless a unique constraint already holds an equivalent row.

        Returns the new row, or ``None`` when the insert was skipped.
        """
        cols = ", ".join(row)
        marks = ", ".join(["%s"] * len(row))
        with self._cursor() as cur:
            cur.execute(
                f"INSERT INTO {table} ({cols}) VALUES ({marks}) "
                "ON CONFLICT DO NOTHING RETURNING *",
                list(row.values()),
            )
            return cur.fetchone()

    def update_where(
        self,
        table: str,
        set_values: dict[str, Any],
        where: dict[str, Any],
    ) -> dict[str, Any] | None:
        """Conditional UPDATE; ``None`` means no row matched *where*.

        Putting the expected current status in *where* turns this into
        a compare-and-swap.
        """
        assignments = ", ".join(f"{col} = %s" for col in set_values)
        conditions = " AND ".join(f"{col} = %s" for col in where)
        with self._cursor() as cur:
            cur.execute(
                f"UPDATE {table} SET {assignments} WHERE {conditions} RETURNING *",
                [*set_values.values(), *where.values()],
            )
            return cur.fetchone()

    def execute(self, sql: str, params: tuple | list | None = None) -> int:
        """Run *sql* and return the affected row count."""
        with self._cursor(rows=False) as cur:
            cur.execute(sql, params)
            return cur.rowcount

    def fetch_one(
        self,
        sql: str,
        params: tuple | list | None = None,
    ) -> dict[str, Any] | None:
        with self._cursor() as cur:
            cur.execute(sql, params)
            return cur.fetchone()
