"""PyPGKit bootstrap for certdesk.

:func:`init_database` creates the process-wide :class:`pypgkit.Database`
from the ``database`` config section; :func:`apply_schema` runs the
bundled DDL, which is safe to re-run.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from pypgkit import Database, DatabaseConfig

if TYPE_CHECKING:
    from certdesk.config.settings import DatabaseSettings

SCHEMA_PATH = Path(__file__).parent / "schema.sql"

log = logging.getLogger(__name__)


def init_database(settings: DatabaseSettings) -> Database:
    """Return the :class:`Database` singleton, creating it on first call.

    ``auto_setup`` applies ``schema.sql`` when the pool first connects.
    """
    if Database.is_initialized():
        return Database.get_instance()

    pool_config = DatabaseConfig(
        host=settings.host,
        port=settings.port,
        database=settings.database,
        user=settings.user,
        password=settings.password,
        sslmode=settings.sslmode,
        min_connections=settings.min_connections,
        max_connections=settings.max_connections,
        connection_timeout=settings.connection_timeout,
    )
    db = Database.init(
        config=pool_config,
        schema_path=SCHEMA_PATH if settings.auto_setup else None,
        auto_setup=settings.auto_setup,
        interactive=False,
    )
    log.info(
        "Connected to PostgreSQL %s/%s as %s (pool %d-%d)",
        settings.host,
        settings.database,
        settings.user,
        settings.min_connections,
        settings.max_connections,
    )
    return db


def apply_schema(db: Database) -> None:
    """Run ``schema.sql`` in one transaction."""
    ddl = SCHEMA_PATH.read_text(encoding="utf-8")
    with db.transaction() as conn, conn.cursor() as cur:
        cur.execute(ddl)
    log.info("Applied schema from %s", SCHEMA_PATH.name)
