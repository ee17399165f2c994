"""``certdesk db``: connectivity check and schema migration."""

from __future__ import annotations

import logging
import sys

log = logging.getLogger(__name__)

_TABLES = (
    "certificate_requests",
    "retry_queue",
    "delivery_outcomes",
    "delivery_alerts",
    "profiles",
)

_EXIT_INCOMPLETE_SCHEMA = 2


def run_db(config, args) -> None:
    actions = {"status": _status, "migrate": _migrate}
    action = actions.get(args.db_command)
    if action is None:
        sys.stderr.write("usage: certdesk db {status,migrate}\n")
        sys.exit(1)
    action(config)


def _status(config) -> None:
    from certdesk.db import init_database

    try:
        db = init_database(config.settings.database)
        db.fetch_value("SELECT 1")
        present = db.fetch_value(
            "SELECT count(*) FROM information_schema.tables "
            "WHERE table_schema = 'public' AND table_name = ANY(%s)",
            (list(_TABLES),),
        )
    except Exception as exc:
        log.exception("Database status check failed")
        sys.stderr.write(f"database: unreachable ({exc})\n")
        sys.exit(1)

    sys.stdout.write(f"database: connected\nschema: {present}/{len(_TABLES)} tables present\n")
    if present != len(_TABLES):
        sys.exit(_EXIT_INCOMPLETE_SCHEMA)


def _migrate(config) -> None:
    from certdesk.db import apply_schema, init_database

    try:
        apply_schema(init_database(config.settings.database))
    except Exception as exc:
        log.exception("Schema migration failed")
        sys.stderr.write(f"migration failed: {exc}\n")
        sys.exit(1)
    sys.stdout.write("schema applied\n")
