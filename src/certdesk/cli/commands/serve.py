"""``certdesk serve``: run the HTTP API and the periodic jobs."""

from __future__ import annotations

import logging

log = logging.getLogger(__name__)


def run_serve(config, args) -> None:
    """Serve under gunicorn, or Flask's reloader-free dev server with ``--dev``."""
    from certdesk.app import create_app
    from certdesk.db import init_database

    database = init_database(config.settings.database)
    server = config.settings.server

    if not args.dev:
        from certdesk.server.gunicorn_app import run_gunicorn

        run_gunicorn(
            create_app(config=config, database=database, start_workers=False),
            server,
        )
        return

    app = create_app(config=config, database=database)
    log.warning("Flask development server in use; do not expose it publicly")
    app.run(host=server.bind, port=server.port, debug=True, use_reloader=False)
