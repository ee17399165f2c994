"""Embedded gunicorn server.

``certdesk serve`` runs gunicorn in-process with options taken from the
``server`` config section, so no separate gunicorn config file exists.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from flask import Flask

    from certdesk.config.settings import ServerSettings

log = logging.getLogger(__name__)


def _gunicorn_options(server: ServerSettings) -> dict:
    options = {
        "bind": f"{server.bind}:{server.port}",
        "workers": server.workers,
        "worker_class": server.worker_class,
        "timeout": server.timeout,
        "graceful_timeout": server.graceful_timeout,
        "keepalive": server.keepalive,
        # the request hooks write the access log
        "accesslog": None,
    }
    if server.max_requests:
        options["max_requests"] = server.max_requests
        options["max_requests_jitter"] = server.max_requests_jitter
    return options


def _start_container_workers(app: Flask) -> None:
    container = app.extensions.get("container")
    if container is not None:
        container.start_workers()


def run_gunicorn(app: Flask, settings: ServerSettings) -> None:
    """Serve *app* with gunicorn until the master exits.

    Create *app* with ``start_workers=False``: threads do not survive
    ``fork``, so each gunicorn worker starts the periodic jobs in its
    ``post_fork`` hook and the advisory locks elect one runner per job.
    """
    try:
        from gunicorn.app.base import BaseApplication
    except ImportError:
        msg = "gunicorn is not available on this platform; run with --dev instead"
        raise RuntimeError(msg) from None

    options = _gunicorn_options(settings)

    class CertdeskGunicorn(BaseApplication):
        def load_config(self) -> None:
            for key, value in options.items():
                self.cfg.set(key, value)
            self.cfg.set("post_fork", lambda server, worker: _start_container_workers(app))

        def load(self) -> Flask:
            return app

    log.info(
        "Starting gunicorn on %s with %d %s workers",
        options["bind"],
        settings.workers,
        settings.worker_class,
    )
    CertdeskGunicorn().run()
