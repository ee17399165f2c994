"""Flask application factory.

Typical entry::

    config = CertdeskConfig(config_file="config.yaml", schema_file="bundled")
    app = create_app(config=config, database=init_database(config.settings.database))
"""

from __future__ import annotations

import atexit
import logging
import signal
import threading
from typing import TYPE_CHECKING

from flask import Flask, jsonify

from certdesk import __version__

if TYPE_CHECKING:
    from pypgkit import Database

    from certdesk.config.certdesk_config import CertdeskConfig
    from certdesk.config.settings import CertdeskSettings

log = logging.getLogger(__name__)

# Set from the SIGHUP handler, consumed by the next request.
_reload_requested = threading.Event()


def create_app(
    config: CertdeskConfig | None = None,
    database: Database | None = None,
    *,
    start_workers: bool = True,
) -> Flask:
    """Build the certdesk Flask app.

    Without *database* only the problem handlers, request hooks and
    health probes are installed; with it the dependency container, the
    API blueprints and (if enabled) the metrics endpoint are added too.
    *start_workers* controls whether the periodic jobs start in this
    process.
    """
    from certdesk.app.errors import register_error_handlers  # noqa: PLC0415
    from certdesk.app.middleware import register_request_hooks  # noqa: PLC0415

    if config is None:
        from certdesk.config import get_config  # noqa: PLC0415

        config = get_config()

    app = Flask("certdesk")
    app.config["CERTDESK_CONFIG"] = config
    app.config["CERTDESK_SETTINGS"] = config.settings

    register_error_handlers(app)
    register_request_hooks(app)
    _add_probes(app)

    if database is not None:
        _wire_container(app, database, config.settings, start_workers=start_workers)

    _install_sighup_handler()
    app.before_request(lambda: _apply_pending_reload(app))

    log.info("certdesk %s application ready", __version__)
    return app


def _wire_container(
    app: Flask,
    database: Database,
    settings: CertdeskSettings,
    *,
    start_workers: bool,
) -> None:
    from certdesk.api import register_blueprints  # noqa: PLC0415
    from certdesk.app.context import Container  # noqa: PLC0415

    container = Container(database, settings)
    app.extensions["container"] = container

    try:
        container.generator.startup_check()
    except Exception:
        log.exception("Document generator failed its startup check")

    if start_workers:
        container.start_workers()
    atexit.register(container.shutdown)

    register_blueprints(app)
    if settings.metrics.enabled:
        from certdesk.api.metrics import metrics_bp  # noqa: PLC0415

        app.register_blueprint(metrics_bp, url_prefix=settings.metrics.path)


# ---------------------------------------------------------------------------
# SIGHUP reload
# ---------------------------------------------------------------------------


def _install_sighup_handler() -> None:
    if not hasattr(signal, "SIGHUP"):
        return
    # signal.signal only works from the main thread
    if threading.current_thread() is not threading.main_thread():
        return
    signal.signal(signal.SIGHUP, lambda signum, frame: _reload_requested.set())


def _apply_pending_reload(app: Flask) -> None:
    """Swap in re-read settings for the sections that are safe to change live.

    Only the log level and the bounce thresholds are hot-reloadable;
    everything else needs a restart.
    """
    if not _reload_requested.is_set():
        return
    _reload_requested.clear()

    current: CertdeskSettings = app.config["CERTDESK_SETTINGS"]
    try:
        fresh = app.config["CERTDESK_CONFIG"].reload_settings()
    except Exception:
        log.exception("Could not re-read configuration on SIGHUP")
        return

    changed = []
    if fresh.logging.level != current.logging.level:
        logging.getLogger("certdesk").setLevel(fresh.logging.level)
        changed.append("logging.level")
    if fresh.bounce_monitor != current.bounce_monitor:
        container = app.extensions.get("container")
        if container is not None:
            container.bounce_monitor.update_settings(fresh.bounce_monitor)
        changed.append("bounce_monitor")

    if changed:
        app.config["CERTDESK_SETTINGS"] = fresh
        log.info("Reloaded configuration: %s", ", ".join(changed))
    else:
        log.info("SIGHUP received; no hot-reloadable settings changed")


# ---------------------------------------------------------------------------
# Health probes
# ---------------------------------------------------------------------------


def _add_probes(app: Flask) -> None:
    @app.get("/livez")
    def livez():
        return jsonify({"alive": True, "version": __version__})

    @app.get("/healthz")
    def healthz():
        """Readiness: database round-trip plus liveness of started workers."""
        body: dict = {"status": "ok", "version": __version__}
        container = app.extensions.get("container")
        if container is None:
            return jsonify(body)

        try:
            container.db.fetch_value("SELECT 1")
        except Exception:  # noqa: BLE001
            body["database"] = "disconnected"
        else:
            body["database"] = "connected"

        workers = {
            w.name: "alive" if w.is_alive else "dead" for w in container.workers if w.started
        }
        if workers:
            body["workers"] = workers

        healthy = body["database"] == "connected" and "dead" not in workers.values()
        if not healthy:
            body["status"] = "degraded"
        return jsonify(body), 200 if healthy else 503
