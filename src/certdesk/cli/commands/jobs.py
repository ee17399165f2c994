"""Job subcommands: run one scheduled pass from the shell or cron."""

from __future__ import annotations

import json
import logging
import sys

log = logging.getLogger(__name__)


def build_container(config):
    """Database plus a worker-less dependency container."""
    from certdesk.app.context import Container
    from certdesk.db import init_database

    db = init_database(config.settings.database)
    return Container(db, config.settings)


def _emit(payload) -> None:
    sys.stdout.write(json.dumps(payload, indent=2, default=str) + "\n")


def run_jobs(config, args) -> None:
    """Handle jobs subcommands."""
    if args.jobs_command not in ("retry-queue", "bounce-monitor", "generation-sweep"):
        sys.stderr.write("usage: certdesk jobs {retry-queue,bounce-monitor,generation-sweep}\n")
        sys.exit(1)

    container = build_container(config)
    try:
        if args.jobs_command == "retry-queue":
            _emit(container.retry_processor.process().to_dict())
        elif args.jobs_command == "bounce-monitor":
            from certdesk.api.serializers import serialize_alert

            alerts = container.bounce_monitor.evaluate(args.window_hours)
            _emit({"alerts": [serialize_alert(a) for a in alerts]})
        else:
            _emit({"recovered": container.generation.recover_stale()})
    finally:
        container.shutdown()
