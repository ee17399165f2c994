"""``certdesk`` command line.

Usage::

    certdesk -c /etc/certdesk/config.yaml            # serve (gunicorn)
    certdesk -c config.yaml --validate-only
    certdesk -c config.yaml serve --dev
    certdesk -c config.yaml db migrate
    certdesk -c config.yaml jobs retry-queue
    certdesk -c config.yaml jobs bounce-monitor --window-hours 48
    certdesk -c config.yaml request transition <id> APPROVED --actor adm1
"""

from __future__ import annotations

import argparse
import importlib
import logging
import sys
from pathlib import Path

log = logging.getLogger(__name__)

# subcommand -> (module, handler); a missing subcommand means "serve"
_COMMANDS = {
    "serve": ("certdesk.cli.commands.serve", "run_serve"),
    "db": ("certdesk.cli.commands.db", "run_db"),
    "jobs": ("certdesk.cli.commands.jobs", "run_jobs"),
    "request": ("certdesk.cli.commands.request", "run_request"),
}


def _version() -> str:
    from certdesk import __version__

    return __version__


def _add_db_commands(subparsers) -> None:
    db = subparsers.add_parser("db", help="Database management")
    actions = db.add_subparsers(dest="db_command")
    actions.add_parser("status", help="Check connectivity and schema")
    actions.add_parser("migrate", help="Apply the bundled schema")


def _add_job_commands(subparsers) -> None:
    jobs = subparsers.add_parser("jobs", help="Run one scheduled job now")
    actions = jobs.add_subparsers(dest="jobs_command")
    actions.add_parser("retry-queue", help="Process due notification retries")
    bounce = actions.add_parser("bounce-monitor", help="Evaluate bounce rates")
    bounce.add_argument("--window-hours", type=int, default=None, metavar="N")
    actions.add_parser("generation-sweep", help="Recover requests stuck in PROCESSING")


def _add_request_commands(subparsers) -> None:
    req = subparsers.add_parser("request", help="Certificate request actions")
    actions = req.add_subparsers(dest="request_command")
    transition = actions.add_parser("transition", help="Apply a status transition")
    transition.add_argument("request_id", help="Request UUID")
    transition.add_argument("status", help="APPROVED, REJECTED, ARCHIVED or ARCHIVE_FAILED")
    transition.add_argument("--actor", required=True, help="Operator id recorded as reviewer")
    transition.add_argument("--reason", default=None, help="Rejection reason")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="certdesk",
        description="Certificate request lifecycle service",
    )
    parser.add_argument("-c", "--config", required=True, metavar="PATH",
                        help="YAML or JSON configuration file")
    parser.add_argument("--debug", action="store_true",
                        help="Verbose bootstrap logging and full tracebacks")
    parser.add_argument("--validate-only", action="store_true",
                        help="Check the configuration and exit")
    parser.add_argument("--dev", action="store_true",
                        help="Serve with the Flask development server")
    parser.add_argument("-v", "--version", action="version",
                        version=f"%(prog)s {_version()}")

    subparsers = parser.add_subparsers(dest="command")
    serve = subparsers.add_parser("serve", help="Start the HTTP server")
    # SUPPRESS keeps a top-level --dev from being reset by the subparser
    serve.add_argument("--dev", action="store_true", default=argparse.SUPPRESS)
    _add_db_commands(subparsers)
    _add_job_commands(subparsers)
    _add_request_commands(subparsers)
    return parser


def _fail(message: str, code: int = 1) -> None:
    sys.stderr.write(f"certdesk: error: {message}\n")
    sys.exit(code)


def _load_config(path: Path, *, debug: bool):
    from certdesk.config import CertdeskConfig, ConfigValidationError

    try:
        return CertdeskConfig(config_file=str(path), schema_file="bundled")
    except ConfigValidationError as exc:
        _fail(str(exc))
    except Exception as exc:
        if debug:
            raise
        _fail(f"failed to load configuration: {exc}")
    return None


def _summary(config) -> str:
    s = config.settings
    db, rq, bm = s.database, s.retry_queue, s.bounce_monitor
    return "\n".join(
        [
            f"certdesk {_version()}: configuration OK",
            f"  external url:   {s.server.external_url}",
            f"  database:       {db.user}@{db.host}:{db.port}/{db.database}",
            f"  smtp:           {'enabled' if s.smtp.enabled else 'disabled (log only)'}",
            f"  generation:     {s.generation.backend} "
            f"(timeout {s.generation.timeout_seconds}s)",
            f"  retry queue:    max {rq.max_retries} retries, "
            f"base {rq.backoff_base_seconds}s x{rq.backoff_multiplier:g}",
            f"  bounce monitor: >{bm.threshold_percent:g}% over {bm.window_hours}h",
        ],
    ) + "\n"


def main(argv: list[str] | None = None) -> None:
    args = _build_parser().parse_args(argv)

    config_path = Path(args.config)
    if not config_path.is_file():
        _fail(f"configuration file not found: {config_path}")

    # stderr-only logging until the configured handlers take over
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )
    config = _load_config(config_path, debug=args.debug)

    from certdesk.logging import configure_logging

    configure_logging(config.settings.logging)

    if args.validate_only:
        sys.stdout.write(_summary(config))
        sys.exit(0)

    command = args.command or "serve"
    module_name, handler_name = _COMMANDS[command]
    handler = getattr(importlib.import_module(module_name), handler_name)

    if command != "serve":
        handler(config, args)
        return

    sys.stdout.write(_summary(config))
    try:
        handler(config, args)
    except RuntimeError as exc:
        _fail(str(exc))


if __name__ == "__main__":
    main()
