"""Request subcommands."""

from __future__ import annotations

import json
import logging
import sys
from uuid import UUID

from certdesk.cli.commands.jobs import build_container

log = logging.getLogger(__name__)


def run_request(config, args) -> None:
    """Handle request subcommands."""
    if args.request_command != "transition":
        sys.stderr.write("usage: certdesk request transition ID STATUS --actor ID\n")
        sys.exit(1)

    from certdesk.api.serializers import serialize_request
    from certdesk.core.errors import TransitionError

    try:
        request_id = UUID(args.request_id)
    except ValueError:
        sys.stderr.write(f"invalid request id: {args.request_id}\n")
        sys.exit(1)

    container = build_container(config)
    try:
        updated = container.transition_service.transition(
            request_id,
            args.status,
            args.actor,
            args.reason,
        )
    except TransitionError as exc:
        sys.stderr.write(f"{exc.code}: {exc.detail}\n")
        container.shutdown()
        sys.exit(1)

    # Waits for a scheduled generation to finish before printing.
    container.shutdown()
    final = container.requests.find_by_id(request_id) or updated
    sys.stdout.write(json.dumps(serialize_request(final), indent=2) + "\n")
