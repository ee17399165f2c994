"""Logging subsystem for certdesk.

Public API::

    from certdesk.logging import configure_logging, audit_event

    configure_logging(settings.logging)
"""

from certdesk.logging.setup import audit_event, configure_logging

__all__ = ["audit_event", "configure_logging"]
