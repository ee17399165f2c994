"""Module-level ``app`` for running certdesk under an external WSGI server.

The configuration path comes from ``CERTDESK_CONFIG``::

    CERTDESK_CONFIG=/etc/certdesk/config.yaml gunicorn "certdesk.server.wsgi:app"
"""

from __future__ import annotations

import os
import sys

from certdesk.app import create_app
from certdesk.config import CertdeskConfig
from certdesk.db import init_database
from certdesk.logging import configure_logging


def _bootstrap():
    path = os.environ.get("CERTDESK_CONFIG")
    if not path:
        sys.stderr.write("certdesk: CERTDESK_CONFIG must point at a configuration file\n")
        sys.exit(1)
    config = CertdeskConfig(config_file=path, schema_file="bundled")
    configure_logging(config.settings.logging)
    return create_app(config=config, database=init_database(config.settings.database))


app = _bootstrap()
