"""Flask application package for certdesk.

Public API::

    from certdesk.app import create_app
"""

from certdesk.app.factory import create_app

__all__ = ["create_app"]
