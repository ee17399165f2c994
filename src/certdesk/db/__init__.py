"""Database subsystem for certdesk.

Public API::

    from certdesk.db import init_database, apply_schema, UnitOfWork
"""

from certdesk.db.init import apply_schema, init_database
from certdesk.db.unit_of_work import UnitOfWork

__all__ = [
    "UnitOfWork",
    "apply_schema",
    "init_database",
]
