"""Collaborators consumed by the lifecycle core.

Document generation and mail transport are interfaces here; the
built-in adapters (remote HTTP renderer, SMTP) are thin and
replaceable through ``generation.backend: ext:...``.
"""

from certdesk.delivery.base import (
    Attachment,
    DocumentGenerator,
    GenerationResult,
    MailTransport,
    SendResult,
)

__all__ = [
    "Attachment",
    "DocumentGenerator",
    "GenerationResult",
    "MailTransport",
    "SendResult",
]
