"""Collaborator registry.

Builds the configured :class:`DocumentGenerator` (built-in ``http`` or
a custom ``ext:package.module.ClassName``) and the mail transport
matching the SMTP settings.

Usage::

    from certdesk.delivery.registry import load_generator, load_transport

    generator = load_generator(settings.generation)
    transport = load_transport(settings.smtp)
"""

from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING

from certdesk.core.errors import DeliveryBackendError
from certdesk.delivery.base import DocumentGenerator, MailTransport

if TYPE_CHECKING:
    from certdesk.config.settings import GenerationSettings, SmtpSettings

log = logging.getLogger(__name__)

_BUILTIN_GENERATORS: dict[str, tuple[str, str]] = {
    "http": ("certdesk.delivery.http_generator", "HttpDocumentGenerator"),
}


def _import_class(module_path: str, cls_name: str, label: str) -> type:
    try:
        module = importlib.import_module(module_path)
        return getattr(module, cls_name)
    except (ImportError, AttributeError) as exc:
        msg = f"Failed to load generator '{label}': {exc}"
        raise DeliveryBackendError(msg) from exc


def load_generator(settings: GenerationSettings) -> DocumentGenerator:
    """Instantiate the generator named by ``generation.backend``.

    Raises
    ------
    DeliveryBackendError
        If the name is unknown, the class cannot be imported, or it is
        not a concrete :class:`DocumentGenerator`.

    """
    name = settings.backend
    if name in _BUILTIN_GENERATORS:
        cls = _import_class(*_BUILTIN_GENERATORS[name], name)
    elif name.startswith("ext:"):
        fqn = name[4:]
        module_path, _, cls_name = fqn.rpartition(".")
        if not module_path:
            msg = (
                f"Invalid external generator '{fqn}': must be fully "
                "qualified (e.g. 'mypackage.module.ClassName')"
            )
            raise DeliveryBackendError(msg)
        cls = _import_class(module_path, cls_name, name)
    else:
        msg = (
            f"Unknown generation backend '{name}'; "
            f"built-in options: {sorted(_BUILTIN_GENERATORS)}. "
            "Use 'ext:mypackage.module.ClassName' for custom generators."
        )
        raise DeliveryBackendError(msg)

    if not (isinstance(cls, type) and issubclass(cls, DocumentGenerator)):
        msg = f"Generator '{name}' is not a subclass of DocumentGenerator"
        raise DeliveryBackendError(msg)
    if getattr(cls.generate, "__isabstractmethod__", False):
        msg = f"Generator '{name}' does not implement 'generate()'"
        raise DeliveryBackendError(msg)

    generator = cls(settings)
    log.info("Loaded document generator: %s", name)
    return generator


def load_transport(settings: SmtpSettings) -> MailTransport:
    """SMTP transport when enabled, otherwise the log-only transport."""
    from certdesk.delivery.smtp import LogOnlyMailTransport, SmtpMailTransport  # noqa: PLC0415

    if settings.enabled:
        return SmtpMailTransport(settings)
    log.info("SMTP disabled; notifications will be logged, not sent")
    return LogOnlyMailTransport()
