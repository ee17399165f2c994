"""Abstract collaborator interfaces.

:class:`DocumentGenerator` renders the certificate artifact for an
approved request; :class:`MailTransport` sends one email.  Both report
business failures as *values* (``success=False`` / ``error=...``)
rather than exceptions: a failed render or a refused recipient is
normal traffic for this system.  Implementations may still raise for
truly unexpected conditions; callers guard against that too.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence
    from uuid import UUID


@dataclass(frozen=True)
class GenerationResult:
    success: bool
    artifact_ref: str | None = None
    error_message: str | None = None

    @classmethod
    def ok(cls, artifact_ref: str) -> GenerationResult:
        return cls(success=True, artifact_ref=artifact_ref)

    @classmethod
    def failed(cls, error_message: str) -> GenerationResult:
        return cls(success=False, error_message=error_message)


@dataclass(frozen=True)
class Attachment:
    filename: str
    content: bytes
    content_type: str = "application/pdf"


@dataclass(frozen=True)
class SendResult:
    """Outcome of one transport call.

    Attributes
    ----------
    id:
        Provider message id when the message was accepted.
    error:
        Failure description, ``None`` on success.
    permanent:
        ``True`` when the transport says the recipient will never
        accept the message (a bounce); transient failures are ``False``.

    """

    id: str | None = None
    error: str | None = None
    permanent: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


class DocumentGenerator(abc.ABC):
    """Produces the certificate artifact for an approved request."""

    @abc.abstractmethod
    def generate(self, request_id: UUID, issuer_id: str) -> GenerationResult:
        """Render the certificate for *request_id* on behalf of *issuer_id*.

        May take seconds.  Called once per approval; the coordinator
        bounds the wait with its own timeout.
        """

    def startup_check(self) -> None:
        """Verify configuration at application start (default: no-op)."""


class MailTransport(abc.ABC):
    """Sends a single HTML email."""

    @abc.abstractmethod
    def send(
        self,
        to: str,
        subject: str,
        html_body: str,
        attachments: Sequence[Attachment] | None = None,
    ) -> SendResult:
        """Deliver one message; never raises for delivery failures."""
