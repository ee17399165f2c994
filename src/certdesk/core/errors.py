"""Typed errors raised by the request lifecycle engine.

Each error carries a stable machine-readable ``code`` (used as the
suffix of the problem ``type`` URN in HTTP responses) and the HTTP
status the API layer maps it to.
"""

from __future__ import annotations


class TransitionError(Exception):
    """Base class for transition precondition failures.

    A ``TransitionError`` is raised before anything is written, so the
    request is always left untouched.
    """

    code = "transition_error"
    status = 400

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(detail)


class MissingActor(TransitionError):
    code = "missing_actor"
    status = 422


class RequestNotFound(TransitionError):
    code = "request_not_found"
    status = 404


class IllegalTransition(TransitionError):
    code = "illegal_transition"
    status = 409


class MissingReason(TransitionError):
    code = "missing_reason"
    status = 422


class GenerationError(Exception):
    """Raised by document generators for failures they cannot express
    as a :class:`~certdesk.delivery.base.GenerationResult`.

    The coordinator converts it into an ``APPROVAL_FAILED`` write.
    """

    def __init__(self, detail: str, *, retryable: bool = False) -> None:
        self.detail = detail
        self.retryable = retryable
        super().__init__(detail)


class DeliveryBackendError(Exception):
    """Raised when a generator or mail transport cannot be loaded."""
