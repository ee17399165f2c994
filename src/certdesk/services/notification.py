"""Notification dispatcher: render, send once, fall back to the retry queue.

Graceful degradation:

- ``notifications.enabled=False`` → complete no-op
- ``smtp.enabled=False`` → the log-only transport records the message
- transport failure → outcome recorded, retry entry created with
  ``retry_count = 0`` and immediate eligibility, error returned

Nothing in this module raises past :meth:`NotificationDispatcher.dispatch`:
a notification problem must never undo the status change that caused it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import UUID

from certdesk.core.types import DeliveryStatus
from certdesk.delivery.base import SendResult
from certdesk.notifications.events import to_payload

if TYPE_CHECKING:
    from certdesk.config.settings import NotificationSettings
    from certdesk.delivery.base import MailTransport
    from certdesk.models.retry import RetryQueueEntry
    from certdesk.notifications.events import NotificationEvent
    from certdesk.notifications.renderer import TemplateRenderer
    from certdesk.repositories.delivery import DeliveryOutcomeRepository
    from certdesk.repositories.retry import RetryQueueRepository

log = logging.getLogger(__name__)

MISSING_RECIPIENT = "missing recipient email"


@dataclass(frozen=True)
class DispatchResult:
    sent: bool
    message_id: str | None = None
    error: str | None = None
    retry_entry: RetryQueueEntry | None = None
    skipped: bool = False


def _as_uuid(value: str | None) -> UUID | None:
    return UUID(value) if value else None


class NotificationDispatcher:
    """Sends status-change notifications and queues failed ones."""

    def __init__(
        self,
        transport: MailTransport,
        renderer: TemplateRenderer,
        retry_repo: RetryQueueRepository,
        outcome_repo: DeliveryOutcomeRepository,
        settings: NotificationSettings,
        metrics=None,
    ) -> None:
        self._transport = transport
        self._renderer = renderer
        self._retries = retry_repo
        self._outcomes = outcome_repo
        self._settings = settings
        self._metrics = metrics

    @property
    def portal_url(self) -> str:
        return self._settings.portal_url

    def dispatch(self, event: NotificationEvent) -> DispatchResult:
        """Deliver *event* once; enqueue a retry if the transport fails."""
        if not self._settings.enabled:
            return DispatchResult(sent=False, skipped=True)

        if not event.recipient_email:
            log.warning(
                "Not sending %s notification for %s: %s",
                event.kind.value,
                event.certificate_id or getattr(event, "batch_id", "?"),
                MISSING_RECIPIENT,
            )
            self._count("skipped")
            return DispatchResult(sent=False, error=MISSING_RECIPIENT)

        result = self.deliver(event)
        if result.ok:
            return DispatchResult(sent=True, message_id=result.id)

        if result.permanent and self._settings.skip_retry_on_bounce:
            log.warning(
                "Permanent bounce for %s, not queued for retry: %s",
                event.recipient_email,
                result.error,
            )
            return DispatchResult(sent=False, error=result.error)

        entry = self._enqueue_retry(event, result.error or "unknown error")
        return DispatchResult(sent=False, error=result.error, retry_entry=entry)

    def deliver(
        self,
        event: NotificationEvent,
        *,
        retry_entry_id: UUID | None = None,
    ) -> SendResult:
        """Render and send *event*, recording the outcome.  Never raises.

        Shared by first dispatch and the retry processor so both feed
        the same delivery log the bounce monitor reads.
        """
        try:
            subject, body = self._renderer.render(event)
        except Exception as exc:
            log.exception("Failed to render %s notification", event.kind.value)
            result = SendResult(error=f"render failed: {exc}")
        else:
            try:
                result = self._transport.send(event.recipient_email, subject, body)
            except Exception as exc:
                log.exception("Mail transport raised for %s", event.recipient_email)
                result = SendResult(error=f"transport error: {exc}")

        if result.ok:
            status = DeliveryStatus.SENT
        elif result.permanent:
            status = DeliveryStatus.BOUNCED
        else:
            status = DeliveryStatus.FAILED
        self._record(event, status, result, retry_entry_id)
        self._count(status.value)
        return result

    def _record(
        self,
        event: NotificationEvent,
        status: DeliveryStatus,
        result: SendResult,
        retry_entry_id: UUID | None,
    ) -> None:
        try:
            self._outcomes.record(
                recipient=event.recipient_email,
                kind=event.kind,
                status=status,
                certificate_id=_as_uuid(event.certificate_id),
                retry_entry_id=retry_entry_id,
                message_id=result.id,
                error=result.error,
            )
        except Exception:
            log.exception("Failed to record delivery outcome for %s", event.recipient_email)

    def _enqueue_retry(self, event: NotificationEvent, error: str) -> RetryQueueEntry | None:
        try:
            entry = self._retries.enqueue(
                certificate_id=_as_uuid(event.certificate_id),
                kind=event.kind,
                recipient=event.recipient_email,
                payload=to_payload(event),
                error_message=error,
                next_retry_at=datetime.now(UTC),
            )
        except Exception:
            log.exception(
                "Failed to enqueue retry for %s notification to %s",
                event.kind.value,
                event.recipient_email,
            )
            return None
        if entry is None:
            log.info(
                "Retry for %s already queued (certificate %s)",
                event.kind.value,
                event.certificate_id,
            )
        else:
            log.info(
                "Queued %s notification to %s for retry: %s",
                event.kind.value,
                event.recipient_email,
                error,
                extra={"retry_entry_id": str(entry.id)},
            )
        return entry

    def _count(self, outcome: str) -> None:
        if self._metrics:
            self._metrics.increment("certdesk_dispatch_total", labels={"outcome": outcome})
