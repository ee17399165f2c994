"""Retry queue processor.

One :meth:`RetryQueueProcessor.process` call is one scheduled run:

1. return claims abandoned by a crashed run to ``pending``
2. load up to ``batch_size`` due ``pending`` entries, oldest first
3. for each entry: claim it (``pending`` → ``processing``, conditional),
   rebuild the notification from its stored payload against the
   current certificate, and send it again
4. close the entry:

   - sent → ``completed``
   - failed with ``retry_count >= max_retries`` → ``failed``, no successor
   - failed otherwise → ``failed`` plus one ``pending`` successor with
     ``retry_count + 1`` due after :meth:`backoff_delay`

5. evaluate bounce statistics

Each entry is isolated: an exception while handling one is logged and
counted, and the scan moves on.  An entry whose handling died mid-way
stays ``processing`` and is released by step 1 of a later run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from certdesk.notifications.events import from_payload, refresh_recipient

if TYPE_CHECKING:
    from certdesk.config.settings import NotificationSettings, RetryQueueSettings
    from certdesk.models.retry import RetryQueueEntry
    from certdesk.notifications.events import NotificationEvent
    from certdesk.repositories.request import CertificateRequestRepository
    from certdesk.repositories.retry import RetryQueueRepository
    from certdesk.services.bounce_monitor import BounceMonitor
    from certdesk.services.notification import NotificationDispatcher

log = logging.getLogger(__name__)


@dataclass
class RetryRunSummary:
    processed: int = 0
    failed: int = 0
    total: int = 0
    alerts: int = 0

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "failed": self.failed,
            "total": self.total,
            "alerts": self.alerts,
        }


class _Unsendable(Exception):
    """The entry can never be delivered (payload or certificate gone)."""


class RetryQueueProcessor:
    """Re-attempts failed notification deliveries with exponential backoff."""

    def __init__(
        self,
        retry_repo: RetryQueueRepository,
        request_repo: CertificateRequestRepository,
        dispatcher: NotificationDispatcher,
        bounce_monitor: BounceMonitor | None,
        settings: RetryQueueSettings,
        notification_settings: NotificationSettings,
        metrics=None,
    ) -> None:
        self._retries = retry_repo
        self._requests = request_repo
        self._dispatcher = dispatcher
        self._bounce_monitor = bounce_monitor
        self._settings = settings
        self._notification_settings = notification_settings
        self._metrics = metrics

    def backoff_delay(self, retry_count: int) -> timedelta:
        """Delay before the successor of a failed entry with *retry_count*."""
        seconds = self._settings.backoff_base_seconds * (
            self._settings.backoff_multiplier**retry_count
        )
        return timedelta(seconds=seconds)

    def process(self) -> RetryRunSummary:
        summary = RetryRunSummary()

        try:
            released = self._retries.release_stale(self._settings.stale_seconds)
            if released:
                log.warning("Released %d stale retry claim(s)", released)
        except Exception:
            log.exception("Failed to release stale retry claims")

        due = self._retries.find_due(self._settings.batch_size)
        for entry in due:
            claimed = self._retries.claim(entry.id)
            if claimed is None:
                log.debug("Retry entry %s claimed by another worker", entry.id)
                continue

            summary.total += 1
            try:
                delivered = self._attempt(claimed)
            except Exception as exc:
                log.exception("Retry entry %s could not be processed", claimed.id)
                delivered = False
                try:
                    self._close_failed(claimed, f"processing error: {exc}")
                except Exception:
                    log.exception("Retry entry %s left for stale release", claimed.id)

            if delivered:
                summary.processed += 1
            else:
                summary.failed += 1

        if self._bounce_monitor is not None:
            try:
                summary.alerts = len(self._bounce_monitor.evaluate())
            except Exception:
                log.exception("Bounce evaluation after retry run failed")

        if summary.total or summary.alerts:
            log.info(
                "Retry run: %d delivered, %d failed of %d attempted, %d alert(s)",
                summary.processed,
                summary.failed,
                summary.total,
                summary.alerts,
            )
        return summary

    # ------------------------------------------------------------------
    # Per-entry handling
    # ------------------------------------------------------------------

    def _attempt(self, entry: RetryQueueEntry) -> bool:
        try:
            event = self._rebuild(entry)
        except _Unsendable as exc:
            log.warning("Retry entry %s dropped: %s", entry.id, exc)
            self._retries.mark_failed(entry.id, str(exc))
            return False

        result = self._dispatcher.deliver(event, retry_entry_id=entry.id)
        if self._metrics:
            self._metrics.increment(
                "certdesk_retry_attempts_total",
                labels={"outcome": "sent" if result.ok else "failed"},
            )

        if result.ok:
            self._retries.mark_completed(entry.id)
            log.info(
                "Retry %d for %s delivered to %s",
                entry.retry_count,
                entry.certificate_id,
                event.recipient_email,
            )
            return True

        error = result.error or "unknown error"
        if result.permanent and self._notification_settings.skip_retry_on_bounce:
            self._retries.mark_failed(entry.id, f"permanent failure: {error}")
            log.warning("Retry entry %s bounced permanently: %s", entry.id, error)
            return False

        self._close_failed(entry, error)
        return False

    def _rebuild(self, entry: RetryQueueEntry) -> NotificationEvent:
        try:
            event = from_payload(entry.notification_kind, entry.payload)
        except (KeyError, TypeError, ValueError) as exc:
            msg = f"stored notification payload is invalid: {exc}"
            raise _Unsendable(msg) from exc

        if entry.certificate_id is not None:
            request = self._requests.find_by_id(entry.certificate_id)
            if request is None:
                msg = f"certificate {entry.certificate_id} no longer exists"
                raise _Unsendable(msg)
            event = refresh_recipient(event, request)

        if not event.recipient_email:
            msg = "missing recipient email"
            raise _Unsendable(msg)
        return event

    def _close_failed(self, entry: RetryQueueEntry, error: str) -> None:
        """Close a failed attempt: terminal once retries are spent, else supersede."""
        if entry.retry_count >= self._settings.max_retries:
            self._retries.mark_failed(entry.id, error)
            if self._metrics:
                self._metrics.increment("certdesk_retry_exhausted_total")
            log.warning(
                "Retries exhausted for %s (%d attempts): %s",
                entry.certificate_id,
                entry.retry_count + 1,
                error,
                extra={"retry_entry_id": str(entry.id)},
            )
            return

        next_at = datetime.now(UTC) + self.backoff_delay(entry.retry_count)
        successor = self._retries.supersede(entry, error, next_at)
        if successor is None:
            log.warning("Retry entry %s changed before it could be rescheduled", entry.id)
            return
        log.info(
            "Retry %d for %s scheduled at %s",
            successor.retry_count,
            entry.certificate_id,
            successor.next_retry_at.isoformat(),
        )
