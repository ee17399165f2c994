"""Bounce-rate monitor over the delivery outcome log."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from certdesk.core.types import AlertSeverity, AlertType
from certdesk.logging import audit_event

if TYPE_CHECKING:
    from uuid import UUID

    from certdesk.config.settings import BounceMonitorSettings
    from certdesk.models.alert import DeliveryAlert
    from certdesk.models.delivery import DomainDeliveryStats
    from certdesk.repositories.alert import DeliveryAlertRepository
    from certdesk.repositories.delivery import DeliveryOutcomeRepository

log = logging.getLogger(__name__)


class BounceMonitor:
    """Raises one alert per domain whose bounce rate crosses the threshold.

    A domain qualifies when it has strictly more than
    ``min_sample_size`` deliveries in the window and a bounce rate
    strictly above ``threshold_percent``.  Severity is ``critical``
    above ``critical_percent``, ``high`` otherwise.  An unresolved alert
    of the same type and domain inside ``dedup_hours`` suppresses the
    new one entirely.
    """

    def __init__(
        self,
        outcome_repo: DeliveryOutcomeRepository,
        alert_repo: DeliveryAlertRepository,
        settings: BounceMonitorSettings,
        metrics=None,
    ) -> None:
        self._outcomes = outcome_repo
        self._alerts = alert_repo
        self._settings = settings
        self._metrics = metrics

    def update_settings(self, settings: BounceMonitorSettings) -> None:
        """Swap thresholds in place (SIGHUP reload); the next evaluation uses them."""
        self._settings = settings

    def severity_for(self, stats: DomainDeliveryStats) -> AlertSeverity | None:
        """Return the alert severity for *stats*, or ``None`` if below the rule."""
        if stats.total <= self._settings.min_sample_size:
            return None
        rate = stats.bounce_rate
        if rate <= self._settings.threshold_percent:
            return None
        if rate > self._settings.critical_percent:
            return AlertSeverity.CRITICAL
        return AlertSeverity.HIGH

    def evaluate(self, window_hours: int | None = None) -> list[DeliveryAlert]:
        """Scan the trailing window and return the alerts created by this call."""
        if not self._settings.enabled:
            return []
        window = window_hours or self._settings.window_hours
        created: list[DeliveryAlert] = []

        for stats in self._outcomes.stats_by_domain(window):
            severity = self.severity_for(stats)
            if severity is None:
                continue

            existing = self._alerts.find_open_recent(
                AlertType.HIGH_BOUNCE_RATE,
                stats.domain,
                self._settings.dedup_hours,
            )
            if existing is not None:
                log.debug(
                    "Bounce alert for %s suppressed (open alert %s)",
                    stats.domain,
                    existing.id,
                )
                continue

            alert = self._alerts.insert_unless_recent(
                alert_type=AlertType.HIGH_BOUNCE_RATE,
                severity=severity,
                domain=stats.domain,
                bounce_rate=round(stats.bounce_rate, 2),
                sample_size=stats.total,
                message=(
                    f"{stats.bounced} of {stats.total} messages to {stats.domain} "
                    f"bounced in the last {window}h ({stats.bounce_rate:.1f}%)"
                ),
                dedup_hours=self._settings.dedup_hours,
            )
            if alert is None:
                continue

            created.append(alert)
            log.warning(
                "High bounce rate for %s: %.1f%% of %d (%s)",
                alert.domain,
                alert.bounce_rate,
                alert.sample_size,
                alert.severity.value,
                extra={"alert_id": str(alert.id), "domain": alert.domain},
            )
            if self._metrics:
                self._metrics.increment(
                    "certdesk_alerts_total",
                    labels={"severity": alert.severity.value},
                )

        if created:
            log.info("Bounce monitor raised %d alert(s) over %dh", len(created), window)
        return created

    def resolve(self, alert_id: UUID, actor_id: str) -> DeliveryAlert | None:
        """Close an open alert; ``None`` if unknown or already resolved."""
        alert = self._alerts.resolve(alert_id, actor_id)
        if alert is not None:
            audit_event(
                "alert_resolved",
                alert_id=str(alert.id),
                domain=alert.domain,
                actor_id=actor_id,
            )
        return alert

    def list_alerts(
        self,
        *,
        include_resolved: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> list[DeliveryAlert]:
        return self._alerts.list_alerts(
            include_resolved=include_resolved,
            limit=limit,
            offset=offset,
        )
