"""Dependency injection container for certdesk.

Created once during application startup (or by a CLI command) and
stored on the Flask app via ``app.extensions["container"]``.
Accessible from any request context with :func:`get_container`.

Usage::

    from certdesk.app.context import get_container

    c = get_container()
    request = c.transition_service.transition(request_id, "APPROVED", "adm1")
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from flask import current_app

if TYPE_CHECKING:
    from pypgkit import Database

    from certdesk.config.settings import CertdeskSettings
    from certdesk.delivery.base import DocumentGenerator, MailTransport
    from certdesk.metrics.collector import MetricsCollector
    from certdesk.repositories import (
        CertificateRequestRepository,
        DeliveryAlertRepository,
        DeliveryOutcomeRepository,
        ProfileRepository,
        RetryQueueRepository,
    )
    from certdesk.services import (
        BounceMonitor,
        BulkOperationRunner,
        BulkOperationService,
        GenerationCoordinator,
        NotificationDispatcher,
        PeriodicWorker,
        RetryQueueProcessor,
        TransitionService,
    )

log = logging.getLogger(__name__)


class Container:
    """Application-wide dependency container.

    Every repository shares the :class:`Database` singleton's pool.
    Services receive their settings section explicitly.  The periodic
    workers are built here but only started by :meth:`start_workers`.
    """

    def __init__(
        self,
        db: Database,
        settings: CertdeskSettings,
        *,
        generator: DocumentGenerator | None = None,
        transport: MailTransport | None = None,
    ) -> None:
        from certdesk.delivery.registry import load_generator, load_transport  # noqa: PLC0415
        from certdesk.notifications.renderer import TemplateRenderer  # noqa: PLC0415
        from certdesk.repositories import (  # noqa: PLC0415
            CertificateRequestRepository as _CRR,  # noqa: N814
        )
        from certdesk.repositories import (  # noqa: PLC0415
            DeliveryAlertRepository as _DAR,  # noqa: N814
        )
        from certdesk.repositories import (  # noqa: PLC0415
            DeliveryOutcomeRepository as _DOR,  # noqa: N814
        )
        from certdesk.repositories import (  # noqa: PLC0415
            ProfileRepository as _PR,  # noqa: N814
        )
        from certdesk.repositories import (  # noqa: PLC0415
            RetryQueueRepository as _RQR,  # noqa: N814
        )
        from certdesk.services import (  # noqa: PLC0415
            BounceMonitor,
            BulkOperationRunner,
            BulkOperationService,
            GenerationCoordinator,
            NotificationDispatcher,
            RetryQueueProcessor,
            TransitionService,
        )

        self.db: Database = db
        self.settings: CertdeskSettings = settings

        # Metrics collector (optional)
        self.metrics: MetricsCollector | None = None
        if settings.metrics.enabled:
            from certdesk.metrics.collector import MetricsCollector as _MC  # noqa: N814, PLC0415

            self.metrics = _MC()

        # Repositories
        self.requests: CertificateRequestRepository = _CRR(db)
        self.retries: RetryQueueRepository = _RQR(db)
        self.outcomes: DeliveryOutcomeRepository = _DOR(db)
        self.alerts: DeliveryAlertRepository = _DAR(db)
        self.profiles: ProfileRepository = _PR(db)

        # Collaborators
        self.generator: DocumentGenerator = generator or load_generator(settings.generation)
        self.transport: MailTransport = transport or load_transport(settings.smtp)
        renderer = TemplateRenderer(settings.smtp.templates_path)

        # Services
        self.dispatcher: NotificationDispatcher = NotificationDispatcher(
            self.transport,
            renderer,
            self.retries,
            self.outcomes,
            settings.notifications,
            metrics=self.metrics,
        )
        self.generation: GenerationCoordinator = GenerationCoordinator(
            self.requests,
            self.generator,
            self.dispatcher,
            settings.generation,
            metrics=self.metrics,
        )
        self.transition_service: TransitionService = TransitionService(
            self.requests,
            self.dispatcher,
            on_processing=self.generation.schedule,
            metrics=self.metrics,
        )
        self.bounce_monitor: BounceMonitor = BounceMonitor(
            self.outcomes,
            self.alerts,
            settings.bounce_monitor,
            metrics=self.metrics,
        )
        self.retry_processor: RetryQueueProcessor = RetryQueueProcessor(
            self.retries,
            self.requests,
            self.dispatcher,
            self.bounce_monitor,
            settings.retry_queue,
            settings.notifications,
            metrics=self.metrics,
        )
        self.bulk_runner: BulkOperationRunner = BulkOperationRunner(
            settings.bulk,
            metrics=self.metrics,
        )
        self.bulk_service: BulkOperationService = BulkOperationService(
            self.bulk_runner,
            self.transition_service,
            self.requests,
            self.profiles,
            self.dispatcher,
        )

        self.workers: list[PeriodicWorker] = self._build_workers()

    def _build_workers(self) -> list[PeriodicWorker]:
        from certdesk.services import PeriodicWorker  # noqa: PLC0415

        s = self.settings
        workers = []
        if s.retry_queue.worker.enabled:
            workers.append(
                PeriodicWorker(
                    "retry-queue",
                    self.retry_processor.process,
                    s.retry_queue.worker.interval_seconds,
                    db=self.db,
                    metrics=self.metrics,
                )
            )
        if s.bounce_monitor.enabled and s.bounce_monitor.worker.enabled:
            workers.append(
                PeriodicWorker(
                    "bounce-monitor",
                    self.bounce_monitor.evaluate,
                    s.bounce_monitor.worker.interval_seconds,
                    db=self.db,
                    metrics=self.metrics,
                )
            )
        if s.generation.worker.enabled:
            workers.append(
                PeriodicWorker(
                    "generation-sweep",
                    self.generation.recover_stale,
                    s.generation.worker.interval_seconds,
                    db=self.db,
                    metrics=self.metrics,
                )
            )
        return workers

    def start_workers(self) -> None:
        for worker in self.workers:
            worker.start()

    def shutdown(self) -> None:
        """Stop workers and drain scheduled generation jobs."""
        for worker in self.workers:
            worker.stop()
        self.generation.shutdown(wait=True)
        log.info("Container shut down")


def get_container() -> Container:
    """Return the :class:`Container` from the current Flask app.

    Raises :class:`RuntimeError` if ``create_app`` was called without
    a database.
    """
    container = current_app.extensions.get("container")
    if container is None:
        msg = (
            "Dependency container not available -- "
            "was the database initialised before "
            "create_app()?"
        )
        raise RuntimeError(msg)
    return container
