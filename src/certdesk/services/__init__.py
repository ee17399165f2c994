"""Certificate lifecycle services."""

from certdesk.services.bounce_monitor import BounceMonitor
from certdesk.services.bulk import BulkOperationRunner, BulkOperationService
from certdesk.services.generation import GenerationCoordinator
from certdesk.services.notification import DispatchResult, NotificationDispatcher
from certdesk.services.retry_queue import RetryQueueProcessor, RetryRunSummary
from certdesk.services.transitions import TransitionService
from certdesk.services.workers import PeriodicWorker

__all__ = [
    "BounceMonitor",
    "BulkOperationRunner",
    "BulkOperationService",
    "DispatchResult",
    "GenerationCoordinator",
    "NotificationDispatcher",
    "PeriodicWorker",
    "RetryQueueProcessor",
    "RetryRunSummary",
    "TransitionService",
]
