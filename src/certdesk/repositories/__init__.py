"""Repository classes for the certdesk persistence layer.

Each repository extends :class:`pypgkit.BaseRepository` with the
conditional (compare-and-swap) updates the lifecycle engine relies on.
"""

from certdesk.repositories.alert import DeliveryAlertRepository
from certdesk.repositories.delivery import DeliveryOutcomeRepository
from certdesk.repositories.profile import ProfileRepository
from certdesk.repositories.request import CertificateRequestRepository
from certdesk.repositories.retry import RetryQueueRepository

__all__ = [
    "CertificateRequestRepository",
    "DeliveryAlertRepository",
    "DeliveryOutcomeRepository",
    "ProfileRepository",
    "RetryQueueRepository",
]
