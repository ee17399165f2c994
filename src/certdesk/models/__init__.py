"""Entity models for the certdesk persistence layer.

Persisted entities are frozen dataclasses.  Use
:func:`dataclasses.replace` for modifications (copy-on-write).
:class:`BulkOperationResult` is the one mutable record: it is a live
progress tally, never persisted.
"""

from certdesk.models.alert import DeliveryAlert
from certdesk.models.bulk import BulkOperationResult
from certdesk.models.delivery import DeliveryOutcome, DomainDeliveryStats
from certdesk.models.profile import Profile
from certdesk.models.request import CertificateRequest
from certdesk.models.retry import RetryQueueEntry

__all__ = [
    "BulkOperationResult",
    "CertificateRequest",
    "DeliveryAlert",
    "DeliveryOutcome",
    "DomainDeliveryStats",
    "Profile",
    "RetryQueueEntry",
]
