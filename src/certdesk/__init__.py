"""certdesk: certificate request lifecycle service.

Approval state machine, two-phase document generation, notification
delivery with a durable retry queue, bounce-rate monitoring and bulk
operations with partial-failure accounting.
"""

__version__ = "1.0.0"
