from .ledger import IdempotencyLedger
from .notification import NotificationService
from .processor import Delivery, NotificationEventProcessor, ProcessingOutcome

__all__ = [
    "IdempotencyLedger",
    "NotificationService",
    "Delivery",
    "NotificationEventProcessor",
    "ProcessingOutcome",
]
