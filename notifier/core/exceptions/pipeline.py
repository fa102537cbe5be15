"""
Exception taxonomy of the delivery pipeline.

Per-message errors (malformed, delivery, bookkeeping) never stop the consumer;
process-level errors (topology, connectivity) abort startup.
"""
from typing import Any, Dict, Optional


class NotifierException(Exception):
    """Base class for all pipeline errors"""

    def __init__(self, message: str = "Notification pipeline error", metadata: Optional[Dict[str, Any]] = None):
        self.message = message
        self.metadata = metadata or {}
        super().__init__(message)


class MalformedMessageException(NotifierException):
    """A dequeued message cannot be parsed into an event. Never retried."""

    def __init__(self, message: str = "Malformed message", raw: Optional[bytes] = None):
        self.raw = raw
        super().__init__(message)


class DeliveryException(NotifierException):
    """The external send operation failed. Retried until the budget is exhausted."""

    def __init__(self, message: str = "Notification delivery failed", recipient: Optional[str] = None):
        self.recipient = recipient
        super().__init__(message, metadata={"recipient": recipient} if recipient else None)


class DatabaseException(NotifierException):
    """Storage is unavailable or a storage call failed"""

    def __init__(self, message: str = "Database error occurred", metadata: Optional[Dict[str, Any]] = None):
        super().__init__(message, metadata)


class LedgerException(DatabaseException):
    """Bookkeeping failure on the idempotency ledger. The message must be requeued."""


class PublishException(NotifierException):
    """The broker refused or failed a publish. The message must be requeued."""

    def __init__(self, message: str = "Failed to publish message", topic: Optional[str] = None):
        self.topic = topic
        super().__init__(message, metadata={"topic": topic} if topic else None)


class TopologyConfigurationException(NotifierException):
    """Declared topology is invalid or conflicts with the broker. Fatal at startup."""


class BrokerConnectionException(NotifierException):
    """The broker could not be reached within the startup attempt budget"""
