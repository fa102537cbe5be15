from .api_exceptions import (
    APIException,
    NotFoundException,
    ServiceUnavailableException
)

from .pipeline import (
    NotifierException,
    MalformedMessageException,
    DeliveryException,
    DatabaseException,
    LedgerException,
    PublishException,
    TopologyConfigurationException,
    BrokerConnectionException
)

from .handlers import (
    api_exception_handler,
    http_exception_handler,
    database_exception_handler,
    publish_exception_handler,
    general_exception_handler
)

__all__ = [
    # HTTP exceptions
    "APIException",
    "NotFoundException",
    "ServiceUnavailableException",

    # Pipeline exceptions
    "NotifierException",
    "MalformedMessageException",
    "DeliveryException",
    "DatabaseException",
    "LedgerException",
    "PublishException",
    "TopologyConfigurationException",
    "BrokerConnectionException",

    # Handlers
    "api_exception_handler",
    "http_exception_handler",
    "database_exception_handler",
    "publish_exception_handler",
    "general_exception_handler"
]
