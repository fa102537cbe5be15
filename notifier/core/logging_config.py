"""
Process-wide logging setup shared by the worker and the status API.
"""
import logging
import sys
from typing import Optional

DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Client libraries that log every reconnect and rebalance at INFO
NOISY_LOGGERS = ('aiokafka', 'sqlalchemy', 'asyncio')


def setup_logging(
    level: str = "INFO",
    log_format: Optional[str] = None
) -> None:
    """
    Configure the root logger to write to stdout.

    Args:
        level: Logging level name; unknown names fall back to INFO
        log_format: Custom log format string (optional)
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=log_format or DEFAULT_FORMAT,
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
