"""
JSON log records for pipeline events that operators search for: bookkeeping
failures, dead-letter moves and storage health.
"""
import logging
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional


class StructuredLogger:
    """
    Emits one JSON document per record through a standard logger
    """

    def __init__(self, name: str = "notifier", service: str = "notifier-worker"):
        self.service = service
        self.logger = logging.getLogger(name)

    def _create_log_entry(
        self,
        level: str,
        message: str,
        event_id: Optional[str] = None,
        topic: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        exception: Optional[BaseException] = None
    ) -> Dict[str, Any]:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level,
            "service": self.service,
            "message": message,
        }

        if event_id:
            log_entry["event_id"] = event_id

        if topic:
            log_entry["topic"] = topic

        if metadata:
            log_entry["metadata"] = metadata

        if exception is not None:
            log_entry["error"] = {
                "type": type(exception).__name__,
                "message": str(exception),
            }
            # Pipeline exceptions carry their own context
            context = getattr(exception, "metadata", None)
            if context:
                log_entry["error"]["context"] = context

        return log_entry

    def log(self, level: int, message: str, **fields):
        if not self.logger.isEnabledFor(level):
            return
        entry = self._create_log_entry(logging.getLevelName(level), message, **fields)
        self.logger.log(level, json.dumps(entry, default=str))

    def info(self, message: str, **fields):
        self.log(logging.INFO, message, **fields)

    def warning(self, message: str, **fields):
        self.log(logging.WARNING, message, **fields)

    def error(self, message: str, **fields):
        self.log(logging.ERROR, message, **fields)

    def critical(self, message: str, **fields):
        self.log(logging.CRITICAL, message, **fields)


# Create global logger instance
structured_logger = StructuredLogger()
