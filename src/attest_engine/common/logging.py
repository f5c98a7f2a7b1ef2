"""Structured JSON logging for Attest-Engine.

Records are JSON lines. Context passed through ``extra=`` under one of
CONTEXT_FIELDS is copied into the line; anything else is dropped, so key
material cannot reach the log by accident.
"""

import json
import logging
import sys
from datetime import datetime, timezone

CONTEXT_FIELDS = ("chain_id", "identity_id", "document_hash", "attempt")


class JSONFormatter(logging.Formatter):
    """Format log records as JSON lines."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value
        if record.exc_info and record.exc_info[1]:
            exc = record.exc_info[1]
            code = getattr(exc, "code", None)
            if code:
                entry["error_code"] = code
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Send the attest_engine logger tree to stdout as JSON lines."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())

    logger = logging.getLogger("attest_engine")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.handlers = [handler]
    logger.propagate = False
