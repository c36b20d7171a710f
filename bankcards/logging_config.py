"""
Structured logging configuration.

Service modules log through `logging.getLogger(__name__)` or, for the
transfer path and the expiry sweep, through `get_logger`, which files a
short name under the package namespace ("transfers" -> "bankcards.transfers").
This module only decides how those records are rendered. `setup_logging`
installs a single JSON-lines handler on the package logger, so card and
transfer events can be shipped to a log pipeline without parsing free text.

Never pass a PAN, CVV or ciphertext to a logger. Card ids, masked numbers
and transaction ids are the only card identifiers that belong in a log line.
"""

import json
import logging
from datetime import datetime, timezone

PACKAGE_LOGGER = "bankcards"

# Attributes set on every LogRecord by the logging module itself
_RESERVED_ATTRS = frozenset(vars(logging.makeLogRecord({})).keys()) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """Render a record as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Anything passed through `extra=` lands on the record as an attribute
        for key, value in vars(record).items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                log_entry[key] = value

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(level: str = "INFO", logger_name: str = PACKAGE_LOGGER) -> logging.Logger:
    """
    Configure structured JSON logging for the package.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        logger_name: Logger to configure; defaults to the package root.

    Returns:
        The configured logger.
    """
    logger = logging.getLogger(logger_name)

    # Remove existing handlers so repeated setup doesn't duplicate lines
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper()))
    logger.propagate = False

    return logger


def get_logger(name: str = PACKAGE_LOGGER) -> logging.Logger:
    """Get a logger under the package namespace."""
    if name != PACKAGE_LOGGER and not name.startswith(PACKAGE_LOGGER + "."):
        name = f"{PACKAGE_LOGGER}.{name}"
    return logging.getLogger(name)
