"""Structured logging configuration for audit trails."""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from mtm.models import AuditEvent

# Create module-level logger
logger = logging.getLogger("mtm")

# Attributes every LogRecord carries; anything else came in through ``extra``
_RESERVED_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


class StructuredFormatter(logging.Formatter):
    """JSON-like structured log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured output."""
        timestamp = datetime.now(timezone.utc).isoformat()
        entry = f"[{timestamp}] [{record.levelname}] {record.name}: {record.getMessage()}"

        extra_fields: dict[str, Any] = {
            key: value for key, value in record.__dict__.items() if key not in _RESERVED_ATTRS
        }
        if extra_fields:
            entry += f" | {extra_fields}"

        if record.exc_info:
            entry += "\n" + self.formatException(record.exc_info)

        return entry


def setup_logging(
    level: str = "INFO",
    log_file: Path | None = None,
) -> None:
    """Configure application logging.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to log file
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    logger.setLevel(log_level)
    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(StructuredFormatter())
    logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(log_level)
        file_handler.setFormatter(StructuredFormatter())
        logger.addHandler(file_handler)

    logger.debug("Logging configured", extra={"level": level, "log_file": str(log_file)})


def get_logger(name: str) -> logging.Logger:
    """Get a child logger for the specified module.

    Args:
        name: Module name (will be prefixed with 'mtm.')

    Returns:
        Configured logger instance
    """
    return logging.getLogger(f"mtm.{name}")


# Audit logger for registry mutations
audit_logger = get_logger("audit")


def log_audit_event(event: "AuditEvent") -> None:
    """Write a registry mutation to the audit log.

    Args:
        event: The audit event emitted by the manager
    """
    details = event.to_dict()
    audit_logger.info(
        f"{event.event_type} | {details['from_address']} -> {details['to_address']}",
        extra={"event_type": event.event_type, **details},
    )
