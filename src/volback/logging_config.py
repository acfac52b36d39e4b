"""Logging configuration for volback.

Every module logs through ``logging.getLogger(__name__)``, so all records
land under the ``volback`` logger configured here. Two output formats are
available:

- JSON lines, one object per record, for log shippers
- Plain text with the active context fields appended, for terminals

``log_context()`` attaches fields such as the container name or backup id
to every record emitted inside a ``with`` block.
"""

import json
import logging
import sys
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, Optional, Union

ROOT_LOGGER_NAME = "volback"

_log_context = threading.local()


def _get_context() -> Dict[str, Any]:
    """Return the context fields active on the current thread."""
    if not hasattr(_log_context, "data"):
        _log_context.data = {}
    data: Dict[str, Any] = _log_context.data
    return data


# Attributes every LogRecord carries; anything else is an extra field
_RESERVED_FIELDS = frozenset(
    {
        "name",
        "msg",
        "args",
        "asctime",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "message",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "thread",
        "threadName",
        "taskName",
        "exc_info",
        "exc_text",
        "stack_info",
    }
)


def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RESERVED_FIELDS and not key.startswith("_")
    }


class JSONFormatter(logging.Formatter):
    """Render log records as single-line JSON objects.

    Output fields: timestamp, level, logger, message, filename, lineno,
    exception (when present) and any extra or context fields.

    Example output:
        {"timestamp": "2024-05-01T03:00:00.120000", "level": "INFO",
         "logger": "volback.upload", "message": "Appending chunk 2/3",
         "filename": "upload.py", "lineno": 120, "container": "nextcloud"}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "filename": record.filename,
            "lineno": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in _extra_fields(record).items():
            try:
                json.dumps(value)
                log_data[key] = value
            except (TypeError, ValueError):
                log_data[key] = str(value)

        return json.dumps(log_data)


class PlainFormatter(logging.Formatter):
    """Human-readable formatter that appends extra fields as ``key=value``."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)-7s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = _extra_fields(record)
        if extras:
            rendered = " ".join(f"{key}={value}" for key, value in sorted(extras.items()))
            line = f"{line} [{rendered}]"
        return line


class ContextFilter(logging.Filter):
    """Inject static and thread-local context fields into each record.

    Args:
        context: Fields added to every record passing through the handler
    """

    def __init__(self, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__()
        self.context = context or {}

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in self.context.items():
            setattr(record, key, value)

        for key, value in _get_context().items():
            setattr(record, key, value)

        return True


@contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    """Add fields to all log records emitted inside the ``with`` block.

    Contexts nest; leaving a block restores the outer fields.

    Example:
        with log_context(container="nextcloud", backup_id="cloud"):
            logger.info("Stopping container")
    """
    context = _get_context()
    old_context = context.copy()

    try:
        context.update(kwargs)
        yield
    finally:
        context.clear()
        context.update(old_context)


def configure_logging(
    level: str = "INFO",
    json_format: bool = False,
    log_file: Optional[str] = None,
) -> logging.Logger:
    """Configure the ``volback`` logger.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Emit JSON lines instead of plain text
        log_file: Optional file to write to in addition to stdout

    Returns:
        The configured ``volback`` logger
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper()))

    for handler in logger.handlers[:]:
        handler.close()
        logger.removeHandler(handler)

    formatter: Union[JSONFormatter, PlainFormatter]
    formatter = JSONFormatter() if json_format else PlainFormatter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(ContextFilter())
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(ContextFilter())
        logger.addHandler(file_handler)

    logger.propagate = False

    return logger