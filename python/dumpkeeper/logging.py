"""
Structured logging for dumpkeeper.

Every event carries an ISO8601 timestamp so that a failed cycle can be
located in the log stream of a long-running daemon.
Features:
- Console output, plain text or JSON
- Optional rolling JSONL file for log shippers
- Structured context binding (each backup cycle binds a cycle_id)
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from structlog.types import Processor

    from dumpkeeper.config import LoggingConfig

DEFAULT_LOG_FILE = "dumpkeeper.jsonl"
DEFAULT_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
DEFAULT_BACKUP_COUNT = 5


class JSONLRotatingHandler(RotatingFileHandler):
    """
    Rotating file handler that writes JSONL format.

    Each log entry is a single JSON object on its own line.
    """

    def __init__(
        self,
        filename: str | Path,
        max_bytes: int = DEFAULT_MAX_BYTES,
        backup_count: int = DEFAULT_BACKUP_COUNT,
        encoding: str = "utf-8",
    ):
        path = Path(filename)
        path.parent.mkdir(parents=True, exist_ok=True)

        super().__init__(
            filename=str(path),
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding=encoding,
        )


def _add_service_info(
    _logger: logging.Logger, _method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Add service metadata to each file log entry."""
    event_dict["service"] = "dumpkeeper"
    event_dict["hostname"] = os.environ.get("HOSTNAME", "unknown")
    event_dict["pid"] = os.getpid()
    return event_dict


def _add_timestamp_utc(
    _logger: logging.Logger, _method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Add ISO8601 UTC timestamp."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def _format_exception(
    _logger: logging.Logger, _method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Format exceptions as structured data instead of multiline strings."""
    if "exception" in event_dict:
        exc_info = event_dict.pop("exception")
        if exc_info:
            event_dict["exception"] = {
                "type": type(exc_info).__name__,
                "message": str(exc_info),
            }
    return event_dict


def setup_logging(
    config: LoggingConfig | None = None,
    level: str | None = None,
    format: str | None = None,
    log_file: str | None = None,
    max_bytes: int | None = None,
    backup_count: int | None = None,
    enable_console: bool = True,
) -> None:
    """
    Configure structured logging for the application.

    Explicit arguments win over values from ``config``.

    Args:
        config: Logging section of the application config.
        level: Log level (DEBUG, INFO, WARNING, ERROR).
        format: Console format (json, plain).
        log_file: Full path of an optional JSONL file. None disables file output.
        max_bytes: Maximum size per log file before rotation. Default 10MB.
        backup_count: Number of rotated files to keep. Default 5.
        enable_console: Whether to log to stdout. Default True.
    """
    level = level or (config.level if config else "INFO")
    format = format or (config.format if config else "plain")
    if log_file is None and config is not None:
        log_file = config.file
    max_bytes = max_bytes or DEFAULT_MAX_BYTES
    backup_count = backup_count or DEFAULT_BACKUP_COUNT

    log_level = getattr(logging, level.upper(), logging.INFO)

    # Local time, matching the "[%Y-%m-%d %H:%M:%S]" prefix operators grep for
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S", utc=False),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        _format_exception,
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handlers: list[logging.Handler] = []

    if log_file:
        jsonl_formatter = structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _add_timestamp_utc,
                _add_service_info,
                structlog.processors.JSONRenderer(),
            ],
        )

        file_handler = JSONLRotatingHandler(
            filename=log_file,
            max_bytes=max_bytes,
            backup_count=backup_count,
        )
        file_handler.setFormatter(jsonl_formatter)
        file_handler.setLevel(log_level)
        handlers.append(file_handler)

    if enable_console:
        if format.lower() == "json":
            console_renderer: Processor = structlog.processors.JSONRenderer()
        else:
            console_renderer = structlog.dev.ConsoleRenderer(
                colors=False,
                exception_formatter=structlog.dev.plain_traceback,
            )

        console_formatter = structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                console_renderer,
            ],
        )

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(console_formatter)
        console_handler.setLevel(log_level)
        handlers.append(console_handler)

    root_logger = logging.getLogger()
    root_logger.handlers = handlers
    root_logger.setLevel(log_level)

    # Reduce noise from third-party libraries
    for lib in ["urllib3", "httpx", "httpcore"]:
        logging.getLogger(lib).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> Any:
    """
    Get a structured logger instance.

    Example:
        logger = get_logger(__name__)
        logger.info("backup_completed", path="/mysql_backups/x.zip")
        logger.error("cycle_failed", error_code="DUMPKEEPER_3001")
    """
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind context variables to all subsequent log messages in this context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Clear all bound context variables."""
    structlog.contextvars.clear_contextvars()


@contextmanager
def with_context(**kwargs: Any) -> Iterator[None]:
    """
    Context manager for temporary context binding.

    Example:
        with with_context(cycle_id="20240101_030000"):
            logger.info("cycle_started")
    """
    with structlog.contextvars.bound_contextvars(**kwargs):
        yield
