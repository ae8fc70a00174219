"""Logging infrastructure with run ID tracking.

This module configures logging for the harness: a console handler, an
optional file handler, and a ContextVar-backed run ID that is stamped on every
record so that the interleaved output of startup, request handling and
shutdown can be attributed to one test run.
"""

import contextvars
import logging
import sys
from collections.abc import Mapping
from pathlib import Path
from typing import Final, override

# Run ID context variable; inherited by asyncio tasks created in the same context
run_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "run_id",
    default=None,
)

DEFAULT_LOG_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - [%(run_id)s] - %(message)s"

# Loggers from third-party libraries that are too chatty at INFO
_QUIET_LOGGERS: Final[tuple[str, ...]] = ("aiohttp.access", "asyncio")


class RunIDFilter(logging.Filter):
    """Logging filter that adds the current run ID to log records."""

    @override
    def filter(self, record: logging.LogRecord) -> bool:
        """Add run ID to log record from ContextVar.

        Args:
            record: Log record to enhance with the run ID

        Returns:
            True to allow the record to be logged
        """
        run_id = run_id_var.get()
        record.run_id = run_id if run_id is not None else "-"
        return True


def configure_logging(
    *,
    log_level: str = "INFO",
    log_file: Path | None = None,
    enable_console: bool = True,
) -> None:
    """Configure harness logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file that receives a copy of all records
        enable_console: Enable console output handler

    Example:
        >>> configure_logging(log_level="DEBUG")
        >>> set_run_id("a1b2c3")
        >>> logging.getLogger(__name__).info("Starting run")
    """
    root_logger = logging.getLogger()

    level = getattr(logging, log_level.upper(), logging.INFO)
    root_logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    root_logger.handlers.clear()

    run_id_filter = RunIDFilter()
    formatter = logging.Formatter(DEFAULT_LOG_FORMAT)

    if enable_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        console_handler.addFilter(run_id_filter)
        root_logger.addHandler(console_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        file_handler.addFilter(run_id_filter)
        root_logger.addHandler(file_handler)

    if level > logging.DEBUG:
        for name in _QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def set_run_id(run_id: str) -> None:
    """Set the run ID for the current context.

    Args:
        run_id: Identifier of the current test run (the orchestrator instance ID)
    """
    _ = run_id_var.set(run_id)


def get_run_id() -> str | None:
    """Get the current run ID from context.

    Returns:
        Current run ID or None if not set
    """
    return run_id_var.get()


def clear_run_id() -> None:
    """Clear the run ID from the current context."""
    _ = run_id_var.set(None)


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    *,
    extra: Mapping[str, object] | None = None,
) -> None:
    """Log a message with additional context fields.

    Args:
        logger: Logger instance to use
        level: Logging level (e.g., logging.INFO)
        message: Log message
        extra: Additional context fields to include in log

    Example:
        >>> log_with_context(
        ...     logging.getLogger(__name__),
        ...     logging.WARNING,
        ...     "Error removing directory",
        ...     extra={"cleanup_name": "instrumented", "error": "EBUSY"},
        ... )
    """
    context = dict(extra) if extra else {}

    run_id = get_run_id()
    if run_id:
        context["run_id"] = run_id

    logger.log(level, message, extra=context)
