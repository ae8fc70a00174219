"""Exception hierarchy for the testem-coverage harness.

Every error raised by the harness derives from :class:`HarnessError` and
carries an optional context mapping that is attached to log records when the
error is reported. Fatal errors (instrumentation, server bind) abort the
startup chain; everything else is logged and absorbed by the orchestrator.
"""

from __future__ import annotations

from collections.abc import Mapping


class HarnessError(Exception):
    """Base exception for all harness errors."""

    def __init__(self, message: str, context: Mapping[str, object] | None = None) -> None:
        """Initialize HarnessError.

        Args:
            message: Error message
            context: Additional context information for debugging
        """
        super().__init__(message)
        self.message: str = message
        self.context: dict[str, object] = dict(context or {})


class ConfigurationError(HarnessError):
    """Raised when configuration loading or validation fails."""


class EnvironmentVariableError(HarnessError):
    """Raised when a ``${VAR}`` reference cannot be resolved."""


class PathResolutionError(HarnessError):
    """Raised when a logical path cannot be resolved to the filesystem."""


class PriorityError(HarnessError):
    """Raised when listener priorities cannot be ordered."""


class EventHandlerError(HarnessError):
    """Raised when a broadcast listener fails."""

    def __init__(
        self,
        message: str,
        *,
        event_name: str,
        listener_name: str,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, {"event": event_name, "listener": listener_name})
        self.event_name: str = event_name
        self.listener_name: str = listener_name
        self.original_error: Exception | None = original_error


class InstrumentationError(HarnessError):
    """Raised when instrumenting a source directory fails."""

    def __init__(self, message: str, *, directory: str, source_path: str | None = None) -> None:
        super().__init__(message, {"directory": directory, "source_path": source_path})
        self.directory: str = directory
        self.source_path: str | None = source_path


class ServerStartError(HarnessError):
    """Raised when the content server cannot bind its listener."""


class ReportError(HarnessError):
    """Raised when coverage report generation fails."""


__all__ = [
    "ConfigurationError",
    "EnvironmentVariableError",
    "EventHandlerError",
    "HarnessError",
    "InstrumentationError",
    "PathResolutionError",
    "PriorityError",
    "ReportError",
    "ServerStartError",
]
