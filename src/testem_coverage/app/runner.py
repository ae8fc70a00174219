"""Application runner for the testem-coverage harness.

The runner loads configuration, configures logging and drives the
orchestrator for the command-line entry points. ``serve`` runs a whole test
run lifecycle without an external runner: the startup chain, then the content
server stays up until SIGINT/SIGTERM, then the shutdown chain.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from pathlib import Path
from typing import Literal

from testem_coverage.core.config import HarnessConfig, load_config
from testem_coverage.core.orchestrator import LifecycleOrchestrator, build_testem_options
from testem_coverage.exceptions import HarnessError
from testem_coverage.types import Failure, Outcome, ProxyMap
from testem_coverage.utils.logging import configure_logging, set_run_id

__all__ = ["ApplicationRunner"]

logger = logging.getLogger(__name__)


class ApplicationRunner:
    """Coordinate configuration, logging and the orchestrator for one command."""

    def __init__(
        self,
        config_path: Path,
        log_level: str | None = None,
        overrides: dict[str, object] | None = None,
    ) -> None:
        """Initialize the application runner.

        Args:
            config_path: Path to the configuration file
            log_level: Log level overriding the configured one
            overrides: Top-level configuration values applied over the file
        """
        self.config_path: Path = config_path
        self.log_level: str | None = log_level
        self.overrides: dict[str, object] = dict(overrides or {})
        self._config: HarnessConfig | None = None
        self._orchestrator: LifecycleOrchestrator | None = None

    @property
    def config(self) -> HarnessConfig:
        """Loaded configuration; loads and configures logging on first access.

        Raises:
            ConfigurationError: If the configuration is invalid
        """
        if self._config is None:
            config = load_config(self.config_path, overrides=self.overrides)
            if self.log_level is not None:
                config.application.log_level = self.log_level
            configure_logging(
                log_level=config.application.log_level,
                log_file=config.application.log_file,
            )
            set_run_id(config.instance_id)
            logger.debug("Configuration loaded", extra={"config_path": str(self.config_path)})
            self._config = config
        return self._config

    @property
    def orchestrator(self) -> LifecycleOrchestrator:
        """Orchestrator for the loaded configuration."""
        if self._orchestrator is None:
            self._orchestrator = LifecycleOrchestrator(self.config)
        return self._orchestrator

    def proxies(self) -> ProxyMap:
        """Proxy map the runner should be configured with."""
        return self.orchestrator.proxies()

    def options(self) -> dict[str, object]:
        """Runner options without the callback hooks, suitable for JSON output."""
        options = build_testem_options(self.config, self.orchestrator)
        return {key: value for key, value in options.items() if not callable(value)}

    def cleanup(self, stage: Literal["initial", "final"]) -> Outcome:
        """Run one cleanup stage."""
        return asyncio.run(self.orchestrator.run_cleanup(stage))

    def report(self) -> None:
        """Generate coverage reports from the coverage directory.

        Raises:
            ReportError: If report generation fails
        """
        asyncio.run(self.orchestrator.reporter.report())

    def serve(self) -> bool:
        """Run startup, serve until interrupted, then run shutdown.

        Returns:
            True if both chains succeeded
        """
        return asyncio.run(self._serve())

    async def _serve(self) -> bool:
        orchestrator = self.orchestrator
        set_run_id(orchestrator.instance_id)
        stop_requested = asyncio.Event()

        def request_shutdown() -> None:
            if not stop_requested.is_set():
                logger.info("Shutdown signal received, stopping the content server")
                stop_requested.set()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, request_shutdown)

        try:
            startup = await orchestrator.on_runner_ready(lambda: logger.info("Content server ready"))
            if isinstance(startup, Failure):
                request_shutdown()
            else:
                logger.info("Serving on %s, press Ctrl+C to stop", self.config.coverage_url)
            _ = await stop_requested.wait()
            shutdown = await orchestrator.on_runner_exit(lambda: logger.info("Shutdown complete"))
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                _ = loop.remove_signal_handler(sig)

        return startup.ok and shutdown.ok


def describe_error(error: BaseException) -> str:
    """Return a one-line description of an error for console output."""
    if isinstance(error, HarnessError):
        return error.message
    return str(error) or type(error).__name__
