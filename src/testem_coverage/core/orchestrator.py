"""Lifecycle orchestrator coordinating the runner, content server and coverage tooling.

The orchestrator owns one test run. It exposes the two hooks the browser test
runner calls, ``on_start`` and ``on_exit``, and drives a chain of steps for
each:

Startup (``onRunnerStart``):

- ``cleanup`` (first): remove leftovers from the previous run
- ``instrument`` (after cleanup, instrumenting modes only)
- ``constructFixtures``: create and start the content server
- ``waitForFixtures``: wait for the server to announce that it is listening

Shutdown (``onRunnerExit``):

- ``stopServer`` (first): stop the content server if it is running
- ``waitForFixtures``: wait for the server to announce that it stopped
- ``coverageReport`` (full mode only): render coverage reports
- ``cleanup`` (last): remove the run's scratch directories

Whatever happens along the way, the runner's callback is invoked exactly
once per hook call. Step failures end the chain early and are logged;
cleanup failures and wait timeouts are logged and tolerated.
"""

from __future__ import annotations

import asyncio
import copy
import inspect
import logging
import os
from collections.abc import Coroutine
from typing import Literal, Protocol

from testem_coverage.core.cleanup import CleanupSequencer
from testem_coverage.core.config import HarnessConfig
from testem_coverage.core.events import GatedEvent, LifecycleEvent, SecondaryEventWait
from testem_coverage.core.instrumenter import CommandInstrumenter, instrument_source
from testem_coverage.core.proxies import (
    construct_proxies,
    expand_directories,
    expand_instrumented_source_dirs,
    order_directories,
)
from testem_coverage.core.receiver import CoverageReceiver
from testem_coverage.core.reporter import CommandReporter
from testem_coverage.core.server import ContentServer
from testem_coverage.types import (
    ExpandedDirectory,
    Failure,
    Instrumenter,
    Outcome,
    ProxyMap,
    Reporter,
    RunnerCallback,
)
from testem_coverage.utils.logging import clear_run_id, get_run_id, set_run_id

__all__ = ["LifecycleOrchestrator", "build_testem_options"]

logger = logging.getLogger(__name__)

type CleanupStage = Literal["initial", "final"]


class ServerFactory(Protocol):
    """Callable protocol for building the content server of a run.

    Example:
        def factory(orchestrator: LifecycleOrchestrator) -> ContentServer:
            return ContentServer(host="127.0.0.1", port=0, directories=[])
    """

    def __call__(self, orchestrator: LifecycleOrchestrator) -> ContentServer: ...


def _default_server_factory(orchestrator: LifecycleOrchestrator) -> ContentServer:
    config = orchestrator.config
    receiver: CoverageReceiver | None = None
    if config.collects_coverage:
        assert config.coverage_dir is not None  # Filled in by HarnessConfig validation
        receiver = CoverageReceiver(config.coverage_dir, instance_id=config.instance_id)

    return ContentServer(
        host=config.coverage_host,
        port=config.coverage_port,
        directories=orchestrator.hosted_directories(),
        receiver=receiver,
        receiver_path=config.receiver_path,
        started=orchestrator.server_started,
        stopped=orchestrator.server_stopped,
        client_max_size=config.max_upload_size,
    )


class LifecycleOrchestrator:
    """Drive the startup and shutdown chains of one test run."""

    def __init__(
        self,
        config: HarnessConfig,
        *,
        instrumenter: Instrumenter | None = None,
        reporter: Reporter | None = None,
        cleanup_sequencer: CleanupSequencer | None = None,
        server_factory: ServerFactory = _default_server_factory,
    ) -> None:
        """Initialize orchestrator and register the default chain steps.

        Args:
            config: Validated harness configuration
            instrumenter: Instrumenter for source directories (defaults to the configured command)
            reporter: Coverage reporter (defaults to the configured command)
            cleanup_sequencer: Cleanup sequencer (defaults to removing directories from disk)
            server_factory: Builds the content server when fixtures are constructed
        """
        assert config.temp_root is not None  # Filled in by HarnessConfig validation
        assert config.coverage_dir is not None
        assert config.reports_dir is not None

        self.config: HarnessConfig = config
        self.instrumenter: Instrumenter = instrumenter or CommandInstrumenter(
            config.instrumentation.command,
            cwd=config.cwd,
        )
        self.reporter: Reporter = reporter or CommandReporter(
            coverage_dir=config.coverage_dir,
            reports_dir=config.reports_dir,
            reports=config.reports,
            command=config.report_command,
            cwd=config.cwd,
        )
        self.cleanup_sequencer: CleanupSequencer = cleanup_sequencer or CleanupSequencer(
            temp_root=config.temp_root,
            testem_temp_pattern=config.testem_temp_pattern,
            cwd=config.cwd,
        )
        self.server_factory: ServerFactory = server_factory
        self.server: ContentServer | None = None

        self.on_runner_start: LifecycleEvent = LifecycleEvent("onRunnerStart")
        self.on_runner_exit: LifecycleEvent = LifecycleEvent("onRunnerExit")
        self.construct_fixtures: LifecycleEvent = LifecycleEvent("constructFixtures")
        self.stop_fixtures: LifecycleEvent = LifecycleEvent("stopFixtures")
        self.server_started: LifecycleEvent = LifecycleEvent("onServerStarted")
        self.server_stopped: LifecycleEvent = LifecycleEvent("onServerStopped")
        self.on_fixtures_constructed: GatedEvent = GatedEvent("onFixturesConstructed", [self.server_started])
        self.on_fixtures_stopped: GatedEvent = GatedEvent("onFixturesStopped", [self.server_stopped])

        self._startup_wait: SecondaryEventWait | None = None
        self._shutdown_wait: SecondaryEventWait | None = None
        self._tasks: set[asyncio.Task[Outcome]] = set()
        self._startup_task: asyncio.Task[Outcome] | None = None

        self._register_default_steps()

    @property
    def instance_id(self) -> str:
        """Unique ID of this run."""
        return self.config.instance_id

    @property
    def pending_tasks(self) -> frozenset[asyncio.Task[Outcome]]:
        """Hook invocations scheduled by the runner callbacks that have not finished."""
        return frozenset(self._tasks)

    def _register_default_steps(self) -> None:
        config = self.config

        self.on_runner_start.add_listener("cleanup", self._initial_cleanup, priority="first")
        if config.instruments_source:
            self.on_runner_start.add_listener("instrument", self._instrument, priority="after:cleanup")
            construct_priority = "after:instrument"
        else:
            construct_priority = "after:cleanup"
        self.on_runner_start.add_listener("constructFixtures", self._construct_fixtures, priority=construct_priority)
        self.on_runner_start.add_listener(
            "waitForFixtures",
            self._wait_for_fixtures_constructed,
            priority="after:constructFixtures",
        )

        self.on_runner_exit.add_listener("stopServer", self._stop_server, priority="first")
        self.on_runner_exit.add_listener(
            "waitForFixtures",
            self._wait_for_fixtures_stopped,
            priority="after:stopServer",
        )
        if config.generates_reports:
            self.on_runner_exit.add_listener("coverageReport", self._report, priority="after:waitForFixtures")
        self.on_runner_exit.add_listener("cleanup", self._final_cleanup, priority="last")

        self.construct_fixtures.add_listener("startServer", self._start_server)
        self.stop_fixtures.add_listener("stopServer", self._stop_running_server)

    # Directory layout

    def hosted_directories(self) -> list[ExpandedDirectory]:
        """Directories hosted by the content server, in routing order.

        Source directories come first (their instrumented copies in coverage
        modes), then content directories; each group is ordered by priority.
        """
        config = self.config
        source_dirs = config.source_dirs
        if config.collects_coverage:
            assert config.instrumented_source_dir is not None  # Filled in by HarnessConfig validation
            source_dirs = expand_instrumented_source_dirs(source_dirs, config.instrumented_source_dir, cwd=config.cwd)

        return [
            *order_directories(expand_directories(source_dirs, cwd=config.cwd)),
            *order_directories(expand_directories(config.content_dirs, cwd=config.cwd)),
        ]

    def proxies(self) -> ProxyMap:
        """Proxy configuration for the runner."""
        config = self.config
        source_dirs = config.source_dirs
        if config.collects_coverage:
            assert config.instrumented_source_dir is not None  # Filled in by HarnessConfig validation
            source_dirs = expand_instrumented_source_dirs(source_dirs, config.instrumented_source_dir, cwd=config.cwd)
        return construct_proxies(
            source_dirs,
            config.content_dirs,
            config.effective_additional_proxies,
            config.coverage_url,
            cwd=config.cwd,
        )

    # Runner hooks

    async def on_runner_ready(self, callback: RunnerCallback) -> Outcome:
        """Run the startup chain, then invoke ``callback`` exactly once.

        Args:
            callback: The runner's "ready" callback

        Returns:
            Outcome of the startup chain
        """
        return await self._run_chain(self.on_runner_start, callback, phase="startup")

    async def on_runner_exit(self, callback: RunnerCallback) -> Outcome:
        """Run the shutdown chain, then invoke ``callback`` exactly once.

        Args:
            callback: The runner's "done" callback

        Returns:
            Outcome of the shutdown chain
        """
        return await self._run_chain(self.on_runner_exit, callback, phase="shutdown")

    def handle_runner_start(self, config: object, data: object, callback: RunnerCallback) -> None:
        """Runner-shaped ``on_start`` hook.

        Schedules :meth:`on_runner_ready` on the running event loop; the
        callback is invoked asynchronously once the chain settles.
        """
        _ = (config, data)
        self._startup_task = self._schedule(self.on_runner_ready(callback))

    def handle_runner_exit(self, config: object, data: object, callback: RunnerCallback) -> None:
        """Runner-shaped ``on_exit`` hook.

        Schedules :meth:`on_runner_exit` on the running event loop; the
        callback is invoked asynchronously once the chain settles.
        A startup chain still in flight is allowed to settle first, so the
        server is never stopped while it is being constructed.
        """
        _ = (config, data)
        _ = self._schedule(self._exit_after_startup(callback))

    async def wait_for_pending(self) -> list[Outcome]:
        """Wait for every scheduled hook invocation to finish."""
        return list(await asyncio.gather(*self._tasks))

    def _schedule(self, coro: Coroutine[object, object, Outcome]) -> asyncio.Task[Outcome]:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _exit_after_startup(self, callback: RunnerCallback) -> Outcome:
        startup = self._startup_task
        if startup is not None and not startup.done():
            logger.debug("Startup still running, waiting for it before shutdown")
            _ = await asyncio.wait([startup])
        return await self.on_runner_exit(callback)

    async def _run_chain(self, event: LifecycleEvent, callback: RunnerCallback, *, phase: str) -> Outcome:
        outer_run_id = get_run_id()
        set_run_id(self.instance_id)
        try:
            outcome = await event.fire_chain()
            if isinstance(outcome, Failure):
                logger.error(
                    "Error during %s: %s",
                    phase,
                    outcome.describe(),
                    exc_info=outcome.error,
                    extra={"phase": phase, "step": outcome.step},
                )
            else:
                logger.info("Finished %s", phase, extra={"phase": phase})
            return outcome
        finally:
            self._disarm_wait(phase)
            await self._invoke_callback(callback, phase)
            if outer_run_id is None:
                clear_run_id()
            else:
                set_run_id(outer_run_id)

    async def _invoke_callback(self, callback: RunnerCallback, phase: str) -> None:
        try:
            result = callback()
            if inspect.isawaitable(result):
                _ = await result
        except Exception:
            logger.exception("Runner callback raised during %s", phase, extra={"phase": phase})

    def _disarm_wait(self, phase: str) -> None:
        if phase == "startup":
            wait, self._startup_wait = self._startup_wait, None
        else:
            wait, self._shutdown_wait = self._shutdown_wait, None
        if wait is not None:
            wait.cancel()

    # Startup steps

    async def _initial_cleanup(self) -> Outcome:
        return await self.run_cleanup("initial")

    async def _instrument(self) -> None:
        await instrument_source(self.config, self.instrumenter)

    async def _construct_fixtures(self) -> None:
        self.on_fixtures_constructed.reset()
        self._startup_wait = SecondaryEventWait(
            self.on_fixtures_constructed,
            timeout_ms=self.config.wrapped_event_timeout,
            owner=self.instance_id,
        )
        outcome = await self.construct_fixtures.fire_chain()
        if isinstance(outcome, Failure):
            raise outcome.error

    async def _start_server(self) -> None:
        if self.server is not None and self.server.is_running:
            logger.debug("Content server already running")
            return
        self.server = self.server_factory(self)
        await self.server.start()

    async def _wait_for_fixtures_constructed(self) -> tuple[object, ...] | None:
        wait = self._startup_wait or SecondaryEventWait(
            self.on_fixtures_constructed,
            timeout_ms=self.config.wrapped_event_timeout,
            owner=self.instance_id,
        )
        self._startup_wait = None
        return await wait

    # Shutdown steps

    async def _stop_server(self) -> None:
        self.on_fixtures_stopped.reset()
        self._shutdown_wait = SecondaryEventWait(
            self.on_fixtures_stopped,
            timeout_ms=self.config.wrapped_event_timeout,
            owner=self.instance_id,
        )
        outcome = await self.stop_fixtures.fire_chain()
        if isinstance(outcome, Failure):
            raise outcome.error

    async def _stop_running_server(self) -> None:
        if self.server is None or not self.server.is_running:
            logger.debug("No running content server to stop")
            return
        logger.info("Stopping content server...")
        await self.server.stop()

    async def _wait_for_fixtures_stopped(self) -> tuple[object, ...] | None:
        wait = self._shutdown_wait or SecondaryEventWait(
            self.on_fixtures_stopped,
            timeout_ms=self.config.wrapped_event_timeout,
            owner=self.instance_id,
        )
        self._shutdown_wait = None
        return await wait

    async def _report(self) -> None:
        await self.reporter.report()

    async def _final_cleanup(self) -> Outcome:
        return await self.run_cleanup("final")

    async def run_cleanup(self, stage: CleanupStage) -> Outcome:
        """Run one cleanup stage; the outcome is logged, never raised."""
        return await self.cleanup_sequencer.run(stage, self.config.cleanup_definitions(stage))


def _construct_browser_args(config: HarnessConfig) -> dict[str, list[str]]:
    if os.environ.get("HEADLESS") and config.headless_browser_args:
        return config.headless_browser_args
    return config.browser_args


def build_testem_options(config: HarnessConfig, orchestrator: LifecycleOrchestrator) -> dict[str, object]:
    """Build the options handed to the browser test runner.

    Args:
        config: Harness configuration
        orchestrator: Orchestrator whose hooks become ``on_start``/``on_exit``

    Returns:
        A fresh options dict; ``testem_options`` overrides are applied last
    """
    assert config.reports_dir is not None  # Filled in by HarnessConfig validation
    assert config.testem_dir is not None

    options: dict[str, object] = {
        "framework": "qunit",
        "browser_disconnect_timeout": 300,
        "browser_start_timeout": 300,
        "timeout": 300,
        "tap_quiet_logs": True,
        "report_file": str(config.reports_dir / "report.tap"),
        "cwd": str(config.cwd),
        "user_data_dir": str(config.testem_dir),
        "src_files": [],
        "serve_files": [],
        "test_page": list(config.test_pages),
        "proxies": orchestrator.proxies(),
        "browser_args": copy.deepcopy(_construct_browser_args(config)),
        "on_start": orchestrator.handle_runner_start,
        "on_exit": orchestrator.handle_runner_exit,
    }
    options.update(copy.deepcopy(config.testem_options))
    return options
