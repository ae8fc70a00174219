"""Integration tests for a complete test run lifecycle.

A run is driven the way the browser test runner drives it: through the
``on_start``/``on_exit`` hooks in the generated runner options. Browser uploads
are simulated with an aiohttp client posting to the hosted receiver.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path

import aiohttp
import pytest

from testem_coverage.core.config import HarnessConfig
from testem_coverage.core.instrumenter import CopyInstrumenter
from testem_coverage.core.orchestrator import LifecycleOrchestrator, build_testem_options

type ConfigFactory = Callable[..., HarnessConfig]

FIREFOX_UA = "Mozilla/5.0 (X11; Linux x86_64; rv:128.0) Gecko/20100101 Firefox/128.0"


class SnapshotReporter:
    """Reporter that records which coverage files existed when it ran."""

    def __init__(self, coverage_dir: Path) -> None:
        self.coverage_dir: Path = coverage_dir
        self.seen: list[str] = []

    async def report(self) -> None:
        self.seen = sorted(path.name for path in self.coverage_dir.iterdir())


@pytest.mark.integration
class TestFullLifecycle:
    """Drive startup, uploads and shutdown through the runner hooks."""

    @pytest.mark.asyncio
    async def test_full_mode_run(self, make_config: ConfigFactory, tmp_path: Path) -> None:
        stray = tmp_path / "scratch" / "Temp-leftover"
        stray.mkdir(parents=True)
        config = make_config(mode="full")
        assert config.coverage_dir is not None
        assert config.instrumented_source_dir is not None
        reporter = SnapshotReporter(config.coverage_dir)
        orchestrator = LifecycleOrchestrator(config, instrumenter=CopyInstrumenter(), reporter=reporter)
        options = build_testem_options(config, orchestrator)
        on_start = options["on_start"]
        on_exit = options["on_exit"]
        assert callable(on_start)
        assert callable(on_exit)
        events: list[str] = []

        on_start(options, {}, lambda: events.append("ready"))
        startup = await orchestrator.wait_for_pending()

        assert [outcome.ok for outcome in startup] == [True]
        assert events == ["ready"]
        assert not stray.exists()

        proxies = options["proxies"]
        assert isinstance(proxies, dict)
        assert list(proxies) == ["/src", "/tests", "/coverage"]

        async with aiohttp.ClientSession() as session:
            async with session.get(f"{config.coverage_url}/src/app.js") as response:
                assert response.status == 200

            for page in ("one.html", "two.html"):
                upload = {
                    "navigator": {"userAgent": FIREFOX_UA},
                    "document": {"URL": f"{config.coverage_url}/tests/web/{page}"},
                    "coverage": {"/src/app.js": {"s": {"0": 1}}},
                }
                async with session.post(
                    f"{config.coverage_url}/coverage",
                    data={"payload": json.dumps(upload)},
                ) as response:
                    assert response.status == 200

        on_exit(options, {}, lambda: events.append("done"))
        shutdown = await orchestrator.wait_for_pending()

        assert [outcome.ok for outcome in shutdown] == [True]
        assert events == ["ready", "done"]
        assert len(reporter.seen) == 2
        assert all(name.startswith("coverage-mozilla-128.0-") for name in reporter.seen)
        assert {name.split("-")[3] for name in reporter.seen} == {"one.html", "two.html"}
        assert not config.coverage_dir.exists()
        assert not config.instrumented_source_dir.exists()

    @pytest.mark.asyncio
    async def test_coverage_mode_keeps_coverage_files(self, make_config: ConfigFactory) -> None:
        config = make_config(mode="coverage")
        assert config.coverage_dir is not None
        orchestrator = LifecycleOrchestrator(config, instrumenter=CopyInstrumenter())

        startup = await orchestrator.on_runner_ready(lambda: None)
        assert startup.ok

        async with aiohttp.ClientSession() as session:
            payload = {"payload": json.dumps({"coverage": {}, "document": {"URL": "http://x/tests/a.html"}})}
            async with session.put(f"{config.coverage_url}/coverage", json=payload) as response:
                assert response.status == 200
                assert (await response.json())["message"]

        shutdown = await orchestrator.on_runner_exit(lambda: None)

        assert shutdown.ok
        assert len(list(config.coverage_dir.iterdir())) == 1

    @pytest.mark.asyncio
    async def test_base_mode_has_no_receiver(self, make_config: ConfigFactory) -> None:
        config = make_config(mode="base")
        orchestrator = LifecycleOrchestrator(config)

        startup = await orchestrator.on_runner_ready(lambda: None)
        try:
            assert startup.ok
            async with aiohttp.ClientSession() as session:
                async with session.put(f"{config.coverage_url}/coverage", json={"payload": "{}"}) as response:
                    assert response.status in (404, 405)
                async with session.get(f"{config.coverage_url}/tests/web/index.html") as response:
                    assert response.status == 200
        finally:
            shutdown = await orchestrator.on_runner_exit(lambda: None)

        assert shutdown.ok
