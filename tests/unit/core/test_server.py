"""Tests for the content server."""

from __future__ import annotations

import json
import socket
from pathlib import Path

import aiohttp
import pytest
from aiohttp.test_utils import unused_port

from testem_coverage.core.events import LifecycleEvent
from testem_coverage.core.receiver import CoverageReceiver
from testem_coverage.core.server import ContentServer
from testem_coverage.exceptions import ServerStartError
from testem_coverage.types import ExpandedDirectory


def _directory(key: str, path: Path, mount: str | None = None) -> ExpandedDirectory:
    return ExpandedDirectory(key=key, file_path=path, mount=mount or path.name)


@pytest.mark.unit
class TestContentServer:
    """Test hosting, receiver routing and start/stop signals."""

    @pytest.mark.asyncio
    async def test_serves_directories_and_receiver(self, project_dir: Path, tmp_path: Path) -> None:
        port = unused_port()
        receiver = CoverageReceiver(tmp_path / "coverage", instance_id="run1")
        server = ContentServer(
            host="127.0.0.1",
            port=port,
            directories=[_directory("src", project_dir / "src"), _directory("tests", project_dir / "tests")],
            receiver=receiver,
        )

        await server.start()
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(f"{server.url}/src/app.js") as response:
                    assert response.status == 200
                    assert "function add" in await response.text()

                async with session.get(f"{server.url}/tests/web/index.html") as response:
                    assert response.status == 200

                payload = {"payload": json.dumps({"coverage": {}, "document": {"URL": "http://x/t.html"}})}
                async with session.put(f"{server.url}/coverage", json=payload) as response:
                    assert response.status == 200
        finally:
            await server.stop()

        assert len(list((tmp_path / "coverage").iterdir())) == 1

    @pytest.mark.asyncio
    async def test_explicit_mount_is_used(self, project_dir: Path) -> None:
        server = ContentServer(
            host="127.0.0.1",
            port=unused_port(),
            directories=[_directory("src", project_dir / "src", mount="lib")],
        )

        await server.start()
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(f"{server.url}/lib/app.js") as response:
                    assert response.status == 200
        finally:
            await server.stop()

    @pytest.mark.asyncio
    async def test_missing_directory_is_skipped(self, tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
        server = ContentServer(
            host="127.0.0.1",
            port=unused_port(),
            directories=[_directory("ghost", tmp_path / "ghost")],
        )

        _ = server.build_app()

        assert "does not exist, not hosting it" in caplog.text

    @pytest.mark.asyncio
    async def test_start_and_stop_fire_events_once(self, project_dir: Path) -> None:
        started = LifecycleEvent("onStarted")
        stopped = LifecycleEvent("onStopped")
        started_calls: list[object] = []
        stopped_calls: list[object] = []
        started.add_listener("record", started_calls.append)
        stopped.add_listener("record", stopped_calls.append)

        server = ContentServer(
            host="127.0.0.1",
            port=unused_port(),
            directories=[_directory("src", project_dir / "src")],
            started=started,
            stopped=stopped,
        )

        await server.start()
        assert server.is_running
        assert started_calls == [server]

        await server.stop()
        await server.stop()

        assert not server.is_running
        assert server.is_stopped
        assert stopped_calls == [server]

    @pytest.mark.asyncio
    async def test_stop_before_start_is_a_no_op(self) -> None:
        stopped = LifecycleEvent("onStopped")
        calls: list[object] = []
        stopped.add_listener("record", calls.append)
        server = ContentServer(host="127.0.0.1", port=unused_port(), directories=[], stopped=stopped)

        await server.stop()

        assert calls == []
        assert not server.is_stopped

    @pytest.mark.asyncio
    async def test_bind_failure_raises_server_start_error(self) -> None:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as blocker:
            blocker.bind(("127.0.0.1", 0))
            blocker.listen()
            port = blocker.getsockname()[1]

            server = ContentServer(host="127.0.0.1", port=port, directories=[])
            with pytest.raises(ServerStartError, match="could not listen"):
                await server.start()

        assert not server.is_running

    @pytest.mark.asyncio
    async def test_double_start_raises(self) -> None:
        server = ContentServer(host="127.0.0.1", port=unused_port(), directories=[])
        await server.start()
        try:
            with pytest.raises(ServerStartError, match="already running"):
                await server.start()
        finally:
            await server.stop()
