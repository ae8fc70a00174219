"""Content server.

One aiohttp listener hosts everything the runner proxies to: the (optionally
instrumented) source directories, the content directories and, in coverage
modes, the coverage receiver. The server announces start and stop through
lifecycle events, which the orchestrator gates its fixture waits on.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from aiohttp import web

from testem_coverage.core.events import LifecycleEvent
from testem_coverage.core.receiver import CoverageReceiver
from testem_coverage.exceptions import ServerStartError
from testem_coverage.types import ExpandedDirectory

__all__ = ["ContentServer"]

logger = logging.getLogger(__name__)


class ContentServer:
    """Static content and coverage receiver behind one HTTP listener.

    Directories are registered in the order given, so callers pass them
    already ordered by priority. ``start`` fires ``started`` once the socket
    is bound; ``stop`` fires ``stopped`` once, however many times it is called.

    Example:
        >>> server = ContentServer(host="localhost", port=7000, directories=dirs, receiver=receiver)
        >>> await server.start()
        >>> ...
        >>> await server.stop()
    """

    def __init__(
        self,
        *,
        host: str,
        port: int,
        directories: Sequence[ExpandedDirectory],
        receiver: CoverageReceiver | None = None,
        receiver_path: str = "/coverage",
        started: LifecycleEvent | None = None,
        stopped: LifecycleEvent | None = None,
        client_max_size: int = 1024**2,
    ) -> None:
        """Initialize content server.

        Args:
            host: Host to bind
            port: Port to bind
            directories: Directories to host, in routing order
            receiver: Coverage receiver, if coverage is collected
            receiver_path: URL path the receiver accepts uploads on
            started: Event fired with the server after it starts
            stopped: Event fired with the server after it stops
            client_max_size: Largest request body accepted, in bytes
        """
        self.host: str = host
        self.port: int = port
        self.directories: tuple[ExpandedDirectory, ...] = tuple(directories)
        self.receiver: CoverageReceiver | None = receiver
        self.receiver_path: str = receiver_path
        self.started: LifecycleEvent = started if started is not None else LifecycleEvent("onStarted")
        self.stopped: LifecycleEvent = stopped if stopped is not None else LifecycleEvent("onStopped")
        self.client_max_size: int = client_max_size
        self._runner: web.AppRunner | None = None
        self._is_running: bool = False
        self._is_stopped: bool = False

    @property
    def is_running(self) -> bool:
        """True between a successful start and the matching stop."""
        return self._is_running

    @property
    def is_stopped(self) -> bool:
        """True once the server has been stopped."""
        return self._is_stopped

    @property
    def url(self) -> str:
        """Base URL of the server."""
        return f"http://{self.host}:{self.port}"

    def build_app(self) -> web.Application:
        """Build the aiohttp application with receiver and static routes."""
        app = web.Application(client_max_size=self.client_max_size)

        if self.receiver is not None:
            _ = app.router.add_route("PUT", self.receiver_path, self.receiver.handle)
            _ = app.router.add_route("POST", self.receiver_path, self.receiver.handle)

        for directory in self.directories:
            if not directory.file_path.is_dir():
                logger.warning(
                    "Directory '%s' does not exist, not hosting it",
                    directory.file_path,
                    extra={"key": directory.key, "mount": directory.mount},
                )
                continue
            _ = app.router.add_static(f"/{directory.mount}", directory.file_path)
            logger.debug(
                "Hosting directory",
                extra={"key": directory.key, "mount": directory.mount, "path": str(directory.file_path)},
            )

        return app

    async def start(self) -> None:
        """Bind the listener and fire ``started``.

        Raises:
            ServerStartError: If the server is already running or the port cannot be bound
        """
        if self._is_running:
            msg = "Content server is already running"
            raise ServerStartError(msg, {"host": self.host, "port": self.port})

        runner = web.AppRunner(self.build_app())
        await runner.setup()
        site = web.TCPSite(runner, self.host, self.port)
        try:
            await site.start()
        except OSError as exc:
            await runner.cleanup()
            msg = f"Content server could not listen on {self.host}:{self.port}: {exc}"
            raise ServerStartError(msg, {"host": self.host, "port": self.port}) from exc

        self._runner = runner
        self._is_running = True
        self._is_stopped = False
        logger.info("Content server listening on %s", self.url, extra={"host": self.host, "port": self.port})
        self.started.fire(self)

    async def stop(self) -> None:
        """Shut the listener down and fire ``stopped``.

        Stopping a server that never started, or that is already stopped, is a
        no-op and does not fire ``stopped`` again.
        """
        if not self._is_running or self._runner is None:
            logger.debug("Content server is not running, nothing to stop")
            return

        runner, self._runner = self._runner, None
        self._is_running = False
        try:
            await runner.cleanup()
        finally:
            self._is_stopped = True
            logger.info("Content server stopped", extra={"host": self.host, "port": self.port})
            self.stopped.fire(self)
