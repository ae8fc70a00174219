"""Source instrumentation.

Every configured source directory is instrumented into a parallel tree under
the instrumented source directory, one directory at a time. The first failure
aborts the remaining directories and, through the orchestrator, the startup
chain.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import shutil
from collections.abc import Mapping, Sequence
from pathlib import Path

from testem_coverage.core.config import HarnessConfig
from testem_coverage.core.proxies import expand_directories
from testem_coverage.exceptions import InstrumentationError
from testem_coverage.types import Instrumenter

__all__ = [
    "CommandInstrumenter",
    "CopyInstrumenter",
    "build_option_flags",
    "instrument_source",
]

logger = logging.getLogger(__name__)

DEFAULT_INSTRUMENT_TIMEOUT: float = 600.0


def build_option_flags(options: Mapping[str, object]) -> list[str]:
    """Convert an options mapping into command-line flags.

    ``True`` becomes a bare ``--flag``, ``False``/``None`` are omitted, lists
    repeat the flag once per item, and everything else becomes ``--flag=value``.

    Examples:
        >>> build_option_flags({"compact": False, "exclude": ["a.js", "b.js"], "source-map": True})
        ['--exclude=a.js', '--exclude=b.js', '--source-map']
    """
    flags: list[str] = []
    for name, value in options.items():
        flag = f"--{name}"
        if value is True:
            flags.append(flag)
        elif value is False or value is None:
            continue
        elif isinstance(value, list | tuple):
            flags.extend(f"{flag}={item}" for item in value)  # pyright: ignore[reportUnknownVariableType]
        else:
            flags.append(f"{flag}={value}")
    return flags


class CommandInstrumenter:
    """Instrument a directory by running an external command.

    The command is invoked as ``<command> <flags> <source> <destination>``,
    which matches ``nyc instrument``.
    """

    def __init__(
        self,
        command: Sequence[str] = ("npx", "nyc", "instrument"),
        *,
        cwd: Path | None = None,
        timeout: float = DEFAULT_INSTRUMENT_TIMEOUT,
    ) -> None:
        self.command: tuple[str, ...] = tuple(command)
        self.cwd: Path | None = cwd
        self.timeout: float = timeout

    async def instrument(
        self,
        source_path: Path,
        destination_path: Path,
        options: Mapping[str, object],
    ) -> None:
        """Run the instrumentation command for one directory.

        Raises:
            InstrumentationError: If the command cannot run, times out or exits non-zero
        """
        cmd = [*self.command, *build_option_flags(options), str(source_path), str(destination_path)]
        logger.debug("Running instrumentation command", extra={"command": cmd})

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.cwd,
            )
        except OSError as exc:
            msg = f"Failed to run instrumentation command '{cmd[0]}': {exc}"
            raise InstrumentationError(msg, directory=destination_path.name, source_path=str(source_path)) from exc

        try:
            _, stderr_bytes = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except TimeoutError as exc:
            msg = f"Instrumentation timed out after {self.timeout}s"
            raise InstrumentationError(msg, directory=destination_path.name, source_path=str(source_path)) from exc
        finally:
            # Also reached on cancellation; never leave the child running
            if proc.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
                _ = await proc.wait()

        if proc.returncode != 0:
            stderr = stderr_bytes.decode(errors="replace").strip()
            msg = f"Instrumentation command exited with code {proc.returncode}: {stderr}"
            raise InstrumentationError(msg, directory=destination_path.name, source_path=str(source_path))


class CopyInstrumenter:
    """Copy a directory unchanged.

    Useful when the source is instrumented by a build step, and in tests.
    """

    async def instrument(
        self,
        source_path: Path,
        destination_path: Path,
        options: Mapping[str, object],
    ) -> None:
        """Copy ``source_path`` to ``destination_path``.

        Raises:
            InstrumentationError: If the source is missing or the copy fails
        """
        _ = options
        if not source_path.is_dir():
            msg = f"Source directory does not exist: {source_path}"
            raise InstrumentationError(msg, directory=destination_path.name, source_path=str(source_path))

        try:
            _ = await asyncio.to_thread(shutil.copytree, source_path, destination_path, dirs_exist_ok=True)
        except OSError as exc:
            msg = f"Failed to copy {source_path}: {exc}"
            raise InstrumentationError(msg, directory=destination_path.name, source_path=str(source_path)) from exc


async def instrument_source(config: HarnessConfig, instrumenter: Instrumenter) -> None:
    """Instrument every configured source directory, sequentially.

    Args:
        config: Harness configuration
        instrumenter: Instrumenter used for each directory

    Raises:
        InstrumentationError: On the first directory that fails
    """
    assert config.instrumented_source_dir is not None  # Filled in by HarnessConfig validation
    logger.info("Instrumenting source.")

    for directory in expand_directories(config.source_dirs, cwd=config.cwd):
        destination = config.instrumented_source_dir / directory.mount
        try:
            await instrumenter.instrument(directory.file_path, destination, config.instrumentation.options)
        except InstrumentationError:
            logger.exception(
                "Instrumentation error in directory '%s'",
                directory.key,
                extra={"directory": directory.key, "source_path": str(directory.file_path)},
            )
            raise
        except Exception as exc:
            logger.exception(
                "Instrumentation error in directory '%s'",
                directory.key,
                extra={"directory": directory.key, "source_path": str(directory.file_path)},
            )
            msg = f"Instrumenting '{directory.key}' failed: {exc}"
            raise InstrumentationError(msg, directory=directory.key, source_path=str(directory.file_path)) from exc

    logger.info("Finished instrumentation...")
