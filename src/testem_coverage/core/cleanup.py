"""Sequential directory cleanup.

Cleanup runs before the runner starts and after it exits. Each definition
names one directory; runner content definitions additionally sweep stray
``Temp-*`` directories the runner leaves in the system temp root. Removal
failures are logged and absorbed so that a locked file never blocks a test
run from starting or finishing.
"""

from __future__ import annotations

import asyncio
import logging
import re
import shutil
from collections.abc import Sequence
from pathlib import Path

from testem_coverage.core.config import CleanupDefinition
from testem_coverage.core.paths import resolve_path
from testem_coverage.types import DirectoryRemover, Failure, Outcome, Success
from testem_coverage.utils.logging import log_with_context

__all__ = ["CleanupSequencer", "remove_tree"]

logger = logging.getLogger(__name__)


async def remove_tree(path: Path) -> None:
    """Recursively remove a directory (or file) off the event loop.

    Missing paths are ignored.
    """

    def _remove() -> None:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink(missing_ok=True)

    await asyncio.to_thread(_remove)


class CleanupSequencer:
    """Remove a list of directories one after the other."""

    def __init__(
        self,
        *,
        temp_root: Path,
        testem_temp_pattern: str = r"^Temp-.+",
        remover: DirectoryRemover = remove_tree,
        cwd: Path | None = None,
    ) -> None:
        """Initialize sequencer.

        Args:
            temp_root: Directory scanned for stray runner directories
            testem_temp_pattern: Regex matching stray runner directory names
            remover: Coroutine that removes one path
            cwd: Base directory for relative definition paths
        """
        self.temp_root: Path = temp_root
        self.testem_temp_pattern: re.Pattern[str] = re.compile(testem_temp_pattern)
        self.remover: DirectoryRemover = remover
        self.cwd: Path | None = cwd

    async def run(self, stage: str, definitions: Sequence[CleanupDefinition]) -> Outcome:
        """Run one cleanup stage.

        Args:
            stage: Stage name used in log output (``initial``/``final``)
            definitions: Directories to remove, in order

        Returns:
            Success unless a path could not be resolved
        """
        try:
            for definition in definitions:
                await self._cleanup_definition(definition)
        except Exception as exc:
            logger.exception(
                "Cleanup failed: %s",
                exc,
                extra={"stage": stage},
            )
            return Failure(error=exc, step=f"{stage}-cleanup")

        logger.info(
            "%s cleanup completed successfully...",
            stage.capitalize(),
            extra={"stage": stage, "definitions": len(definitions)},
        )
        return Success()

    async def _cleanup_definition(self, definition: CleanupDefinition) -> None:
        path = resolve_path(definition.path, cwd=self.cwd)
        await self._cleanup_dir(definition.name, path)

        if definition.is_testem_content:
            for stray in await asyncio.to_thread(self._find_stray_testem_dirs):
                await self._cleanup_dir(f"{definition.name}:{stray.name}", stray)

    def _find_stray_testem_dirs(self) -> list[Path]:
        if not self.temp_root.is_dir():
            return []
        return sorted(
            entry for entry in self.temp_root.iterdir() if self.testem_temp_pattern.match(entry.name)
        )

    async def _cleanup_dir(self, name: str, path: Path) -> None:
        if not path.exists():
            logger.info(
                "Path '%s' does not exist, skipping cleanup",
                path,
                extra={"cleanup_name": name, "path": str(path)},
            )
            return

        logger.debug("Removing directory", extra={"cleanup_name": name, "path": str(path)})
        try:
            await self.remover(path)
        except Exception as exc:
            log_with_context(
                logger,
                logging.WARNING,
                f"Error removing '{path}' for cleanup '{name}': {exc}",
                extra={"cleanup_name": name, "path": str(path), "error_type": type(exc).__name__},
            )
