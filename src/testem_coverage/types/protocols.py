"""Protocol definitions for external collaborators.

The instrumentation tool and the report renderer are external to the harness;
these protocols define the contracts the lifecycle chains consume so that the
default command-line adapters can be swapped for in-process implementations.
"""

from collections.abc import Mapping
from pathlib import Path
from typing import Protocol, runtime_checkable


@runtime_checkable
class Instrumenter(Protocol):
    """Protocol for tools that produce an instrumented copy of a source tree."""

    async def instrument(
        self,
        source_path: Path,
        destination_path: Path,
        options: Mapping[str, object],
    ) -> None:
        """Instrument ``source_path`` into ``destination_path``.

        Args:
            source_path: Absolute path of the source directory
            destination_path: Absolute path the instrumented copy is written to
            options: Tool-specific instrumentation options

        Raises:
            Exception: Any failure; the caller attributes it to the directory
        """
        ...


@runtime_checkable
class Reporter(Protocol):
    """Protocol for tools that render reports from collected coverage files."""

    async def report(self) -> None:
        """Generate reports from the coverage directory.

        Raises:
            Exception: If report generation fails
        """
        ...


class DirectoryRemover(Protocol):
    """Callable protocol for recursive directory removal.

    Implementations must treat a nonexistent path as already removed.
    """

    async def __call__(self, path: Path) -> None: ...
