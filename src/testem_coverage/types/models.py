"""Data models for the testem-coverage harness.

This module defines the small immutable dataclasses passed between the core
components: expanded directory mounts, browser identities, and the explicit
outcome type produced by lifecycle chains.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


@dataclass(slots=True, frozen=True)
class ExpandedDirectory:
    """A named directory definition resolved to an absolute path.

    Produced by expanding a configured directory definition; ``mount`` is the
    URL segment the directory is hosted under (the last component of
    ``file_path`` unless explicitly overridden).
    """

    key: str
    file_path: Path
    mount: str
    priority: str | int | None = None


@dataclass(slots=True, frozen=True)
class BrowserInfo:
    """Browser identity derived from a user agent string."""

    name: str
    version: str


@dataclass(slots=True, frozen=True)
class Success:
    """Settled outcome of a chain that ran every step."""

    value: object = None

    @property
    def ok(self) -> bool:
        return True


@dataclass(slots=True, frozen=True)
class Failure:
    """Settled outcome of a chain that was short-circuited by a failing step."""

    error: BaseException
    step: str | None = None

    @property
    def ok(self) -> bool:
        return False

    def describe(self) -> str:
        """Return a one-line description suitable for log output."""
        prefix = f"step '{self.step}' failed: " if self.step else ""
        message = str(self.error) or type(self.error).__name__
        return f"{prefix}{message}"
