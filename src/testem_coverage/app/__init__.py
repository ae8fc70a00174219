"""Application module for the testem-coverage harness."""

from __future__ import annotations

from testem_coverage.app.cli import cli
from testem_coverage.app.runner import ApplicationRunner

__all__ = [
    "ApplicationRunner",
    "cli",
]
