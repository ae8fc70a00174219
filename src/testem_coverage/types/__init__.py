"""Type definitions and protocols for the testem-coverage harness.

This package provides:
- Data models (immutable dataclasses)
- Protocol definitions (structural subtyping interfaces)
- Type aliases (PEP 695 syntax)
"""

from testem_coverage.types.aliases import (
    Listener,
    Outcome,
    Priority,
    ProxyMap,
    RunnerCallback,
    RunnerOptions,
)
from testem_coverage.types.models import (
    BrowserInfo,
    ExpandedDirectory,
    Failure,
    Success,
)
from testem_coverage.types.protocols import (
    DirectoryRemover,
    Instrumenter,
    Reporter,
)

__all__ = [
    # Type aliases
    "Listener",
    "Outcome",
    "Priority",
    "ProxyMap",
    "RunnerCallback",
    "RunnerOptions",
    # Data models
    "BrowserInfo",
    "ExpandedDirectory",
    "Failure",
    "Success",
    # Protocols
    "DirectoryRemover",
    "Instrumenter",
    "Reporter",
]
