"""testem-coverage - lifecycle and coverage harness for browser test runners.

This package hosts (optionally instrumented) source and test content for a
browser-based test runner, drives the runner's startup and shutdown hooks,
collects coverage uploads from the browser and produces coverage reports once
the run is over.
"""

from testem_coverage.__main__ import main

__all__ = ["main"]
