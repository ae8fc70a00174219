"""Shared utility modules.

Logging configuration and run ID tracking used by every harness component.
"""

from testem_coverage.utils.logging import (
    clear_run_id,
    configure_logging,
    get_run_id,
    log_with_context,
    set_run_id,
)

__all__ = [
    "clear_run_id",
    "configure_logging",
    "get_run_id",
    "log_with_context",
    "set_run_id",
]
