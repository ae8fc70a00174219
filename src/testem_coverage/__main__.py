"""Application entry point for testem-coverage.

Dispatches to the click command group. Exit codes:

- 0: success
- 1: configuration or runtime error
"""

from __future__ import annotations

from testem_coverage.app.cli import cli

__all__ = ["main"]


def main() -> None:
    """Main entry point for the testem-coverage command."""
    cli(prog_name="testem-coverage")


if __name__ == "__main__":
    main()
