"""Coverage report generation.

After the runner exits and the content server is down, the coverage files
collected during the run are merged and rendered by an external command
(``nyc report`` by default).
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Sequence
from pathlib import Path

from testem_coverage.exceptions import ReportError

__all__ = ["CommandReporter", "build_report_command"]

logger = logging.getLogger(__name__)

DEFAULT_REPORT_TIMEOUT: float = 600.0


def build_report_command(
    command: Sequence[str],
    *,
    coverage_dir: Path,
    reports_dir: Path,
    reports: Sequence[str],
) -> list[str]:
    """Build the report command line.

    Examples:
        >>> build_report_command(["nyc", "report"], coverage_dir=Path("/c"), reports_dir=Path("/r"), reports=["html"])
        ['nyc', 'report', '--temp-dir', '/c', '--report-dir', '/r', '--reporter', 'html']
    """
    cmd = [*command, "--temp-dir", str(coverage_dir), "--report-dir", str(reports_dir)]
    for report in reports:
        cmd.extend(["--reporter", report])
    return cmd


class CommandReporter:
    """Generate coverage reports by running an external command."""

    def __init__(
        self,
        *,
        coverage_dir: Path,
        reports_dir: Path,
        reports: Sequence[str] = ("text-summary", "html", "json-summary"),
        command: Sequence[str] = ("npx", "nyc", "report"),
        cwd: Path | None = None,
        timeout: float = DEFAULT_REPORT_TIMEOUT,
    ) -> None:
        self.coverage_dir: Path = coverage_dir
        self.reports_dir: Path = reports_dir
        self.reports: tuple[str, ...] = tuple(reports)
        self.command: tuple[str, ...] = tuple(command)
        self.cwd: Path | None = cwd
        self.timeout: float = timeout

    async def report(self) -> None:
        """Run the report command.

        Raises:
            ReportError: If the command cannot run, times out or exits non-zero
        """
        cmd = build_report_command(
            self.command,
            coverage_dir=self.coverage_dir,
            reports_dir=self.reports_dir,
            reports=self.reports,
        )
        logger.info("Generating coverage report...", extra={"reports_dir": str(self.reports_dir)})

        await asyncio.to_thread(self.reports_dir.mkdir, parents=True, exist_ok=True)

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.cwd,
            )
        except OSError as exc:
            msg = f"Failed to run report command '{cmd[0]}': {exc}"
            raise ReportError(msg, {"command": cmd}) from exc

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except TimeoutError as exc:
            msg = f"Report generation timed out after {self.timeout}s"
            raise ReportError(msg, {"command": cmd}) from exc
        finally:
            # Also reached on cancellation; never leave the child running
            if proc.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
                _ = await proc.wait()

        stdout = stdout_bytes.decode(errors="replace").strip()
        if proc.returncode != 0:
            stderr = stderr_bytes.decode(errors="replace").strip()
            msg = f"Report command exited with code {proc.returncode}: {stderr}"
            raise ReportError(msg, {"command": cmd, "exit_code": proc.returncode})

        if stdout:
            # text-summary output goes to stdout; surface it in the run log
            logger.info("Coverage report:\n%s", stdout)
        logger.info("Coverage report saved to %s", self.reports_dir)
