"""Tests for CLI interface."""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Generator
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import yaml
from click.testing import CliRunner

from testem_coverage.app.cli import cli, discover_config_file
from testem_coverage.app.runner import ApplicationRunner
from testem_coverage.types import Failure, Success


@pytest.fixture(autouse=True)
def restore_root_logging() -> Generator[None]:
    """Undo the handlers configure_logging installs during a command."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def runner() -> CliRunner:
    """Create a Click test runner."""
    return CliRunner()


@pytest.fixture
def config_file(tmp_path: Path, project_dir: Path) -> Path:
    """Write a base-mode configuration for the temporary project."""
    config_path = tmp_path / "testem-coverage.yaml"
    data = {
        "mode": "base",
        "instance_id": "cli1",
        "cwd": str(project_dir),
        "temp_root": str(tmp_path / "scratch"),
        "coverage_port": 7123,
        "source_dirs": {"src": "src"},
        "content_dirs": {"tests": "tests"},
        "test_pages": ["tests/web/index.html"],
        "report_command": [sys.executable, "-c", "import sys; sys.exit(4)"],
    }
    _ = config_path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return config_path


@pytest.mark.unit
class TestCLIBasicFunctionality:
    """Test basic CLI functionality."""

    def test_cli_help_command(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        assert "--config" in result.output
        assert "--log-level" in result.output
        for command in ("proxies", "options", "serve", "cleanup", "report"):
            assert command in result.output

    def test_cli_version_command(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert "version" in result.output.lower()

    def test_invalid_config_extension(self, runner: CliRunner, tmp_path: Path) -> None:
        result = runner.invoke(cli, ["--config", str(tmp_path / "config.json"), "proxies"])

        assert result.exit_code == 2
        assert "Invalid configuration file extension" in result.output

    def test_config_directory_is_rejected(self, runner: CliRunner, tmp_path: Path) -> None:
        directory = tmp_path / "conf.yaml"
        directory.mkdir()

        result = runner.invoke(cli, ["--config", str(directory), "proxies"])

        assert result.exit_code == 2
        assert "must be a file" in result.output

    def test_invalid_log_level(self, runner: CliRunner, config_file: Path) -> None:
        result = runner.invoke(cli, ["-c", str(config_file), "--log-level", "LOUD", "proxies"])

        assert result.exit_code == 2
        assert "Invalid log level" in result.output

    def test_missing_config_file(self, runner: CliRunner, tmp_path: Path) -> None:
        result = runner.invoke(cli, ["--config", str(tmp_path / "missing.yaml"), "proxies"])

        assert result.exit_code == 1
        assert "Configuration file not found" in result.output

    def test_config_is_discovered_in_current_directory(self, runner: CliRunner) -> None:
        with runner.isolated_filesystem():
            _ = Path(".testem-coverage.yml").write_text("mode: base\n", encoding="utf-8")

            assert discover_config_file() == Path(".testem-coverage.yml")

            result = runner.invoke(cli, ["-l", "WARNING", "proxies"])

            assert result.exit_code == 0
            assert json.loads(result.stdout) == {}

    def test_default_config_path_when_none_exists(self, runner: CliRunner) -> None:
        with runner.isolated_filesystem():
            assert discover_config_file() == Path("testem-coverage.yaml")


@pytest.mark.unit
class TestCLICommands:
    """Test the subcommands against a real configuration."""

    def test_proxies_prints_json(self, runner: CliRunner, config_file: Path) -> None:
        result = runner.invoke(cli, ["-c", str(config_file), "-l", "WARNING", "proxies"])

        assert result.exit_code == 0
        assert json.loads(result.stdout) == {
            "/src": {"target": "http://localhost:7123"},
            "/tests": {"target": "http://localhost:7123"},
        }

    def test_options_omit_hooks(self, runner: CliRunner, config_file: Path) -> None:
        result = runner.invoke(cli, ["-c", str(config_file), "-l", "WARNING", "options"])

        assert result.exit_code == 0
        options = json.loads(result.stdout)
        assert options["framework"] == "qunit"
        assert options["test_page"] == ["tests/web/index.html"]
        assert "on_start" not in options
        assert "on_exit" not in options

    def test_cleanup_removes_stage_directories(self, runner: CliRunner, config_file: Path, tmp_path: Path) -> None:
        testem_dir = tmp_path / "scratch" / "user_data_dir-cli1"
        testem_dir.mkdir(parents=True)

        result = runner.invoke(cli, ["-c", str(config_file), "-l", "WARNING", "cleanup", "--stage", "initial"])

        assert result.exit_code == 0
        assert not testem_dir.exists()

    def test_cleanup_failure_exits_non_zero(self, runner: CliRunner, config_file: Path) -> None:
        failure = Failure(error=RuntimeError("disk on fire"), step="final-cleanup")
        with patch.object(ApplicationRunner, "cleanup", return_value=failure):
            result = runner.invoke(cli, ["-c", str(config_file), "cleanup"])

        assert result.exit_code == 1
        assert "disk on fire" in result.output

    def test_report_failure_exits_non_zero(self, runner: CliRunner, config_file: Path) -> None:
        result = runner.invoke(cli, ["-c", str(config_file), "-l", "CRITICAL", "report"])

        assert result.exit_code == 1
        assert "exited with code 4" in result.output

    def test_serve_reports_lifecycle_failure(self, runner: CliRunner, config_file: Path) -> None:
        with patch.object(ApplicationRunner, "serve", return_value=False):
            result = runner.invoke(cli, ["-c", str(config_file), "serve"])

        assert result.exit_code == 1
        assert "did not complete successfully" in result.output

    def test_serve_success(self, runner: CliRunner, config_file: Path) -> None:
        serve = MagicMock(return_value=True)
        with patch.object(ApplicationRunner, "serve", serve):
            result = runner.invoke(cli, ["-c", str(config_file), "serve"])

        assert result.exit_code == 0
        serve.assert_called_once()


@pytest.mark.unit
class TestApplicationRunner:
    """Test the runner behind the commands."""

    def test_log_level_override(self, config_file: Path) -> None:
        app = ApplicationRunner(config_path=config_file, log_level="DEBUG")

        assert app.config.application.log_level == "DEBUG"
        assert logging.getLogger().level == logging.DEBUG

    def test_overrides_apply(self, config_file: Path) -> None:
        app = ApplicationRunner(config_path=config_file, overrides={"mode": "coverage"})

        assert app.config.mode == "coverage"
        assert "/coverage" in app.proxies()

    def test_cleanup_returns_outcome(self, config_file: Path) -> None:
        app = ApplicationRunner(config_path=config_file, log_level="WARNING")

        assert isinstance(app.cleanup("final"), Success)
