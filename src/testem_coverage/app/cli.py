"""Command-line interface for the testem-coverage harness."""

from __future__ import annotations

import json
from pathlib import Path

import click

from testem_coverage.app.runner import ApplicationRunner, describe_error
from testem_coverage.exceptions import HarnessError
from testem_coverage.types import Failure

# Configuration file discovery paths in order of precedence
CURRENT_DIR_CONFIG_FILES = [
    "testem-coverage.yaml",
    "testem-coverage.yml",
    ".testem-coverage.yaml",
    ".testem-coverage.yml",
]


def discover_config_file() -> Path:
    """Discover the configuration file in the current directory.

    Returns:
        Path to the first configuration file found, or the default
        ``testem-coverage.yaml`` if none exists.
    """
    for config_file in CURRENT_DIR_CONFIG_FILES:
        config_path = Path(config_file)
        if config_path.exists() and config_path.is_file():
            return config_path
    return Path(CURRENT_DIR_CONFIG_FILES[0])


def validate_config_path(
    ctx: click.Context,  # pyright: ignore[reportUnusedParameter] # required by Click callback signature
    param: click.Parameter,  # pyright: ignore[reportUnusedParameter] # required by Click callback signature
    value: Path | None,
) -> Path | None:
    """Validate configuration file path.

    Raises:
        click.BadParameter: If the path is a directory or not a YAML file
    """
    if value is None:
        return value

    if value.exists() and value.is_dir():
        raise click.BadParameter("Configuration path must be a file, not a directory")

    valid_extensions = {".yaml", ".yml"}
    if value.suffix.lower() not in valid_extensions:
        extensions_str = ", ".join(sorted(valid_extensions))
        raise click.BadParameter(f"Invalid configuration file extension. Supported extensions: {extensions_str}")

    return value


def validate_log_level(
    ctx: click.Context,  # pyright: ignore[reportUnusedParameter] # required by Click callback signature
    param: click.Parameter,  # pyright: ignore[reportUnusedParameter] # required by Click callback signature
    value: str | None,
) -> str | None:
    """Validate and normalize log level.

    Raises:
        click.BadParameter: If the level is not recognized
    """
    if value is None:
        return value

    normalized_value = value.upper().strip()
    valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    if normalized_value not in valid_levels:
        raise click.BadParameter(f'Invalid log level "{value}". Valid options: {", ".join(sorted(valid_levels))}')

    return normalized_value


try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("testem-coverage")
except PackageNotFoundError:
    __version__ = "unknown"


def _runner(ctx: click.Context) -> ApplicationRunner:
    runner = ctx.obj
    if not isinstance(runner, ApplicationRunner):
        msg = "CLI context is not initialized"
        raise click.ClickException(msg)
    return runner


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(path_type=Path),
    default=None,
    callback=validate_config_path,
    help="Configuration file path (.yaml or .yml). Defaults to testem-coverage.yaml in the current directory.",
)
@click.option(
    "--log-level",
    "-l",
    type=str,
    default=None,
    callback=validate_log_level,
    help="Logging verbosity level (DEBUG, INFO, WARNING, ERROR, CRITICAL); overrides the configuration",
)
@click.version_option(version=__version__, prog_name="testem-coverage")
@click.pass_context
def cli(ctx: click.Context, config: Path | None, log_level: str | None) -> None:
    """testem-coverage - host, instrument and collect coverage for browser test runs.

    Examples:

        # Print the proxy configuration for the runner
        testem-coverage proxies

        # Host content until interrupted
        testem-coverage --config ci.yaml serve

        # Remove leftovers from a previous run
        testem-coverage cleanup --stage final
    """
    config_path = config if config is not None else discover_config_file()
    ctx.obj = ApplicationRunner(config_path=config_path, log_level=log_level)


@cli.command()
@click.pass_context
def proxies(ctx: click.Context) -> None:
    """Print the runner proxy configuration as JSON."""
    try:
        click.echo(json.dumps(_runner(ctx).proxies(), indent=2))
    except HarnessError as e:
        raise click.ClickException(describe_error(e)) from e


@cli.command()
@click.pass_context
def options(ctx: click.Context) -> None:
    """Print the runner options as JSON (hooks omitted)."""
    try:
        click.echo(json.dumps(_runner(ctx).options(), indent=2, default=str))
    except HarnessError as e:
        raise click.ClickException(describe_error(e)) from e


@cli.command()
@click.pass_context
def serve(ctx: click.Context) -> None:
    """Run the startup chain, serve until interrupted, then shut down."""
    try:
        succeeded = _runner(ctx).serve()
    except HarnessError as e:
        raise click.ClickException(describe_error(e)) from e
    if not succeeded:
        raise click.ClickException("The test run lifecycle did not complete successfully; see the log for details")


@cli.command()
@click.option(
    "--stage",
    "-s",
    type=click.Choice(["initial", "final"]),
    default="final",
    help="Cleanup stage to run",
)
@click.pass_context
def cleanup(ctx: click.Context, stage: str) -> None:
    """Remove the directories listed for a cleanup stage."""
    try:
        outcome = _runner(ctx).cleanup("initial" if stage == "initial" else "final")
    except HarnessError as e:
        raise click.ClickException(describe_error(e)) from e
    if isinstance(outcome, Failure):
        raise click.ClickException(outcome.describe())


@cli.command()
@click.pass_context
def report(ctx: click.Context) -> None:
    """Generate coverage reports from the collected coverage files."""
    try:
        _runner(ctx).report()
    except HarnessError as e:
        raise click.ClickException(describe_error(e)) from e


if __name__ == "__main__":
    cli()
