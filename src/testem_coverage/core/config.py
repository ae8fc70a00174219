"""Configuration system for the testem-coverage harness.

This module implements the configuration schema using Pydantic for
validation, with support for environment variable resolution in YAML files and
fail-fast validation with actionable error messages.

The harness supports four modes, each a superset of the previous one:

- ``base``: host source and content directories for the runner
- ``coverage``: host instrumented source and the coverage receiver
- ``instrumentation``: additionally instrument source before the run
- ``full``: additionally generate coverage reports after the run
"""

from __future__ import annotations

import os
import re
import tempfile
from collections.abc import Mapping
from pathlib import Path
from typing import Annotated, Final, Literal
from uuid import uuid4

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from testem_coverage.core.events import validate_priority
from testem_coverage.core.paths import generate_unique_dir_name, resolve_path
from testem_coverage.exceptions import ConfigurationError, EnvironmentVariableError

__all__ = [
    "ApplicationConfig",
    "CleanupDefinition",
    "CleanupPlan",
    "DirectoryDefinition",
    "ENV_VAR_PATTERN",
    "HarnessConfig",
    "HarnessMode",
    "InstrumentationConfig",
    "cleanup_presets",
    "load_config",
    "resolve_env_var",
    "resolve_env_vars_in_dict",
]

# Matches ${VARIABLE_NAME} syntax where VARIABLE_NAME can contain letters, digits, and underscores
ENV_VAR_PATTERN: Final[re.Pattern[str]] = re.compile(r"\$\{([A-Z0-9_]+)\}")

# Placeholders usable in cleanup definition paths
_DIR_PLACEHOLDERS: Final[tuple[str, ...]] = (
    "testem_dir",
    "coverage_dir",
    "instrumented_source_dir",
    "reports_dir",
)

type HarnessMode = Literal["base", "coverage", "instrumentation", "full"]


class CleanupDefinition(BaseModel):
    """A single directory to remove during a cleanup stage.

    ``path`` may contain ``{testem_dir}``, ``{coverage_dir}``,
    ``{instrumented_source_dir}`` or ``{reports_dir}`` placeholders, which are
    expanded against the harness configuration.
    """

    name: Annotated[str, Field(min_length=1, description="Human-readable name used in log output")]
    path: Annotated[str, Field(min_length=1, description="Directory to remove")]
    is_testem_content: Annotated[
        bool,
        Field(description="Also remove stray runner directories from the temp root"),
    ] = False


class CleanupPlan(BaseModel):
    """Cleanup definitions for the initial and final stages."""

    initial: Annotated[
        list[CleanupDefinition],
        Field(description="Directories removed before the run starts"),
    ] = []
    final: Annotated[
        list[CleanupDefinition],
        Field(description="Directories removed after the run ends"),
    ] = []


def cleanup_presets() -> dict[str, list[CleanupDefinition]]:
    """Return the named cleanup presets.

    Returns:
        Mapping of preset name to cleanup definitions:
        ``only_testem_content``, ``everything_but_coverage`` and ``everything``
    """
    only_testem_content = [
        CleanupDefinition(name="testem", path="{testem_dir}", is_testem_content=True),
    ]
    everything_but_coverage = [
        *only_testem_content,
        CleanupDefinition(name="instrumented", path="{instrumented_source_dir}"),
    ]
    everything = [
        *everything_but_coverage,
        CleanupDefinition(name="coverage", path="{coverage_dir}"),
    ]
    return {
        "only_testem_content": only_testem_content,
        "everything_but_coverage": everything_but_coverage,
        "everything": everything,
    }


_MODE_CLEANUP_PRESET: Final[dict[str, str]] = {
    "base": "only_testem_content",
    "coverage": "only_testem_content",
    "instrumentation": "everything_but_coverage",
    "full": "everything",
}


class DirectoryDefinition(BaseModel):
    """A named directory hosted by the content server and proxied by the runner.

    May be written in YAML as a plain path string, which is shorthand for
    ``{file_path: <string>}``.
    """

    file_path: Annotated[str, Field(min_length=1, description="Directory to host")]
    priority: Annotated[
        str | int | None,
        Field(description="Ordering tag: first, last, before:<key>, after:<key> or a number"),
    ] = None
    mount: Annotated[
        str | None,
        Field(description="URL segment to host the directory under (defaults to the last path component)"),
    ] = None

    @model_validator(mode="before")
    @classmethod
    def accept_path_shorthand(cls, data: object) -> object:
        """Allow a bare path string in place of a full definition."""
        if isinstance(data, str | Path):
            return {"file_path": str(data)}
        return data

    @field_validator("priority", mode="after")
    @classmethod
    def validate_priority_tag(cls, v: str | int | None) -> str | int | None:
        """Validate the priority tag syntax.

        Raises:
            ValueError: If the tag is not a recognized priority form
        """
        validate_priority(v)
        return v

    @field_validator("mount", mode="after")
    @classmethod
    def validate_mount(cls, v: str | None) -> str | None:
        """Strip slashes from explicit mount segments."""
        if v is None:
            return v
        stripped = v.strip("/")
        if not stripped:
            msg = "Mount segment cannot be empty"
            raise ValueError(msg)
        return stripped


class InstrumentationConfig(BaseModel):
    """Configuration for the external instrumentation command."""

    command: Annotated[
        list[str],
        Field(min_length=1, description="Command prefix; source and destination are appended"),
    ] = ["npx", "nyc", "instrument"]
    options: Annotated[
        dict[str, object],
        Field(description="Options passed to the instrumenter"),
    ] = {}


class ApplicationConfig(BaseModel):
    """Application-level settings."""

    log_level: Annotated[
        str,
        Field(
            description="Logging level",
            pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        ),
    ] = "INFO"
    log_file: Annotated[
        Path | None,
        Field(description="Optional log file path"),
    ] = None


def _default_browser_args() -> dict[str, list[str]]:
    return {
        "Firefox": ["--no-remote"],
        "Chrome": [
            "--disable-extensions",
            "--memory-pressure-threshholds=1",
            "--disk-cache-size=0",
            "--disable-new-zip-unpacker",
        ],
    }


def _default_headless_browser_args() -> dict[str, list[str]]:
    return {
        "Firefox": ["--no-remote", "--headless"],
        "Chrome": ["--disable-gpu", "--headless", "--remote-debugging-port=9222"],
    }


class HarnessConfig(BaseModel):
    """Top-level harness configuration.

    Directory fields left unset default to ``<temp>/<prefix>-<instance_id>``;
    relative paths are resolved against ``cwd`` after validation, so every
    directory attribute is absolute on a validated instance.
    """

    instance_id: Annotated[
        str,
        Field(min_length=1, pattern=r"^[A-Za-z0-9_.\-]+$", description="Unique ID of this run"),
    ] = Field(default_factory=lambda: uuid4().hex[:12])
    mode: Annotated[HarnessMode, Field(description="Harness mode")] = "full"
    cwd: Annotated[Path, Field(description="Working directory for relative paths")] = Field(
        default_factory=Path.cwd
    )
    coverage_host: Annotated[str, Field(min_length=1, description="Host the content server binds")] = "localhost"
    coverage_port: Annotated[int, Field(ge=1, le=65535, description="Port the content server binds")] = 7000
    coverage_dir: Annotated[Path | None, Field(description="Where coverage files are written")] = None
    instrumented_source_dir: Annotated[Path | None, Field(description="Where instrumented source is written")] = None
    testem_dir: Annotated[Path | None, Field(description="Runner scratch directory")] = None
    reports_dir: Annotated[Path | None, Field(description="Where reports are written")] = None
    temp_root: Annotated[Path | None, Field(description="Root for default directories and stray runner data")] = None
    testem_temp_pattern: Annotated[
        str,
        Field(description="Regex matching stray runner directories in the temp root"),
    ] = r"^Temp-.+"
    cleanup: Annotated[CleanupPlan | None, Field(description="Cleanup plan (defaults per mode)")] = None
    wrapped_event_timeout: Annotated[
        int,
        Field(gt=0, description="Milliseconds to wait for fixture start/stop signals"),
    ] = 30000
    max_upload_size: Annotated[
        int,
        Field(gt=0, description="Largest coverage upload, in bytes, the receiver accepts"),
    ] = 50 * 1024 * 1024
    source_dirs: Annotated[dict[str, DirectoryDefinition], Field(description="Source directories")] = {}
    content_dirs: Annotated[dict[str, DirectoryDefinition], Field(description="Content directories")] = {}
    additional_proxies: Annotated[
        dict[str, str],
        Field(description="Extra URL paths proxied to the content server"),
    ] = {}
    test_pages: Annotated[list[str], Field(description="Test pages the runner loads")] = []
    reports: Annotated[list[str], Field(description="Report formats")] = ["text-summary", "html", "json-summary"]
    receiver_path: Annotated[str, Field(pattern=r"^/", description="URL path of the coverage receiver")] = (
        "/coverage"
    )
    instrumentation: Annotated[
        InstrumentationConfig,
        Field(description="Instrumentation command settings"),
    ] = InstrumentationConfig()
    report_command: Annotated[
        list[str],
        Field(min_length=1, description="Report command prefix"),
    ] = ["npx", "nyc", "report"]
    browser_args: Annotated[dict[str, list[str]], Field(description="Per-browser arguments")] = Field(
        default_factory=_default_browser_args
    )
    headless_browser_args: Annotated[
        dict[str, list[str]],
        Field(description="Per-browser arguments used when HEADLESS is set"),
    ] = Field(default_factory=_default_headless_browser_args)
    testem_options: Annotated[
        dict[str, object],
        Field(description="Runner option overrides"),
    ] = {}
    application: Annotated[ApplicationConfig, Field(description="Application settings")] = ApplicationConfig()

    @field_validator("testem_temp_pattern", mode="after")
    @classmethod
    def validate_temp_pattern(cls, v: str) -> str:
        """Validate that the stray directory pattern compiles."""
        try:
            _ = re.compile(v)
        except re.error as exc:
            msg = f"Invalid regular expression: {exc}"
            raise ValueError(msg) from exc
        return v

    @model_validator(mode="after")
    def resolve_directories(self) -> HarnessConfig:
        """Resolve cwd and fill in default run directories."""
        self.cwd = resolve_path(self.cwd)
        temp_root = resolve_path(self.temp_root) if self.temp_root is not None else Path(tempfile.gettempdir())
        self.temp_root = temp_root

        self.coverage_dir = self._resolve_dir(self.coverage_dir, temp_root, "coverage")
        self.instrumented_source_dir = self._resolve_dir(self.instrumented_source_dir, temp_root, "instrumented")
        self.testem_dir = self._resolve_dir(self.testem_dir, temp_root, "user_data_dir")
        self.reports_dir = self._resolve_dir(self.reports_dir, temp_root, "reports")

        if self.cleanup is None:
            preset = cleanup_presets()[_MODE_CLEANUP_PRESET[self.mode]]
            self.cleanup = CleanupPlan(initial=preset, final=list(preset))
        return self

    def _resolve_dir(self, value: Path | None, temp_root: Path, prefix: str) -> Path:
        if value is None:
            return generate_unique_dir_name(temp_root, prefix, self.instance_id)
        return resolve_path(value, cwd=self.cwd)

    @property
    def coverage_url(self) -> str:
        """Base URL of the content server."""
        return f"http://{self.coverage_host}:{self.coverage_port}"

    @property
    def collects_coverage(self) -> bool:
        """True if instrumented source and the coverage receiver are hosted."""
        return self.mode != "base"

    @property
    def instruments_source(self) -> bool:
        """True if source is instrumented as part of the startup chain."""
        return self.mode in ("instrumentation", "full")

    @property
    def generates_reports(self) -> bool:
        """True if reports are generated as part of the shutdown chain."""
        return self.mode == "full"

    @property
    def effective_additional_proxies(self) -> dict[str, str]:
        """Additional proxies including the receiver path in coverage modes."""
        proxies: dict[str, str] = {}
        if self.collects_coverage:
            proxies["coverage"] = self.receiver_path
        proxies.update(self.additional_proxies)
        return proxies

    def cleanup_definitions(self, stage: Literal["initial", "final"]) -> list[CleanupDefinition]:
        """Return cleanup definitions for a stage with placeholders expanded.

        Args:
            stage: ``initial`` or ``final``

        Returns:
            Definitions whose ``path`` values are concrete directory paths
        """
        plan = self.cleanup or CleanupPlan()
        definitions = plan.initial if stage == "initial" else plan.final
        replacements = {name: str(getattr(self, name)) for name in _DIR_PLACEHOLDERS}
        expanded: list[CleanupDefinition] = []
        for definition in definitions:
            path = definition.path
            for name, value in replacements.items():
                path = path.replace(f"{{{name}}}", value)
            expanded.append(definition.model_copy(update={"path": path}))
        return expanded


def resolve_env_var(value: str) -> str:
    """Resolve environment variable references in a string value.

    Args:
        value: String potentially containing ``${VARIABLE_NAME}`` references

    Returns:
        String with environment variables resolved

    Raises:
        EnvironmentVariableError: If a referenced environment variable is missing

    Examples:
        >>> os.environ["COVERAGE_PORT"] = "7010"
        >>> resolve_env_var("${COVERAGE_PORT}")
        '7010'
    """

    def replace_match(match: re.Match[str]) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)

        if env_value is None:
            msg = (
                f"Required environment variable '{var_name}' is not set. "
                f"Please set this variable before starting the harness."
            )
            raise EnvironmentVariableError(msg, {"variable": var_name})

        return env_value

    return ENV_VAR_PATTERN.sub(replace_match, value)


def resolve_env_vars_in_dict(data: Mapping[str, object]) -> dict[str, object]:
    """Recursively resolve environment variables in a dictionary.

    Args:
        data: Dictionary potentially containing environment variable references

    Returns:
        New dictionary with environment variables resolved

    Raises:
        EnvironmentVariableError: If a referenced environment variable is missing
    """
    result: dict[str, object] = {}

    for key, value in data.items():
        result[key] = _resolve_env_value(value)

    return result


def _resolve_env_value(value: object) -> object:
    if isinstance(value, str):
        return resolve_env_var(value)
    if isinstance(value, dict):
        # YAML data is untyped at load time; validated by Pydantic after resolution
        return resolve_env_vars_in_dict(value)  # pyright: ignore[reportUnknownArgumentType]  # YAML boundary
    if isinstance(value, list):
        return [_resolve_env_value(item) for item in value]  # pyright: ignore[reportUnknownVariableType]  # YAML list items
    return value


def load_config(config_path: Path, *, overrides: Mapping[str, object] | None = None) -> HarnessConfig:
    """Load and validate harness configuration from a YAML file.

    Args:
        config_path: Path to the configuration YAML file
        overrides: Top-level values applied on top of the file contents

    Returns:
        Validated HarnessConfig instance

    Raises:
        ConfigurationError: If the file cannot be loaded or is invalid
    """
    if not config_path.exists():
        msg = (
            f"Configuration file not found: {config_path}\n"
            f"Please create a configuration file at this location."
        )
        raise ConfigurationError(msg, {"config_path": str(config_path)})

    try:
        with config_path.open("r", encoding="utf-8") as f:
            raw_data: object = yaml.safe_load(f)  # pyright: ignore[reportAny]  # YAML boundary
    except yaml.YAMLError as e:
        msg = (
            f"Failed to parse YAML configuration file: {config_path}\n"
            f"YAML parsing error: {e}\n"
            f"Please check the file for syntax errors."
        )
        raise ConfigurationError(msg, {"config_path": str(config_path)}) from e
    except OSError as e:
        msg = f"Failed to read configuration file: {config_path}\nError: {e}\nPlease check file permissions."
        raise ConfigurationError(msg, {"config_path": str(config_path)}) from e

    if raw_data is None:
        raw_data = {}

    if not isinstance(raw_data, dict):
        msg = (
            f"Invalid configuration file format: {config_path}\n"
            f"Expected YAML dictionary at root level, got: {type(raw_data).__name__}"
        )
        raise ConfigurationError(msg, {"config_path": str(config_path)})

    try:
        resolved_data = resolve_env_vars_in_dict(raw_data)  # pyright: ignore[reportUnknownArgumentType]  # YAML boundary
    except EnvironmentVariableError as e:
        msg = f"Environment variable resolution failed in: {config_path}\n{e}"
        raise ConfigurationError(msg, {"config_path": str(config_path)}) from e

    if overrides:
        resolved_data.update(overrides)

    # Relative cwd values are relative to the configuration file, not the process
    cwd_value = resolved_data.get("cwd")
    if isinstance(cwd_value, str) and not cwd_value.startswith("%") and not Path(cwd_value).is_absolute():
        resolved_data["cwd"] = str(config_path.parent.resolve() / cwd_value)

    try:
        return HarnessConfig.model_validate(resolved_data)
    except ValidationError as e:
        error_lines = ["Configuration validation failed:", ""]
        for error in e.errors():
            field_path = " → ".join(str(loc) for loc in error["loc"])
            error_lines.append(f"  Field: {field_path}")
            error_lines.append(f"  Error: {error['msg']}")
            error_lines.append(f"  Type: {error['type']}")
            error_lines.append("")

        error_lines.append(f"Configuration file: {config_path}")
        error_lines.append("Please fix the above errors and try again.")

        raise ConfigurationError("\n".join(error_lines), {"config_path": str(config_path)}) from e
