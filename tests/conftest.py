"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest
from aiohttp.test_utils import unused_port

from testem_coverage.core.config import HarnessConfig

type ConfigFactory = Callable[..., HarnessConfig]


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """Create a small project tree with source and test content."""
    root = tmp_path / "project"
    (root / "src").mkdir(parents=True)
    (root / "src" / "app.js").write_text("function add(a, b) { return a + b; }\n", encoding="utf-8")
    (root / "tests" / "web").mkdir(parents=True)
    (root / "tests" / "web" / "index.html").write_text("<html><body>tests</body></html>\n", encoding="utf-8")
    return root


@pytest.fixture
def make_config(tmp_path: Path, project_dir: Path) -> ConfigFactory:
    """Build HarnessConfig instances rooted in the temporary project.

    Scratch directories live under ``tmp_path/scratch`` so tests never touch
    the real system temp directory.
    """
    temp_root = tmp_path / "scratch"
    temp_root.mkdir(exist_ok=True)

    def _factory(**overrides: object) -> HarnessConfig:
        data: dict[str, object] = {
            "instance_id": "run1",
            "cwd": str(project_dir),
            "temp_root": str(temp_root),
            "coverage_host": "127.0.0.1",
            "coverage_port": unused_port(),
            "wrapped_event_timeout": 2000,
            "source_dirs": {"src": "src"},
            "content_dirs": {"tests": {"file_path": "tests", "priority": "last"}},
            "test_pages": ["tests/web/index.html"],
        }
        data.update(overrides)
        return HarnessConfig.model_validate(data)

    return _factory
