"""Tests for path resolution."""

from __future__ import annotations

from pathlib import Path

import pytest

from testem_coverage.core.paths import (
    generate_unique_dir_name,
    register_package_root,
    resolve_path,
)
from testem_coverage.exceptions import PathResolutionError


@pytest.mark.unit
class TestResolvePath:
    """Test resolution of the three path forms."""

    def test_absolute_path_is_kept(self, tmp_path: Path) -> None:
        assert resolve_path(str(tmp_path / "coverage")) == (tmp_path / "coverage").resolve()

    def test_relative_path_uses_cwd(self, tmp_path: Path) -> None:
        assert resolve_path("reports/html", cwd=tmp_path) == (tmp_path / "reports" / "html").resolve()

    def test_relative_path_is_normalized(self, tmp_path: Path) -> None:
        assert resolve_path("a/../b", cwd=tmp_path) == (tmp_path / "b").resolve()

    def test_importable_package_reference(self) -> None:
        resolved = resolve_path("%testem_coverage/core")

        assert resolved.name == "core"
        assert (resolved / "paths.py").is_file()

    def test_bare_package_reference_is_package_root(self) -> None:
        assert (resolve_path("%testem_coverage") / "__init__.py").is_file()

    def test_registered_root_wins(self, tmp_path: Path) -> None:
        register_package_root("frontend-app", tmp_path)

        assert resolve_path("%frontend-app/dist") == tmp_path.resolve() / "dist"

    def test_unknown_package_raises(self) -> None:
        with pytest.raises(PathResolutionError, match="Cannot locate package"):
            _ = resolve_path("%no_such_package_anywhere/x")


@pytest.mark.unit
class TestPathHelpers:
    """Test helpers built on resolve_path."""

    def test_generate_unique_dir_name(self, tmp_path: Path) -> None:
        assert generate_unique_dir_name(tmp_path, "coverage", "abc") == tmp_path.resolve() / "coverage-abc"

    def test_generate_unique_dir_name_propagates_resolution_errors(self) -> None:
        with pytest.raises(PathResolutionError):
            _ = generate_unique_dir_name("%no_such_package_anywhere", "coverage", "abc")
