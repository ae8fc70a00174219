"""Test module imports and package layering."""

from __future__ import annotations

import importlib
from types import ModuleType

import pytest

MODULES = [
    "testem_coverage",
    "testem_coverage.__main__",
    "testem_coverage.app",
    "testem_coverage.app.cli",
    "testem_coverage.app.runner",
    "testem_coverage.core",
    "testem_coverage.core.cleanup",
    "testem_coverage.core.config",
    "testem_coverage.core.events",
    "testem_coverage.core.instrumenter",
    "testem_coverage.core.orchestrator",
    "testem_coverage.core.paths",
    "testem_coverage.core.proxies",
    "testem_coverage.core.receiver",
    "testem_coverage.core.reporter",
    "testem_coverage.core.server",
    "testem_coverage.exceptions",
    "testem_coverage.types",
    "testem_coverage.utils",
    "testem_coverage.utils.logging",
]


@pytest.mark.unit
class TestImports:
    """Test that every module can be imported."""

    @pytest.mark.parametrize("module_name", MODULES)
    def test_module_imports(self, module_name: str) -> None:
        module = importlib.import_module(module_name)

        assert isinstance(module, ModuleType)

    def test_public_api_is_exported(self) -> None:
        import testem_coverage.core as core

        for name in core.__all__:
            assert hasattr(core, name), name

    def test_main_entry_point(self) -> None:
        from testem_coverage import main

        assert callable(main)
