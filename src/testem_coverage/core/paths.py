"""Path resolution for package-relative, cwd-relative and absolute paths.

Configuration values may refer to directories in three forms:

- ``%package_name/sub/dir``: relative to the root of an importable package (or
  of a root registered with :func:`register_package_root`)
- ``relative/dir``: relative to the configured working directory
- ``/absolute/dir``: used as-is

Every other component resolves its paths through this module.
"""

from __future__ import annotations

import importlib.util
import logging
import os
import re
from pathlib import Path
from typing import Final

from testem_coverage.exceptions import PathResolutionError

__all__ = [
    "PACKAGE_PATH_PATTERN",
    "generate_unique_dir_name",
    "register_package_root",
    "resolve_path",
]

logger = logging.getLogger(__name__)

# Matches "%package_name" optionally followed by "/rest/of/path"
PACKAGE_PATH_PATTERN: Final[re.Pattern[str]] = re.compile(r"^%([A-Za-z0-9_.\-]+)(?:[/\\](.*))?$")

_registered_roots: dict[str, Path] = {}


def register_package_root(name: str, root: Path) -> None:
    """Register an explicit root directory for ``%name`` references.

    Registered roots take precedence over importable packages, which allows
    non-Python content trees (for example a JavaScript project under test) to be
    addressed with the same syntax.

    Args:
        name: Package name used after the ``%`` sigil
        root: Directory the name resolves to
    """
    _registered_roots[name] = root.resolve()
    logger.debug("Registered package root", extra={"package": name, "root": str(root)})


def _package_root(name: str) -> Path:
    if name in _registered_roots:
        return _registered_roots[name]

    normalized = name.replace("-", "_")
    try:
        spec = importlib.util.find_spec(normalized)
    except (ImportError, ValueError) as exc:
        msg = f"Cannot locate package '{name}' referenced in path"
        raise PathResolutionError(msg, {"package": name}) from exc

    if spec is None:
        msg = f"Cannot locate package '{name}' referenced in path"
        raise PathResolutionError(msg, {"package": name})

    if spec.submodule_search_locations:
        return Path(next(iter(spec.submodule_search_locations))).resolve()
    if spec.origin:
        return Path(spec.origin).resolve().parent

    msg = f"Package '{name}' has no filesystem location"
    raise PathResolutionError(msg, {"package": name})


def resolve_path(path: str | os.PathLike[str], *, cwd: Path | None = None) -> Path:
    """Resolve a logical path to an absolute filesystem path.

    Args:
        path: Package-relative (``%pkg/...``), relative or absolute path
        cwd: Base directory for relative paths (defaults to the process cwd)

    Returns:
        Absolute, normalized path

    Raises:
        PathResolutionError: If a referenced package cannot be located

    Examples:
        >>> resolve_path("/tmp/coverage")
        PosixPath('/tmp/coverage')
        >>> resolve_path("reports", cwd=Path("/work"))
        PosixPath('/work/reports')
    """
    raw = os.fspath(path)
    match = PACKAGE_PATH_PATTERN.match(raw)
    if match:
        root = _package_root(match.group(1))
        remainder = match.group(2)
        return (root / remainder).resolve() if remainder else root

    candidate = Path(raw).expanduser()
    if candidate.is_absolute():
        return candidate.resolve()

    base = cwd if cwd is not None else Path.cwd()
    return (base / candidate).resolve()


def generate_unique_dir_name(base_path: str | os.PathLike[str], prefix: str, suffix: str) -> Path:
    """Generate a unique subdirectory path from a prefix and suffix.

    Args:
        base_path: Full or package-relative path the directory will live under
        prefix: Prefix of the directory name (e.g. ``coverage``)
        suffix: Suffix of the directory name (typically the run ID)

    Returns:
        ``<base_path>/<prefix>-<suffix>``

    Raises:
        PathResolutionError: If ``base_path`` cannot be resolved
    """
    try:
        resolved_base = resolve_path(base_path)
    except PathResolutionError:
        logger.exception(
            "Error generating unique dir name",
            extra={"base_path": os.fspath(base_path), "prefix": prefix},
        )
        raise
    return resolved_base / f"{prefix}-{suffix}"
