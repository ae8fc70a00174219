"""Proxy map construction.

The runner serves test pages from its own port and forwards every hosted
directory to the content server. Directory definitions are expanded into
absolute paths plus a mount segment, ordered by priority within each group
(source first, then content), and each mount becomes a ``/<mount>`` proxy
entry. Additional proxy paths are appended after the directory groups.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path

from testem_coverage.core.config import DirectoryDefinition
from testem_coverage.core.events import order_by_priority
from testem_coverage.core.paths import resolve_path
from testem_coverage.types import ExpandedDirectory, ProxyMap

__all__ = [
    "construct_proxies",
    "expand_directories",
    "expand_instrumented_source_dirs",
    "expand_path",
    "extract_proxy_path",
    "order_directories",
]

logger = logging.getLogger(__name__)


def expand_path(key: str, definition: DirectoryDefinition, *, cwd: Path | None = None) -> ExpandedDirectory:
    """Expand a directory definition into an absolute path and mount segment.

    Args:
        key: Name of the definition (the target of ``before:``/``after:`` tags)
        definition: Directory definition
        cwd: Base directory for relative paths

    Returns:
        Expanded directory

    Examples:
        >>> expand_path("src", DirectoryDefinition(file_path="/work/src")).mount
        'src'
        >>> expand_path("lib", DirectoryDefinition(file_path="/work/lib", mount="vendor")).mount
        'vendor'
    """
    file_path = resolve_path(definition.file_path, cwd=cwd)
    mount = definition.mount or file_path.name
    return ExpandedDirectory(key=key, file_path=file_path, mount=mount, priority=definition.priority)


def expand_directories(
    definitions: Mapping[str, DirectoryDefinition],
    *,
    cwd: Path | None = None,
) -> list[ExpandedDirectory]:
    """Expand a group of definitions, preserving declaration order."""
    return [expand_path(key, definition, cwd=cwd) for key, definition in definitions.items()]


def order_directories(directories: list[ExpandedDirectory]) -> list[ExpandedDirectory]:
    """Order expanded directories by their priority tags.

    Raises:
        PriorityError: If the priorities cannot be ordered
    """
    return order_by_priority(
        directories,
        [directory.key for directory in directories],
        [directory.priority for directory in directories],
    )


def extract_proxy_path(directory: ExpandedDirectory) -> str:
    """Return the URL path a directory is proxied under.

    Examples:
        >>> extract_proxy_path(ExpandedDirectory(key="src", file_path=Path("/work/src"), mount="src"))
        '/src'
    """
    return "/" + directory.mount.strip("/")


def construct_proxies(
    source_dirs: Mapping[str, DirectoryDefinition],
    content_dirs: Mapping[str, DirectoryDefinition],
    additional_proxies: Mapping[str, str],
    coverage_url: str,
    *,
    cwd: Path | None = None,
) -> ProxyMap:
    """Construct the runner's proxy configuration.

    Each group is ordered independently; source entries precede content
    entries, which precede the additional paths. A later entry with the same
    path replaces an earlier one.

    Args:
        source_dirs: Named source directory definitions
        content_dirs: Named content directory definitions
        additional_proxies: Extra URL paths, keyed by name
        coverage_url: Base URL of the content server
        cwd: Base directory for relative paths

    Returns:
        Mapping of URL path to ``{"target": coverage_url}``

    Raises:
        PriorityError: If a group's priorities cannot be ordered
    """
    dir_paths: list[str] = []
    for group in (source_dirs, content_dirs):
        for directory in order_directories(expand_directories(group, cwd=cwd)):
            dir_paths.append(extract_proxy_path(directory))

    dir_paths.extend(additional_proxies.values())

    proxies: ProxyMap = {}
    for dir_path in dir_paths:
        if dir_path in proxies:
            logger.debug("Proxy path declared more than once, keeping the last", extra={"path": dir_path})
        proxies[dir_path] = {"target": coverage_url}
    return proxies


def expand_instrumented_source_dirs(
    source_dirs: Mapping[str, DirectoryDefinition],
    instrumented_source_dir: Path,
    *,
    cwd: Path | None = None,
) -> dict[str, DirectoryDefinition]:
    """Map source definitions onto their instrumented counterparts.

    Each source directory is instrumented into
    ``<instrumented_source_dir>/<mount>``; the returned definitions keep the
    original priorities and mounts so that proxies and routes are unchanged.

    Args:
        source_dirs: Named source directory definitions
        instrumented_source_dir: Root of the instrumented tree
        cwd: Base directory for relative paths

    Returns:
        Definitions pointing at the instrumented copies
    """
    instrumented: dict[str, DirectoryDefinition] = {}
    for key, definition in source_dirs.items():
        expanded = expand_path(key, definition, cwd=cwd)
        instrumented[key] = DirectoryDefinition(
            file_path=str(instrumented_source_dir / expanded.mount),
            priority=definition.priority,
            mount=expanded.mount,
        )
    return instrumented
