#!/usr/bin/env python3
"""Package layering validation script.

Enforces the architectural rule that lower layers never import higher ones:

- ``types/`` and ``utils/`` must not import from ``testem_coverage.core`` or
  ``testem_coverage.app``
- ``core/`` must not import from ``testem_coverage.app``

Exit codes:
    0: No violations found (clean)
    1: Violations detected (architectural rule broken)
"""

from __future__ import annotations

import re
import sys
from pathlib import Path
from typing import Final

# ANSI color codes for terminal output
RED: Final[str] = "\033[91m"
GREEN: Final[str] = "\033[92m"
YELLOW: Final[str] = "\033[93m"
RESET: Final[str] = "\033[0m"

# Layer directory -> packages it must not import from
FORBIDDEN_IMPORTS: Final[dict[str, tuple[str, ...]]] = {
    "types": ("core", "app"),
    "utils": ("core", "app"),
    "core": ("app",),
}

IMPORT_PATTERN: Final[re.Pattern[str]] = re.compile(r"^\s*(?:from|import)\s+testem_coverage\.(\w+)")


def check_file(file_path: Path, forbidden: tuple[str, ...]) -> list[tuple[int, str]]:
    """Check a single Python file for layering violations.

    Args:
        file_path: Path to the Python file to check.
        forbidden: Subpackages the file must not import from.

    Returns:
        List of (line_number, violation_description) tuples.
    """
    violations: list[tuple[int, str]] = []

    try:
        lines = file_path.read_text(encoding="utf-8").splitlines()
    except OSError as e:
        print(f"{YELLOW}Warning: Could not read {file_path}: {e}{RESET}", file=sys.stderr)
        return violations

    for line_num, line in enumerate(lines, start=1):
        match = IMPORT_PATTERN.match(line)
        if match and match.group(1) in forbidden:
            violations.append((line_num, f"Import from higher layer '{match.group(1)}': {line.strip()}"))

    return violations


def scan_directory(base_path: Path, layer: str) -> dict[Path, list[tuple[int, str]]]:
    """Scan one layer directory for violations.

    Args:
        base_path: Root path of the testem_coverage package.
        layer: Name of the layer directory.

    Returns:
        Dictionary mapping file paths to their violations.
    """
    dir_path = base_path / layer
    if not dir_path.exists():
        print(f"{YELLOW}Warning: Layer directory {dir_path} does not exist{RESET}", file=sys.stderr)
        return {}

    violations_by_file: dict[Path, list[tuple[int, str]]] = {}
    for py_file in dir_path.rglob("*.py"):
        if "__pycache__" in py_file.parts:
            continue
        file_violations = check_file(py_file, FORBIDDEN_IMPORTS[layer])
        if file_violations:
            violations_by_file[py_file] = file_violations

    return violations_by_file


def main() -> int:
    """Main entry point for the layering check.

    Returns:
        Exit code: 0 if no violations, 1 if violations found.
    """
    project_root = Path(__file__).parent.parent
    src_path = project_root / "src" / "testem_coverage"

    if not src_path.exists():
        print(f"{RED}Error: Could not find src/testem_coverage directory{RESET}", file=sys.stderr)
        return 1

    print("Checking package layering in core, types, and utils modules...")
    print(f"Scanning: {src_path}\n")

    all_violations: dict[Path, list[tuple[int, str]]] = {}
    for layer in FORBIDDEN_IMPORTS:
        all_violations.update(scan_directory(src_path, layer))

    if not all_violations:
        print(f"{GREEN}✓ No layering violations found!{RESET}")
        return 0

    total_violations = sum(len(v) for v in all_violations.values())
    print(f"{RED}✗ Found {total_violations} layering violations:{RESET}\n")

    for file_path, violations in sorted(all_violations.items()):
        try:
            rel_path = file_path.relative_to(project_root)
        except ValueError:
            rel_path = file_path

        print(f"{RED}{rel_path}{RESET}")
        for line_num, description in violations:
            print(f"  {line_num}: {description}")
        print()

    print(f"{RED}Layering check failed!{RESET}")
    print("\nMove shared code down into types/ or utils/, or invert the dependency.")
    return 1


if __name__ == "__main__":
    sys.exit(main())
