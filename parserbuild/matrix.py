"""Build matrix planning: languages x fixed runner targets."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Iterable, List, Mapping, Sequence

from .models import MatrixCell, TargetDescriptor

ALL = "all"

TARGETS: Sequence[TargetDescriptor] = (
    TargetDescriptor(os="ubuntu-latest", arch="x64", platform="linux"),
    TargetDescriptor(
        os="ubuntu-latest", arch="arm64", platform="linux", cross_compile=True, qemu_arch="arm64"
    ),
    TargetDescriptor(os="macos-latest", arch="arm64", platform="darwin"),
    TargetDescriptor(os="macos-latest", arch="x64", platform="darwin", cross_compile=True),
    TargetDescriptor(os="windows-latest", arch="x64", platform="win32"),
)

PLATFORM_SELECTORS: Mapping[str, str | None] = {
    "all": None,
    "linux-only": "linux",
    "macos-only": "darwin",
    "windows-only": "win32",
}


def select_targets(platforms: str = ALL) -> List[TargetDescriptor]:
    """Return the targets kept by a platform selector.

    ``all`` keeps every target. The ``*-only`` selectors keep the native
    targets of one OS, skipping cross-compiled and emulated cells.
    """
    try:
        platform = PLATFORM_SELECTORS[platforms]
    except KeyError:
        choices = ", ".join(PLATFORM_SELECTORS)
        raise ValueError(f"Unknown platform selector '{platforms}' (expected one of: {choices})") from None
    if platform is None:
        return list(TARGETS)
    return [
        target
        for target in TARGETS
        if target.platform == platform and not target.cross_compile
    ]


def select_languages(language: str, catalog: Iterable[str]) -> List[str]:
    if language == ALL:
        return list(catalog)
    return [language]


def plan_matrix(
    language: str,
    catalog: Iterable[str],
    platforms: str = ALL,
) -> List[MatrixCell]:
    """Expand a language selector into one MatrixCell per (language, target)."""
    targets = select_targets(platforms)
    return [
        MatrixCell(language=name, target=target)
        for name in select_languages(language, catalog)
        for target in targets
    ]


def matrix_to_json(cells: Sequence[MatrixCell]) -> str:
    return json.dumps([cell.to_dict() for cell in cells], separators=(",", ":"))


def write_github_output(cells: Sequence[MatrixCell], output_file: Path | str | None = None) -> bool:
    """Append ``matrix=<json>`` to the GitHub Actions output file, if one is configured."""
    target = output_file or os.environ.get("GITHUB_OUTPUT")
    if not target:
        return False
    with Path(target).open("a", encoding="utf-8") as handle:
        handle.write(f"matrix={matrix_to_json(cells)}\n")
    return True


__all__ = [
    "ALL",
    "PLATFORM_SELECTORS",
    "TARGETS",
    "matrix_to_json",
    "plan_matrix",
    "select_languages",
    "select_targets",
    "write_github_output",
]
