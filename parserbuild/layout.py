"""Grammar discovery and the versioned artifact directory layout."""

from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import Iterator, List

from .models import GrammarUnit

GRAMMAR_FILENAME = "grammar.js"
LATEST = "latest"
WASM_FILENAME = "parser.wasm"

_EXCLUDED_DIRS = {
    ".git",
    "node_modules",
    ".build",
}

# Subdirectories whose name is itself the published variant.
_NAMED_VARIANTS = {"typescript", "tsx"}
_VARIANT_ALIASES = {"php_only": "php"}


def derive_variant(grammar_dir: str, language: str) -> str:
    """Return the language variant a grammar directory publishes under.

    ``grammar_dir`` is relative to the clone root, ``"."`` meaning the root.
    """
    normalized = grammar_dir.replace("\\", "/").strip("/")
    if normalized in ("", "."):
        return language
    name = normalized.rsplit("/", 1)[-1]
    if name in _NAMED_VARIANTS:
        return name
    return _VARIANT_ALIASES.get(name, language)


def _iter_grammar_files(root: Path) -> Iterator[Path]:
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(name for name in dirnames if name not in _EXCLUDED_DIRS)
        if GRAMMAR_FILENAME in filenames:
            yield Path(dirpath) / GRAMMAR_FILENAME


def discover_grammars(root: Path, language: str) -> List[GrammarUnit]:
    """Find every grammar.js under ``root``, skipping dependency and build caches."""
    units: List[GrammarUnit] = []
    for grammar_file in _iter_grammar_files(root):
        directory = grammar_file.parent.relative_to(root).as_posix()
        units.append(
            GrammarUnit(
                grammar_file=grammar_file.relative_to(root).as_posix(),
                directory=directory,
                variant=derive_variant(directory, language),
            )
        )
    return units


class ArtifactLayout:
    """Computes and populates ``<root>/<variant>/<sha|latest>/`` directories."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def sha_dir(self, variant: str, commit_sha: str) -> Path:
        return self.root / variant / commit_sha

    def latest_dir(self, variant: str) -> Path:
        return self.root / variant / LATEST

    def prepare(self, variant: str, commit_sha: str) -> tuple[Path, Path]:
        sha_dir = self.sha_dir(variant, commit_sha)
        latest_dir = self.latest_dir(variant)
        sha_dir.mkdir(parents=True, exist_ok=True)
        latest_dir.mkdir(parents=True, exist_ok=True)
        return sha_dir, latest_dir

    def place(self, source: Path, variant: str, commit_sha: str, filename: str) -> Path:
        destination = self.sha_dir(variant, commit_sha) / filename
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, destination)
        return destination

    def mirror_latest(self, variant: str, commit_sha: str) -> bool:
        """Replace ``latest/`` with the SHA directory when it holds any file.

        Returns False and leaves ``latest/`` untouched when there is nothing
        to mirror.
        """
        sha_dir = self.sha_dir(variant, commit_sha)
        if not sha_dir.is_dir() or not any(path.is_file() for path in sha_dir.iterdir()):
            return False
        latest_dir = self.latest_dir(variant)
        if latest_dir.exists():
            shutil.rmtree(latest_dir)
        shutil.copytree(sha_dir, latest_dir)
        return True


__all__ = [
    "ArtifactLayout",
    "GRAMMAR_FILENAME",
    "LATEST",
    "WASM_FILENAME",
    "derive_variant",
    "discover_grammars",
]
