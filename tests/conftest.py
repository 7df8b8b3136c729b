from __future__ import annotations

import logging
from pathlib import Path

import pytest

from parserbuild.config import LanguageSpec


@pytest.fixture(autouse=True)
def _propagate_parserbuild_logs(monkeypatch: pytest.MonkeyPatch) -> None:
    """Let caplog see records even after the CLI has configured logging."""
    monkeypatch.setattr(logging.getLogger("parserbuild"), "propagate", True)


@pytest.fixture
def output_root(tmp_path: Path) -> Path:
    """Artifact output root inside the pytest tmp_path."""
    return tmp_path / "artifacts"


@pytest.fixture
def catalog() -> dict[str, LanguageSpec]:
    return {
        "python": LanguageSpec("python", "https://github.com/tree-sitter/tree-sitter-python", "master"),
        "typescript": LanguageSpec(
            "typescript", "https://github.com/tree-sitter/tree-sitter-typescript", "master"
        ),
        "php": LanguageSpec("php", "https://github.com/tree-sitter/tree-sitter-php", "master"),
    }
