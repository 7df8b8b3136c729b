"""Markdown build summary for CI step summaries."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from .matrix import ALL
from .upload import find_artifacts


def human_size(size: int) -> str:
    if size < 1024:
        return f"{size}B"
    value = float(size)
    unit = "K"
    for unit in ("K", "M", "G"):
        value /= 1024
        if value < 1024:
            break
    return f"{value:.1f}{unit}" if value < 10 else f"{value:.0f}{unit}"


def render_summary(
    root: Path,
    language: str,
    bucket: Optional[str],
    prefix: str = "tree-sitter/parsers",
) -> str:
    if language == ALL:
        heading = "## 🎉 Build Summary for All Languages"
    else:
        heading = f"## 🎉 Build Summary for {language}"

    lines = [heading, "", "### Built Files"]
    artifacts = sorted(find_artifacts(root), key=lambda path: path.as_posix())
    if not artifacts:
        lines.append("_No artifacts were built._")
    for path in artifacts:
        lines.append(f"- `{path.name}` ({human_size(path.stat().st_size)})")

    location = f"s3://{bucket or '<bucket>'}/{prefix.strip('/')}/"
    if language != ALL:
        location += f"tree-sitter-{language}/"
    lines.extend(["", "### S3 Location", f"Files uploaded to: `{location}`"])
    return "\n".join(lines) + "\n"


def write_summary(text: str, summary_file: Path | str | None = None) -> bool:
    """Append the summary to ``$GITHUB_STEP_SUMMARY`` when available."""
    target = summary_file or os.environ.get("GITHUB_STEP_SUMMARY")
    if not target:
        return False
    with Path(target).open("a", encoding="utf-8") as handle:
        handle.write(text)
    return True


__all__ = ["human_size", "render_summary", "write_summary"]
