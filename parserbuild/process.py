"""Subprocess helpers shared by components that shell out to external tools."""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path
from typing import Callable, Iterable, Mapping, Optional

CommandRunner = Callable[..., str]
ToolLocator = Callable[[str], Optional[str]]


def run_command(
    args: Iterable[str],
    *,
    cwd: Path,
    env: Mapping[str, str] | None = None,
    capture_output: bool = False,
    timeout: float | None = None,
) -> str:
    """Run a command to completion, raising on non-zero exit or timeout.

    Raises ``subprocess.CalledProcessError`` when the command fails,
    ``subprocess.TimeoutExpired`` when ``timeout`` elapses and
    ``FileNotFoundError`` when the executable does not exist.
    """
    completed = subprocess.run(
        list(args),
        cwd=str(cwd),
        env=dict(env) if env is not None else None,
        check=True,
        text=True,
        capture_output=capture_output,
        timeout=timeout,
    )
    if capture_output:
        return completed.stdout
    return ""


def find_tool(name: str) -> Optional[str]:
    return shutil.which(name)


__all__ = ["CommandRunner", "ToolLocator", "find_tool", "run_command"]
