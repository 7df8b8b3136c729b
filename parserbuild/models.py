"""Core data models shared across parserbuild components."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class TargetDescriptor:
    """One runner/architecture combination the matrix fans out to."""

    os: str
    arch: str
    platform: str
    cross_compile: bool = False
    qemu_arch: Optional[str] = None


@dataclass(frozen=True)
class MatrixCell:
    """A single (language, target) build unit."""

    language: str
    target: TargetDescriptor

    def to_dict(self) -> Dict[str, Any]:
        entry: Dict[str, Any] = {
            "os": self.target.os,
            "arch": self.target.arch,
            "platform": self.target.platform,
            "cross_compile": self.target.cross_compile,
        }
        if self.target.qemu_arch:
            entry["qemu_arch"] = self.target.qemu_arch
        entry["language"] = self.language
        return entry


@dataclass(frozen=True)
class GrammarUnit:
    """A grammar.js discovered inside a cloned grammar repository."""

    grammar_file: str
    directory: str
    variant: str


@dataclass(frozen=True)
class BuildOutput:
    """An artifact written to the SHA-addressed output directory."""

    variant: str
    commit_sha: str
    platform: str
    arch: str
    extension: str
    path: Path
    size: int
    kind: str = "native"


@dataclass(frozen=True)
class BuildResult:
    """Everything a single builder invocation produced."""

    language: str
    commit_sha: str
    outputs: Tuple[BuildOutput, ...] = field(default_factory=tuple)

    @property
    def variants(self) -> Tuple[str, ...]:
        seen: list[str] = []
        for output in self.outputs:
            if output.variant not in seen:
                seen.append(output.variant)
        return tuple(seen)
