"""Platform and architecture naming used in artifact filenames."""

from __future__ import annotations

import platform as _platform
from dataclasses import dataclass
from typing import Callable, Optional

_ARCH_ALIASES = {
    "x86_64": "x64",
    "amd64": "x64",
    "x64": "x64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "arm",
    "arm": "arm",
}

_WINDOWS_PREFIXES = ("mingw", "cygwin", "msys", "windows", "win32")

_EXTENSIONS = {
    "linux": "so",
    "darwin": "dylib",
    "win32": "dll",
}

_APPLE_ARCH = {
    "x64": "x86_64",
    "arm64": "arm64",
}


class UnsupportedPlatformError(ValueError):
    """Raised when a platform name has no artifact mapping."""


@dataclass(frozen=True)
class Target:
    """Effective platform/architecture labels for one build."""

    platform: str
    arch: str

    @property
    def extension(self) -> str:
        return library_extension(self.platform)

    @property
    def artifact_name(self) -> str:
        return f"{self.platform}-{self.arch}.{self.extension}"


def normalize_arch(arch: str) -> str:
    """Map architecture synonyms onto x64/arm64/arm; unknown names pass through."""
    value = arch.strip()
    return _ARCH_ALIASES.get(value.lower(), value)


def normalize_platform(name: str) -> str:
    """Map a platform identifier onto linux/darwin/win32."""
    value = name.strip().lower()
    if value in ("linux", "darwin"):
        return value
    if value.startswith(_WINDOWS_PREFIXES):
        return "win32"
    raise UnsupportedPlatformError(f"Unsupported platform: {name}")


def library_extension(platform: str) -> str:
    try:
        return _EXTENSIONS[platform]
    except KeyError:
        raise UnsupportedPlatformError(f"Unsupported platform: {platform}") from None


def apple_arch(arch: str) -> str:
    """Return the clang ``-arch`` value for a normalised architecture."""
    return _APPLE_ARCH.get(arch, arch)


def is_windows_host(system: str | None = None) -> bool:
    value = (system if system is not None else _platform.system()).lower()
    return value.startswith(_WINDOWS_PREFIXES)


def resolve_target(
    platform: Optional[str] = None,
    arch: Optional[str] = None,
    *,
    system: Callable[[], str] = _platform.system,
    machine: Callable[[], str] = _platform.machine,
) -> Target:
    """Return the build target, preferring explicit values over host probing.

    Explicit values are only used when both are supplied; otherwise the host
    system and machine are probed. Either way the names are normalised, and an
    unrecognised platform raises ``UnsupportedPlatformError``.
    """
    if platform and arch:
        raw_platform, raw_arch = platform, arch
    else:
        raw_platform, raw_arch = system(), machine()
    return Target(platform=normalize_platform(raw_platform), arch=normalize_arch(raw_arch))


__all__ = [
    "Target",
    "UnsupportedPlatformError",
    "apple_arch",
    "is_windows_host",
    "library_extension",
    "normalize_arch",
    "normalize_platform",
    "resolve_target",
]
