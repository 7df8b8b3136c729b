"""macOS code signing and notarization for built dylibs."""

from __future__ import annotations

import os
import subprocess
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Mapping, Optional

from .logging import get_logger
from .process import CommandRunner, run_command

DEFAULT_SIGN_TIMEOUT = 300.0
DEFAULT_NOTARIZE_TIMEOUT = 900.0


class SigningError(RuntimeError):
    """Raised when signing, verification or notarization fails."""


@dataclass(frozen=True)
class SigningCredentials:
    """Apple credentials, passed straight through to codesign and notarytool."""

    identity: Optional[str] = None
    team_id: Optional[str] = None
    apple_id: Optional[str] = None
    password: Optional[str] = None

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "SigningCredentials":
        environ = os.environ if env is None else env
        return cls(
            identity=environ.get("APPLE_IDENTITY") or None,
            team_id=environ.get("APPLE_TEAM_ID") or None,
            apple_id=environ.get("APPLE_ID") or None,
            password=environ.get("APPLE_APP_SPECIFIC_PASSWORD") or None,
        )

    def missing(self) -> List[str]:
        names = {
            "APPLE_IDENTITY": self.identity,
            "APPLE_TEAM_ID": self.team_id,
            "APPLE_ID": self.apple_id,
            "APPLE_APP_SPECIFIC_PASSWORD": self.password,
        }
        return [name for name, value in names.items() if not value]


@dataclass(frozen=True)
class SigningOutcome:
    signed: tuple[Path, ...]
    archive: Optional[Path]


def archive_name(language: str, platform: str, arch: str) -> str:
    return f"parsers-{language}-{platform}-{arch}.zip"


def find_dylibs(root: Path) -> List[Path]:
    if not root.is_dir():
        return []
    return sorted(path for path in root.rglob("*.dylib") if path.is_file())


class MacSigner:
    """Signs, verifies and notarizes every dylib under an artifacts tree."""

    def __init__(
        self,
        credentials: SigningCredentials,
        runner: CommandRunner | None = None,
        *,
        sign_timeout: float = DEFAULT_SIGN_TIMEOUT,
        notarize_timeout: float = DEFAULT_NOTARIZE_TIMEOUT,
    ) -> None:
        self.credentials = credentials
        self._runner = runner or run_command
        self.sign_timeout = sign_timeout
        self.notarize_timeout = notarize_timeout
        self.logger = get_logger("signing")

    def run(
        self,
        root: Path,
        *,
        language: str,
        platform: str,
        arch: str,
        workdir: Path | None = None,
    ) -> SigningOutcome:
        """Sign and verify every dylib under ``root``, then notarize them as one archive."""
        missing = self.credentials.missing()
        if missing:
            raise SigningError(f"Missing signing credentials: {', '.join(missing)}")

        dylibs = find_dylibs(root)
        if not dylibs:
            self.logger.info("No dylib files under %s; nothing to sign", root)
            return SigningOutcome(signed=(), archive=None)

        cwd = workdir or Path.cwd()
        self.sign_all(dylibs, cwd=cwd)
        self.verify_all(dylibs, cwd=cwd)
        archive = self.archive(dylibs, cwd / archive_name(language, platform, arch), base=cwd)
        self.notarize(archive, cwd=cwd)
        return SigningOutcome(signed=tuple(dylibs), archive=archive)

    def sign_all(self, dylibs: Iterable[Path], *, cwd: Path) -> None:
        for dylib in dylibs:
            self.logger.info("Signing: %s", dylib)
            self._call(
                [
                    "codesign",
                    "--force",
                    "--timestamp",
                    "--sign",
                    str(self.credentials.identity),
                    "--team-id",
                    str(self.credentials.team_id),
                    "--options",
                    "runtime",
                    "--verbose",
                    str(dylib),
                ],
                cwd=cwd,
                timeout=self.sign_timeout,
                step=f"codesign {dylib.name}",
            )

    def verify_all(self, dylibs: Iterable[Path], *, cwd: Path) -> None:
        for dylib in dylibs:
            self.logger.info("Verifying signature for: %s", dylib)
            self._call(
                ["codesign", "--verify", "--deep", "--verbose=4", str(dylib)],
                cwd=cwd,
                timeout=None,
                step=f"codesign --verify {dylib.name}",
            )

    def archive(self, dylibs: Iterable[Path], destination: Path, *, base: Path) -> Path:
        destination.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(destination, "w", compression=zipfile.ZIP_DEFLATED) as bundle:
            for dylib in dylibs:
                bundle.write(dylib, arcname=_archive_member(dylib, base))
        self.logger.info("Created notarization archive %s", destination)
        return destination

    def notarize(self, archive: Path, *, cwd: Path) -> None:
        self.logger.info("Submitting %s for notarization", archive.name)
        self._call(
            [
                "xcrun",
                "notarytool",
                "submit",
                str(archive),
                "--apple-id",
                str(self.credentials.apple_id),
                "--password",
                str(self.credentials.password),
                "--team-id",
                str(self.credentials.team_id),
                "--wait",
                "--verbose",
            ],
            cwd=cwd,
            timeout=self.notarize_timeout,
            step="notarytool submit",
        )

    def _call(self, args: List[str], *, cwd: Path, timeout: float | None, step: str) -> None:
        # Arguments carry secrets; errors report the step name only.
        try:
            self._runner(args, cwd=cwd, timeout=timeout)
        except subprocess.TimeoutExpired as exc:
            raise SigningError(f"{step} timed out after {timeout:.0f}s") from exc
        except subprocess.CalledProcessError as exc:
            raise SigningError(f"{step} failed with exit code {exc.returncode}") from exc
        except FileNotFoundError as exc:
            raise SigningError(f"{step} failed: executable '{args[0]}' not found") from exc


def _archive_member(path: Path, base: Path) -> str:
    try:
        return path.resolve().relative_to(base.resolve()).as_posix()
    except ValueError:
        return path.name


__all__ = [
    "MacSigner",
    "SigningCredentials",
    "SigningError",
    "SigningOutcome",
    "archive_name",
    "find_dylibs",
]
