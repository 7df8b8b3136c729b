"""Run one matrix cell end to end: build, then sign on macOS."""

from __future__ import annotations

import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional

from .builder import BuildError, ParserBuilder
from .config import LanguageSpec, Settings, load_catalog, lookup_language
from .logging import get_logger
from .models import BuildResult, MatrixCell
from .process import CommandRunner, run_command
from .signing import MacSigner, SigningCredentials, SigningError, SigningOutcome

CONTAINER_WORKSPACE = "/workspace"


@dataclass
class JobOutcome:
    """Result of a matrix cell run."""

    cell: MatrixCell
    result: Optional[BuildResult]
    signing: Optional[SigningOutcome]
    containerized: bool = False


class JobRunner:
    """Executes a MatrixCell the way one CI matrix job does."""

    def __init__(
        self,
        settings: Settings,
        *,
        catalog: Mapping[str, LanguageSpec] | None = None,
        builder: ParserBuilder | None = None,
        runner: CommandRunner | None = None,
        signer_factory: Callable[[SigningCredentials], MacSigner] | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.settings = settings
        self._catalog = dict(catalog) if catalog is not None else None
        self._runner = runner or run_command
        self.builder = builder or ParserBuilder(self._runner, abi_version=settings.abi_version)
        self._signer_factory = signer_factory or self._default_signer
        self._env = env
        self.logger = get_logger("jobs")

    @property
    def catalog(self) -> Dict[str, LanguageSpec]:
        if self._catalog is None:
            self._catalog = load_catalog(self.settings.catalog)
        return self._catalog

    def run(
        self,
        cell: MatrixCell,
        *,
        output_dir: Path | str | None = None,
        workdir: Path | None = None,
    ) -> JobOutcome:
        spec = lookup_language(self.catalog, cell.language)
        target = cell.target
        output = Path(output_dir or self.settings.output_dir)
        cwd = (workdir or Path.cwd()).resolve()
        self.logger.info(
            "Job %s on %s (%s/%s)", cell.language, target.os, target.platform, target.arch
        )

        result: Optional[BuildResult] = None
        if target.qemu_arch:
            self._build_in_container(cell, spec, output, cwd)
        else:
            if not output.is_absolute():
                output = cwd / output
            result = self.builder.build(
                cell.language,
                spec.repo,
                spec.ref,
                output,
                arch=target.arch,
                platform=target.platform,
                cross_compile=target.cross_compile,
            )

        signing: Optional[SigningOutcome] = None
        if target.platform == "darwin":
            signing = self._sign(cell, output if output.is_absolute() else cwd / output, cwd)

        return JobOutcome(
            cell=cell,
            result=result,
            signing=signing,
            containerized=bool(target.qemu_arch),
        )

    def container_command(
        self, cell: MatrixCell, spec: LanguageSpec, output: str, cwd: Path
    ) -> List[str]:
        """Return the ``docker run`` invocation for an emulated cell."""
        target = cell.target
        build_args = [
            "parserbuild",
            "build",
            cell.language,
            spec.repo,
            spec.ref,
            output,
            target.arch,
            target.platform,
            "true" if target.cross_compile else "false",
        ]
        steps = list(self.settings.container.setup)
        steps.append(shlex.join(build_args))
        return [
            "docker",
            "run",
            "--rm",
            "-v",
            f"{cwd}:{CONTAINER_WORKSPACE}",
            "-w",
            CONTAINER_WORKSPACE,
            "--platform",
            f"linux/{target.qemu_arch}",
            "-e",
            f"TREE_SITTER_ABI_VERSION={self.settings.abi_version}",
            self.settings.container.image,
            "sh",
            "-c",
            " && ".join(steps),
        ]

    # ------------------------------------------------------------------
    # Internals

    def _build_in_container(
        self, cell: MatrixCell, spec: LanguageSpec, output: Path, cwd: Path
    ) -> None:
        if output.is_absolute():
            try:
                output = output.relative_to(cwd)
            except ValueError:
                raise BuildError(
                    f"Output directory {output} must live under {cwd} for container builds"
                ) from None
        args = self.container_command(cell, spec, output.as_posix(), cwd)
        self.logger.info(
            "Building %s inside %s (linux/%s)",
            cell.language,
            self.settings.container.image,
            cell.target.qemu_arch,
        )
        try:
            self._runner(args, cwd=cwd)
        except FileNotFoundError as exc:
            raise BuildError("docker is required for emulated builds") from exc
        except subprocess.CalledProcessError as exc:
            raise BuildError(f"Container build failed with exit code {exc.returncode}") from exc

    def _sign(self, cell: MatrixCell, output: Path, cwd: Path) -> Optional[SigningOutcome]:
        if not self.settings.signing.enabled:
            self.logger.info("Signing disabled in settings; skipping")
            return None
        credentials = SigningCredentials.from_env(self._env)
        missing = credentials.missing()
        if missing:
            raise SigningError(
                f"Missing signing credentials for {cell.target.platform}-{cell.target.arch}: "
                f"{', '.join(missing)}; set signing.enabled: false to build unsigned"
            )
        signer = self._signer_factory(credentials)
        return signer.run(
            output,
            language=cell.language,
            platform=cell.target.platform,
            arch=cell.target.arch,
            workdir=cwd,
        )

    def _default_signer(self, credentials: SigningCredentials) -> MacSigner:
        return MacSigner(
            credentials,
            self._runner,
            sign_timeout=self.settings.signing.sign_timeout,
            notarize_timeout=self.settings.signing.notarize_timeout,
        )

