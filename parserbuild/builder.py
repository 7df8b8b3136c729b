"""Clone a grammar repository and compile every grammar it contains."""

from __future__ import annotations

import os
import platform as _platform
import subprocess
import tempfile
from pathlib import Path
from typing import Callable, Iterable, List, Mapping, Optional

from .config import DEFAULT_ABI_VERSION, DEFAULT_REF
from .layout import WASM_FILENAME, ArtifactLayout, discover_grammars
from .logging import get_logger
from .models import BuildOutput, BuildResult, GrammarUnit
from .platforms import Target, apple_arch, is_windows_host, resolve_target
from .process import CommandRunner, ToolLocator, find_tool, run_command

NATIVE_FILENAME = "parser.so"
GENERATOR = "tree-sitter"
WASM_TOOLCHAINS = ("emcc", "docker", "podman")
NPM_INSTALL = ["npm", "install", "--ignore-scripts", "--omit", "dev", "--omit", "peer", "--omit", "optional"]
_CROSS_FLAG_VARS = ("CFLAGS", "CXXFLAGS", "LDFLAGS", "ARCHFLAGS")


class BuildError(RuntimeError):
    """Raised when a build step fails and the job must stop."""


class GrammarNotFoundError(BuildError):
    """Raised when a cloned repository contains no grammar.js."""


class ParserBuilder:
    """Builds native and WebAssembly parsers for one grammar repository."""

    def __init__(
        self,
        runner: CommandRunner | None = None,
        which: ToolLocator | None = None,
        *,
        abi_version: str = DEFAULT_ABI_VERSION,
        base_env: Mapping[str, str] | None = None,
        system: Callable[[], str] = _platform.system,
        machine: Callable[[], str] = _platform.machine,
    ) -> None:
        self._runner = runner or run_command
        self._which = which or find_tool
        self.abi_version = abi_version
        self._base_env = base_env
        self._system = system
        self._machine = machine
        self.logger = get_logger("builder")

    def build(
        self,
        language: str,
        repo_url: str,
        ref: str = DEFAULT_REF,
        output_dir: Path | str = "artifacts",
        arch: Optional[str] = None,
        platform: Optional[str] = None,
        cross_compile: bool = False,
    ) -> BuildResult:
        """Clone ``repo_url`` at ``ref`` and lay out parsers for every grammar found.

        Outputs land in ``<output_dir>/<variant>/<sha>/`` and are mirrored to
        ``<output_dir>/<variant>/latest/``. The first fatal step raises; files
        written for earlier grammars are kept.
        """
        self.logger.info("Building parser for %s from %s (ref: %s)", language, repo_url, ref)

        output_root = Path(output_dir).expanduser()
        output_root.mkdir(parents=True, exist_ok=True)
        output_root = output_root.resolve()
        self.logger.info("Output directory: %s", output_root)

        target = resolve_target(platform, arch, system=self._system, machine=self._machine)
        self.logger.debug("Target %s-%s (cross-compile: %s)", target.platform, target.arch, cross_compile)
        tool_env = self._tool_env(target, cross_compile)

        with tempfile.TemporaryDirectory(prefix="parserbuild-") as workspace:
            clone_dir = Path(workspace) / "repo"
            self._clone(repo_url, ref, clone_dir)

            commit_sha = self._run(
                ["git", "rev-parse", "HEAD"],
                cwd=clone_dir,
                capture_output=True,
                step="resolve commit SHA",
            ).strip()
            if not commit_sha:
                raise BuildError("git rev-parse returned an empty commit SHA")
            self.logger.info("Commit SHA: %s", commit_sha)

            grammars = discover_grammars(clone_dir, language)
            if not grammars:
                raise GrammarNotFoundError(f"No grammar.js files found in {repo_url}")
            self.logger.info(
                "Found grammar.js files: %s", ", ".join(unit.grammar_file for unit in grammars)
            )

            if (clone_dir / "package.json").is_file():
                self.logger.info("Installing npm dependencies...")
                self._run(NPM_INSTALL, cwd=clone_dir, step="npm install")

            layout = ArtifactLayout(output_root)
            outputs: List[BuildOutput] = []
            for unit in grammars:
                outputs.extend(
                    self._build_grammar(
                        unit,
                        clone_dir,
                        commit_sha,
                        target,
                        layout,
                        cross_compile=cross_compile,
                        env=tool_env,
                    )
                )

        self.logger.info("Build completed for %s", language)
        return BuildResult(language=language, commit_sha=commit_sha, outputs=tuple(outputs))

    # ------------------------------------------------------------------
    # Steps

    def _clone(self, repo_url: str, ref: str, destination: Path) -> None:
        self.logger.info("Cloning repository...")
        self._run(
            ["git", "clone", "--depth", "1", "--branch", ref, repo_url, str(destination)],
            cwd=destination.parent,
            step="git clone",
        )

    def _build_grammar(
        self,
        unit: GrammarUnit,
        clone_dir: Path,
        commit_sha: str,
        target: Target,
        layout: ArtifactLayout,
        *,
        cross_compile: bool,
        env: Mapping[str, str],
    ) -> List[BuildOutput]:
        grammar_dir = (clone_dir / unit.directory).resolve()
        self.logger.info("Building parser in directory: %s", unit.directory)

        if self._which(GENERATOR):
            self.logger.info("Generating parser...")
            self._run([GENERATOR, "generate"], cwd=grammar_dir, env=env, step="tree-sitter generate")

        self.logger.info("Building for language variant: %s", unit.variant)
        self._build_native(grammar_dir, cross_compile=cross_compile, env=env)
        self._build_wasm(grammar_dir, env=env)

        layout.prepare(unit.variant, commit_sha)
        outputs: List[BuildOutput] = []

        native = grammar_dir / NATIVE_FILENAME
        if native.is_file():
            placed = layout.place(native, unit.variant, commit_sha, target.artifact_name)
            self.logger.info("Native library saved: %s", placed)
            outputs.append(self._output(unit, commit_sha, target, placed, target.extension, "native"))

        wasm = grammar_dir / WASM_FILENAME
        if wasm.is_file():
            placed = layout.place(wasm, unit.variant, commit_sha, WASM_FILENAME)
            self.logger.info("WebAssembly saved: %s", placed)
            outputs.append(self._output(unit, commit_sha, target, placed, "wasm", "wasm"))

        if layout.mirror_latest(unit.variant, commit_sha):
            self.logger.info("Files copied to latest directory: %s", layout.latest_dir(unit.variant))
        else:
            self.logger.info("No files to copy to latest directory")
        return outputs

    def _build_native(self, grammar_dir: Path, *, cross_compile: bool, env: Mapping[str, str]) -> None:
        args = [GENERATOR, "build", "--output", NATIVE_FILENAME]
        if not cross_compile:
            self.logger.info("Building native library (with validation)...")
            self._run(args, cwd=grammar_dir, env=env, step="tree-sitter build")
            return

        self.logger.info("Building native library (cross-compiling, validation failure allowed)...")
        try:
            self._runner(args, cwd=grammar_dir, env=env)
        except FileNotFoundError as exc:
            raise BuildError(f"{GENERATOR} CLI not found on PATH") from exc
        except subprocess.CalledProcessError as exc:
            # The generator's post-build self check can fail for a foreign architecture.
            self.logger.warning(
                "tree-sitter build validation failed (exit %s) while cross-compiling; "
                "checking whether the binary was created",
                exc.returncode,
            )
            if not (grammar_dir / NATIVE_FILENAME).is_file():
                raise BuildError("Binary creation failed: parser.so was not produced") from exc
            self.logger.info("Binary was created despite validation failure")

    def _build_wasm(self, grammar_dir: Path, *, env: Mapping[str, str]) -> bool:
        if is_windows_host(self._system()):
            if not self._which("emcc"):
                self.logger.warning(
                    "WebAssembly build skipped on Windows: container builds are not supported. "
                    "Install Emscripten directly: https://emscripten.org/docs/getting_started/downloads.html"
                )
                return False
        elif not any(self._which(tool) for tool in WASM_TOOLCHAINS):
            self.logger.warning(
                "WebAssembly build skipped: requires emcc, docker, or podman. "
                "Install Emscripten (https://emscripten.org/docs/getting_started/downloads.html), "
                "Docker (https://docs.docker.com/get-docker/) "
                "or Podman (https://podman.io/getting-started/installation)."
            )
            return False

        self.logger.info("Building WebAssembly...")
        self._run(
            [GENERATOR, "build", "--wasm", "--output", WASM_FILENAME],
            cwd=grammar_dir,
            env=env,
            step="tree-sitter build --wasm",
        )
        return True

    # ------------------------------------------------------------------
    # Helpers

    def _tool_env(self, target: Target, cross_compile: bool) -> dict[str, str]:
        env = dict(os.environ if self._base_env is None else self._base_env)
        env["TREE_SITTER_ABI_VERSION"] = str(self.abi_version)
        if cross_compile and target.platform == "darwin":
            flags = f"-arch {apple_arch(target.arch)}"
            for name in _CROSS_FLAG_VARS:
                env[name] = flags
        return env

    @staticmethod
    def _output(
        unit: GrammarUnit,
        commit_sha: str,
        target: Target,
        path: Path,
        extension: str,
        kind: str,
    ) -> BuildOutput:
        return BuildOutput(
            variant=unit.variant,
            commit_sha=commit_sha,
            platform=target.platform,
            arch=target.arch,
            extension=extension,
            path=path,
            size=path.stat().st_size,
            kind=kind,
        )

    def _run(
        self,
        args: Iterable[str],
        *,
        cwd: Path,
        step: str,
        env: Mapping[str, str] | None = None,
        capture_output: bool = False,
    ) -> str:
        command = list(args)
        try:
            return self._runner(command, cwd=cwd, env=env, capture_output=capture_output)
        except FileNotFoundError as exc:
            raise BuildError(f"{step} failed: executable '{command[0]}' not found") from exc
        except subprocess.CalledProcessError as exc:
            raise BuildError(f"{step} failed with exit code {exc.returncode}") from exc


__all__ = ["BuildError", "GrammarNotFoundError", "ParserBuilder"]
