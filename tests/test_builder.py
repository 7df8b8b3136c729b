"""Tests for the parser builder."""

from __future__ import annotations

from pathlib import Path

import pytest

from parserbuild.builder import BuildError, GrammarNotFoundError, ParserBuilder
from parserbuild.platforms import UnsupportedPlatformError
from tests._fixtures.toolchain import SHA, FakeToolchain, make_which

REPO = "https://github.com/tree-sitter/tree-sitter-python"
GRAMMAR = "module.exports = grammar({ name: 'x', rules: {} });\n"


def _builder(toolchain: FakeToolchain, *tools: str, system: str = "Linux", machine: str = "x86_64") -> ParserBuilder:
    return ParserBuilder(
        toolchain,
        make_which(*tools),
        abi_version="15",
        base_env={"PATH": "/usr/bin"},
        system=lambda: system,
        machine=lambda: machine,
    )


def _names(directory: Path) -> set[str]:
    return {path.name for path in directory.iterdir()}


def test_build_writes_sha_and_latest_outputs(output_root: Path) -> None:
    toolchain = FakeToolchain({"grammar.js": GRAMMAR, "package.json": "{}"})
    builder = _builder(toolchain, "tree-sitter")

    result = builder.build("python", REPO, "master", output_root, arch="x64", platform="linux")

    sha_dir = output_root / "python" / SHA
    latest_dir = output_root / "python" / "latest"
    assert (sha_dir / "linux-x64.so").read_bytes() == b"\x7fELF native"
    assert _names(latest_dir) == _names(sha_dir) == {"linux-x64.so"}
    assert result.commit_sha == SHA
    assert result.variants == ("python",)
    assert [output.path for output in result.outputs] == [sha_dir / "linux-x64.so"]

    commands = toolchain.commands()
    assert commands[0] == ["git", "clone", "--depth", "1", "--branch", "master", REPO, str(toolchain.clone_dir)]
    assert commands[1] == ["git", "rev-parse", "HEAD"]
    assert commands[2][:2] == ["npm", "install"]
    assert "--ignore-scripts" in commands[2]
    assert commands[3] == ["tree-sitter", "generate"]
    assert commands[4] == ["tree-sitter", "build", "--output", "parser.so"]


def test_build_resolves_relative_output_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    toolchain = FakeToolchain({"grammar.js": GRAMMAR})

    result = _builder(toolchain).build("python", REPO, output_dir="out", arch="x64", platform="linux")

    assert result.outputs[0].path.is_absolute()
    assert (tmp_path / "out" / "python" / SHA / "linux-x64.so").is_file()


def test_build_removes_clone_workspace(output_root: Path) -> None:
    toolchain = FakeToolchain({"grammar.js": GRAMMAR})

    _builder(toolchain).build("python", REPO, output_dir=output_root, arch="x64", platform="linux")

    assert toolchain.clone_dir is not None
    assert not toolchain.clone_dir.exists()


def test_build_skips_generate_and_npm_when_unavailable(output_root: Path) -> None:
    toolchain = FakeToolchain({"grammar.js": GRAMMAR})

    _builder(toolchain).build("python", REPO, output_dir=output_root, arch="x64", platform="linux")

    assert not toolchain.calls_for("tree-sitter", "generate")
    assert not toolchain.calls_for("npm")


def test_build_includes_wasm_when_container_runtime_available(output_root: Path) -> None:
    toolchain = FakeToolchain({"grammar.js": GRAMMAR})

    result = _builder(toolchain, "docker").build(
        "python", REPO, output_dir=output_root, arch="arm64", platform="darwin"
    )

    sha_dir = output_root / "python" / SHA
    assert _names(sha_dir) == {"darwin-arm64.dylib", "parser.wasm"}
    assert _names(output_root / "python" / "latest") == {"darwin-arm64.dylib", "parser.wasm"}
    assert {output.kind for output in result.outputs} == {"native", "wasm"}
    assert toolchain.calls_for("tree-sitter", "build", "--wasm")


def test_build_skips_wasm_on_windows_without_emcc(output_root: Path, caplog: pytest.LogCaptureFixture) -> None:
    toolchain = FakeToolchain({"grammar.js": GRAMMAR})
    builder = _builder(toolchain, "docker", system="MINGW64_NT-10.0", machine="AMD64")

    with caplog.at_level("WARNING", logger="parserbuild"):
        builder.build("python", REPO, output_dir=output_root)

    assert _names(output_root / "python" / SHA) == {"win32-x64.dll"}
    assert not toolchain.calls_for("tree-sitter", "build", "--wasm")
    assert "WebAssembly build skipped on Windows" in caplog.text


def test_build_uses_emcc_on_windows(output_root: Path) -> None:
    toolchain = FakeToolchain({"grammar.js": GRAMMAR})
    builder = _builder(toolchain, "emcc", system="Windows", machine="AMD64")

    builder.build("python", REPO, output_dir=output_root)

    assert _names(output_root / "python" / SHA) == {"win32-x64.dll", "parser.wasm"}


def test_build_probes_host_when_target_missing(output_root: Path) -> None:
    toolchain = FakeToolchain({"grammar.js": GRAMMAR})
    builder = _builder(toolchain, system="Darwin", machine="arm64")

    builder.build("python", REPO, output_dir=output_root, arch="x64")

    assert (output_root / "python" / SHA / "darwin-arm64.dylib").is_file()


def test_build_rejects_unknown_platform_before_cloning(output_root: Path) -> None:
    toolchain = FakeToolchain({"grammar.js": GRAMMAR})

    with pytest.raises(UnsupportedPlatformError):
        _builder(toolchain).build("python", REPO, output_dir=output_root, arch="x64", platform="plan9")

    assert toolchain.calls == []


def test_build_fails_without_grammar(output_root: Path) -> None:
    toolchain = FakeToolchain({"README.md": "nothing here", "node_modules/dep/grammar.js": GRAMMAR})

    with pytest.raises(GrammarNotFoundError):
        _builder(toolchain).build("python", REPO, output_dir=output_root, arch="x64", platform="linux")

    assert toolchain.clone_dir is not None and not toolchain.clone_dir.exists()


def test_build_derives_typescript_variants(output_root: Path) -> None:
    toolchain = FakeToolchain(
        {
            "typescript/grammar.js": GRAMMAR,
            "tsx/grammar.js": GRAMMAR,
            "common/define-grammar.js": "// shared",
            ".build/grammar.js": GRAMMAR,
        }
    )

    result = _builder(toolchain).build(
        "typescript", REPO, output_dir=output_root, arch="x64", platform="linux"
    )

    assert set(result.variants) == {"typescript", "tsx"}
    assert (output_root / "tsx" / SHA / "linux-x64.so").is_file()
    assert (output_root / "typescript" / "latest" / "linux-x64.so").is_file()
    build_dirs = [call["cwd"].name for call in toolchain.calls_for("tree-sitter", "build")]
    assert build_dirs == ["tsx", "typescript"]


def test_build_maps_php_only_to_php(output_root: Path) -> None:
    toolchain = FakeToolchain({"php/grammar.js": GRAMMAR, "php_only/grammar.js": GRAMMAR})

    result = _builder(toolchain).build("php", REPO, output_dir=output_root, arch="x64", platform="linux")

    assert result.variants == ("php",)
    assert not (output_root / "php_only").exists()
    assert _names(output_root / "php" / "latest") == {"linux-x64.so"}


def test_cross_compile_tolerates_validation_failure_when_binary_exists(output_root: Path) -> None:
    toolchain = FakeToolchain({"grammar.js": GRAMMAR}, native_fails=True)

    result = _builder(toolchain).build(
        "python", REPO, output_dir=output_root, arch="arm64", platform="linux", cross_compile=True
    )

    assert (output_root / "python" / SHA / "linux-arm64.so").is_file()
    assert len(result.outputs) == 1


def test_cross_compile_fails_when_binary_missing(output_root: Path) -> None:
    toolchain = FakeToolchain({"grammar.js": GRAMMAR}, native_fails=True, native_writes=False)

    with pytest.raises(BuildError, match="Binary creation failed"):
        _builder(toolchain).build(
            "python", REPO, output_dir=output_root, arch="arm64", platform="linux", cross_compile=True
        )


def test_native_build_failure_is_fatal_without_cross_compile(output_root: Path) -> None:
    toolchain = FakeToolchain({"grammar.js": GRAMMAR}, native_fails=True)

    with pytest.raises(BuildError, match="tree-sitter build failed"):
        _builder(toolchain).build("python", REPO, output_dir=output_root, arch="x64", platform="linux")

    assert not (output_root / "python" / SHA).exists()


def test_failure_keeps_outputs_of_earlier_grammars(output_root: Path) -> None:
    toolchain = FakeToolchain(
        {"typescript/grammar.js": GRAMMAR, "tsx/grammar.js": GRAMMAR},
        fail_dirs={"typescript"},
    )

    with pytest.raises(BuildError):
        _builder(toolchain).build("typescript", REPO, output_dir=output_root, arch="x64", platform="linux")

    assert (output_root / "tsx" / SHA / "linux-x64.so").is_file()
    assert not (output_root / "typescript").exists()


def test_latest_is_replaced_not_merged(output_root: Path) -> None:
    latest = output_root / "python" / "latest"
    latest.mkdir(parents=True)
    (latest / "linux-arm.so").write_bytes(b"old")
    toolchain = FakeToolchain({"grammar.js": GRAMMAR})

    _builder(toolchain).build("python", REPO, output_dir=output_root, arch="x64", platform="linux")

    assert _names(latest) == _names(output_root / "python" / SHA) == {"linux-x64.so"}


def test_latest_untouched_when_nothing_produced(output_root: Path) -> None:
    latest = output_root / "python" / "latest"
    latest.mkdir(parents=True)
    (latest / "linux-x64.so").write_bytes(b"previous build")
    toolchain = FakeToolchain({"grammar.js": GRAMMAR}, native_writes=False)

    result = _builder(toolchain).build("python", REPO, output_dir=output_root, arch="x64", platform="linux")

    assert result.outputs == ()
    assert (latest / "linux-x64.so").read_bytes() == b"previous build"


def test_tool_env_carries_abi_and_darwin_cross_flags(output_root: Path) -> None:
    toolchain = FakeToolchain({"grammar.js": GRAMMAR})

    _builder(toolchain, "tree-sitter").build(
        "python", REPO, output_dir=output_root, arch="x64", platform="darwin", cross_compile=True
    )

    env = toolchain.calls_for("tree-sitter", "build")[0]["env"]
    assert env["TREE_SITTER_ABI_VERSION"] == "15"
    assert env["CFLAGS"] == "-arch x86_64"
    assert env["ARCHFLAGS"] == "-arch x86_64"
    assert toolchain.calls_for("tree-sitter", "generate")[0]["env"]["LDFLAGS"] == "-arch x86_64"


def test_tool_env_has_no_cross_flags_for_native_builds(output_root: Path) -> None:
    toolchain = FakeToolchain({"grammar.js": GRAMMAR})

    _builder(toolchain).build("python", REPO, output_dir=output_root, arch="arm64", platform="darwin")

    env = toolchain.calls_for("tree-sitter", "build")[0]["env"]
    assert "CFLAGS" not in env
