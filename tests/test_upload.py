"""Tests for uploading artifacts to object storage."""

from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from parserbuild.config import StorageConfig
from parserbuild.upload import Uploader, find_artifacts, storage_key


def _tree(root: Path) -> None:
    for relative in (
        "python/abc123/linux-x64.so",
        "python/latest/linux-x64.so",
        "tsx/abc123/darwin-arm64.dylib",
        "tsx/abc123/parser.wasm",
        "c-sharp/abc123/win32-x64.dll",
        "python/abc123/notes.txt",
    ):
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"data")


def test_storage_key() -> None:
    assert storage_key("python/abc123/linux-x64.so") == "tree-sitter/parsers/tree-sitter-python/abc123/linux-x64.so"
    assert storage_key("tsx/latest/parser.wasm", "custom/prefix/") == "custom/prefix/tree-sitter-tsx/latest/parser.wasm"


def test_find_artifacts_filters_suffixes(tmp_path: Path) -> None:
    _tree(tmp_path)

    names = [path.relative_to(tmp_path).as_posix() for path in find_artifacts(tmp_path)]

    assert "python/abc123/notes.txt" not in names
    assert len(names) == 5


def test_uploader_runs_aws_cli_per_file(tmp_path: Path) -> None:
    _tree(tmp_path)
    calls = []

    def runner(args, cwd, env=None, capture_output=False, timeout=None):  # type: ignore[no-untyped-def]
        calls.append(list(args))
        return ""

    report = Uploader(StorageConfig(bucket="parsers"), runner).upload_tree(tmp_path)

    assert report.ok
    assert len(report.uploaded) == 5
    python_call = next(call for call in calls if call[3].endswith("python/abc123/linux-x64.so"))
    assert python_call[:3] == ["aws", "s3", "cp"]
    assert python_call[4] == "s3://parsers/tree-sitter/parsers/tree-sitter-python/abc123/linux-x64.so"
    assert python_call[python_call.index("--metadata") + 1] == "source-file=python/abc123/linux-x64.so"
    assert python_call[python_call.index("--cache-control") + 1] == "public, max-age=31536000"
    assert python_call[python_call.index("--content-type") + 1] == "application/octet-stream"


def test_uploader_continues_after_failure(tmp_path: Path) -> None:
    _tree(tmp_path)
    attempted = []

    def runner(args, cwd, env=None, capture_output=False, timeout=None):  # type: ignore[no-untyped-def]
        attempted.append(args[3])
        if args[3].endswith(".dll"):
            raise subprocess.CalledProcessError(1, args)
        return ""

    report = Uploader(StorageConfig(bucket="parsers"), runner).upload_tree(tmp_path)

    assert len(attempted) == 5
    assert not report.ok
    assert [key for _, key in report.failed] == ["tree-sitter/parsers/tree-sitter-c-sharp/abc123/win32-x64.dll"]
    assert len(report.uploaded) == 4


def test_uploader_requires_bucket() -> None:
    with pytest.raises(ValueError, match="bucket"):
        Uploader(StorageConfig())


def test_uploader_empty_tree(tmp_path: Path) -> None:
    report = Uploader(StorageConfig(bucket="parsers"), lambda *a, **k: "").upload_tree(tmp_path)
    assert report.ok and report.uploaded == []
