"""Publish built parsers to object storage."""

from __future__ import annotations

import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Tuple

from .config import StorageConfig
from .logging import get_logger
from .process import CommandRunner, run_command

ARTIFACT_SUFFIXES = (".so", ".dylib", ".dll", ".wasm")


def storage_key(relative_path: str, prefix: str = "tree-sitter/parsers") -> str:
    """Return the object key for an artifact path relative to the output root."""
    relative = relative_path.replace("\\", "/").lstrip("/")
    return f"{prefix.strip('/')}/tree-sitter-{relative}"


def find_artifacts(root: Path) -> List[Path]:
    if not root.is_dir():
        return []
    return sorted(
        path
        for path in root.rglob("*")
        if path.is_file() and path.suffix in ARTIFACT_SUFFIXES
    )


@dataclass
class UploadReport:
    uploaded: List[Tuple[Path, str]] = field(default_factory=list)
    failed: List[Tuple[Path, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


class Uploader:
    """Copies artifacts to S3 through the AWS CLI, one file at a time."""

    def __init__(self, storage: StorageConfig, runner: CommandRunner | None = None) -> None:
        if not storage.bucket:
            raise ValueError("An S3 bucket is required (storage.bucket or S3_BUCKET_NAME)")
        self.storage = storage
        self._runner = runner or run_command
        self.logger = get_logger("upload")

    def upload_tree(self, root: Path) -> UploadReport:
        """Upload every artifact under ``root``; a failed file does not stop the rest."""
        report = UploadReport()
        artifacts = find_artifacts(root)
        if not artifacts:
            self.logger.warning("No artifacts found under %s", root)
            return report

        for path in artifacts:
            relative = path.relative_to(root).as_posix()
            key = storage_key(relative, self.storage.prefix)
            destination = f"s3://{self.storage.bucket}/{key}"
            self.logger.info("Uploading: %s -> %s", path, destination)
            try:
                self._runner(
                    [
                        "aws",
                        "s3",
                        "cp",
                        str(path),
                        destination,
                        "--metadata",
                        f"source-file={relative}",
                        "--cache-control",
                        self.storage.cache_control,
                        "--content-type",
                        self.storage.content_type,
                    ],
                    cwd=root,
                )
            except (subprocess.CalledProcessError, FileNotFoundError) as exc:
                self.logger.warning("Upload failed for %s: %s", relative, exc)
                report.failed.append((path, key))
                continue
            report.uploaded.append((path, key))

        self.logger.info(
            "Uploaded %d file(s), %d failed", len(report.uploaded), len(report.failed)
        )
        return report


__all__ = ["ARTIFACT_SUFFIXES", "UploadReport", "Uploader", "find_artifacts", "storage_key"]
