"""Configuration loading for parserbuild (.parserbuild.yml and languages.json)."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

import yaml

SETTINGS_FILENAME = ".parserbuild.yml"
DEFAULT_CATALOG = "languages.json"
DEFAULT_ABI_VERSION = "15"
DEFAULT_REF = "master"


class ConfigError(RuntimeError):
    """Raised when the settings file or language catalog cannot be used."""


@dataclass(frozen=True)
class LanguageSpec:
    """Where to fetch one grammar from."""

    name: str
    repo: str
    ref: str = DEFAULT_REF


@dataclass
class StorageConfig:
    """Object storage destination for uploaded parsers."""

    bucket: Optional[str] = None
    prefix: str = "tree-sitter/parsers"
    cache_control: str = "public, max-age=31536000"
    content_type: str = "application/octet-stream"


@dataclass
class SigningConfig:
    """macOS code signing and notarization limits."""

    enabled: bool = True
    sign_timeout: float = 300.0
    notarize_timeout: float = 900.0


@dataclass
class ContainerConfig:
    """Container used to build emulated (QEMU) matrix cells."""

    image: str = "node:18-alpine"
    setup: List[str] = field(
        default_factory=lambda: [
            "apk add --no-cache git bash tree-sitter-cli build-base python3 py3-pip",
            "python3 -m pip install --break-system-packages .",
        ]
    )


@dataclass
class Settings:
    """Represents the settings defined in .parserbuild.yml plus environment overrides."""

    root: Path
    catalog: Path
    output_dir: str = "artifacts"
    abi_version: str = DEFAULT_ABI_VERSION
    storage: StorageConfig = field(default_factory=StorageConfig)
    signing: SigningConfig = field(default_factory=SigningConfig)
    container: ContainerConfig = field(default_factory=ContainerConfig)


def load_settings(
    config_path: Path | str = ".", *, env: Mapping[str, str] | None = None
) -> Settings:
    """Load settings from disk, falling back to defaults when the file is absent."""
    environ = os.environ if env is None else env
    config_file = _resolve_config_path(Path(config_path))
    root = config_file.parent.resolve()

    data: Dict[str, Any] = {}
    if config_file.exists():
        data = _read_config(config_file)

    catalog_name = _as_str(data.get("catalog")) or DEFAULT_CATALOG
    settings = Settings(root=root, catalog=(root / catalog_name))

    output_dir = _as_str(data.get("output_dir"))
    if output_dir:
        settings.output_dir = output_dir
    abi_version = _as_str(data.get("abi_version"))
    if abi_version:
        settings.abi_version = abi_version

    storage_data = _as_dict(data.get("storage"))
    if storage_data:
        storage = settings.storage
        storage.bucket = _as_str(storage_data.get("bucket")) or storage.bucket
        storage.prefix = (_as_str(storage_data.get("prefix")) or storage.prefix).strip("/")
        storage.cache_control = _as_str(storage_data.get("cache_control")) or storage.cache_control
        storage.content_type = _as_str(storage_data.get("content_type")) or storage.content_type

    signing_data = _as_dict(data.get("signing"))
    if signing_data:
        enabled = _as_bool(signing_data.get("enabled"))
        if enabled is not None:
            settings.signing.enabled = enabled
        sign_timeout = _as_float(signing_data.get("sign_timeout"))
        if sign_timeout:
            settings.signing.sign_timeout = sign_timeout
        notarize_timeout = _as_float(signing_data.get("notarize_timeout"))
        if notarize_timeout:
            settings.signing.notarize_timeout = notarize_timeout

    container_data = _as_dict(data.get("container"))
    if container_data:
        image = _as_str(container_data.get("image"))
        if image:
            settings.container.image = image
        if "setup" in container_data:
            settings.container.setup = _as_str_list(container_data.get("setup"))

    # Environment wins over the file so CI can inject per-run values.
    if environ.get("TREE_SITTER_ABI_VERSION"):
        settings.abi_version = environ["TREE_SITTER_ABI_VERSION"]
    if environ.get("S3_BUCKET_NAME"):
        settings.storage.bucket = environ["S3_BUCKET_NAME"]

    return settings


def load_catalog(catalog_path: Path | str) -> Dict[str, LanguageSpec]:
    """Return the language catalog keyed by language name, in file order."""
    path = Path(catalog_path)
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigError(f"Language catalog not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Failed to parse {path.name}: {exc}") from exc

    if not isinstance(payload, dict) or not isinstance(payload.get("languages"), dict):
        raise ConfigError(f"{path.name} must contain a 'languages' mapping")

    catalog: Dict[str, LanguageSpec] = {}
    for name, entry in payload["languages"].items():
        if not isinstance(entry, dict):
            raise ConfigError(f"Catalog entry for '{name}' must be a mapping")
        repo = _as_str(entry.get("repo"))
        if not repo:
            raise ConfigError(f"Catalog entry for '{name}' is missing 'repo'")
        catalog[name] = LanguageSpec(
            name=name,
            repo=repo,
            ref=_as_str(entry.get("ref")) or DEFAULT_REF,
        )
    return catalog


def lookup_language(catalog: Mapping[str, LanguageSpec], language: str) -> LanguageSpec:
    try:
        return catalog[language]
    except KeyError:
        raise ConfigError(f"Unknown language '{language}'; not present in catalog") from None


def _resolve_config_path(config_path: Path) -> Path:
    config_path = config_path.expanduser()
    if config_path.is_dir():
        return (config_path / SETTINGS_FILENAME).resolve()
    return config_path.resolve()


def _read_config(path: Path) -> Dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    if not text.strip():
        return {}
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {path.name}: {exc}") from exc
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigError(f"{path.name} must contain a mapping at the root")
    return loaded


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_str(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return None
    return str(value) if isinstance(value, (str, int, float)) else None


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "1"}:
            return True
        if lowered in {"false", "no", "0"}:
            return False
    return None


def _as_str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, Sequence):
        return [str(item) for item in value if isinstance(item, (str, int, float, bool))]
    return []


__all__ = [
    "ConfigError",
    "ContainerConfig",
    "LanguageSpec",
    "Settings",
    "SigningConfig",
    "StorageConfig",
    "load_catalog",
    "load_settings",
    "lookup_language",
]
