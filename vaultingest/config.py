"""Configuration loading and validation for vaultingest."""

from __future__ import annotations

import copy
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, MutableMapping, Tuple

import yaml

from .errors import ConfigError


PROJECT_ROOT = Path(__file__).resolve().parents[1]
CONFIG_DIR = PROJECT_ROOT / "config"
CONFIG_PATH = CONFIG_DIR / "config.yaml"
ENV_CONFIG_PATH = "VAULTINGEST_CONFIG"


DEFAULT_CONFIG: Dict[str, Any] = {
    "credentials": {
        "endpoint": "http://localhost:3000/api/oss/sts",
        "safety_margin_seconds": 120,
        "timeout": 15,
        "headers": {},
    },
    "storage": {
        "endpoint_template": "https://{bucket}.{region}.aliyuncs.com",
        "timeout": 120,
        "cache_control": "public, max-age=31536000",
    },
    "catalog": {
        "endpoint": "http://localhost:3000/api/images/register",
        "timeout": 60,
        "headers": {},
    },
    "compression": {
        "max_bytes": 4 * 1024 * 1024,
        "max_dimension": 4096,
        "format": "WEBP",
        "quality": 85,
        "min_quality": 45,
        "quality_step": 10,
        "fallback_to_original": True,
    },
    "queue": {
        "concurrency": 4,
        "retry": {
            "max_attempts": 3,
            "base_delay_seconds": 1.0,
        },
    },
    "validation": {
        "allowed_types": ["image/jpeg", "image/png", "image/webp", "image/bmp", "image/tiff"],
        "max_file_bytes": 20 * 1024 * 1024,
        "max_batch_size": 500,
        "model_bases": ["Illustrious", "SDXL", "Pony", "SD1.5", "Flux", "Other"],
        "style_sources": ["Artist", "Character", "Concept", "Other"],
    },
    "paths": {
        "logs": "logs",
        "metrics": "data/metrics",
        "summaries": "data/summaries",
    },
    "logging": {
        "console_level": "INFO",
        "file_level": "DEBUG",
        "json_logs": False,
        "color": True,
    },
    "metrics": {
        "report_interval": 10,
    },
}


@dataclass(frozen=True)
class ConfigLoadResult:
    """Container for the merged configuration."""

    config: Dict[str, Any]
    sources: Tuple[str, ...]


def _ensure_default_config(path: Path) -> None:
    """Write the defaults to ``path`` on first run so operators have a file to edit."""

    if path.exists():
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    staging = path.with_name(path.name + ".partial")
    staging.write_text(
        "# Generated defaults. Override with $" + ENV_CONFIG_PATH + " or --config.\n"
        + yaml.safe_dump(DEFAULT_CONFIG, sort_keys=False),
        encoding="utf-8",
    )
    staging.replace(path)


def _load_yaml(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as handle:
        try:
            data = yaml.safe_load(handle) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, MutableMapping):
        raise ConfigError(f"Configuration file {path} must contain a mapping at the root")
    return dict(data)


def _deep_merge(base: Mapping[str, Any], overlay: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a new mapping; nested sections merge, everything else is replaced."""

    merged = copy.deepcopy(dict(base))
    for key, value in overlay.items():
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = _deep_merge(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _resolve_path(base_dir: Path, value: str) -> Path:
    path = Path(value)
    if path.is_absolute():
        return path
    return (base_dir / value).resolve()


def _apply_path_defaults(config: Dict[str, Any], base_dir: Path) -> Dict[str, Any]:
    paths = dict(config.get("paths", {}))
    for key, rel_path in paths.items():
        if isinstance(rel_path, str) and rel_path:
            paths[key] = str(_resolve_path(base_dir, rel_path))
    config["paths"] = paths
    return config


def _ensure_directories(config: Mapping[str, Any]) -> None:
    for value in config.get("paths", {}).values():
        if value:
            Path(value).mkdir(parents=True, exist_ok=True)


def _collect_sources(explicit: str | Path | None) -> Iterable[Tuple[Path, bool]]:
    yield CONFIG_PATH, True
    env_path = os.getenv(ENV_CONFIG_PATH)
    if env_path:
        yield Path(env_path).expanduser(), False
    if explicit:
        yield Path(explicit).expanduser(), False


def _positive(section: Mapping[str, Any], key: str, label: str) -> None:
    value = section.get(key)
    try:
        ok = value is not None and float(value) > 0
    except (TypeError, ValueError):
        ok = False
    if not ok:
        raise ConfigError(f"{label}.{key} must be a positive number")


def validate_config(config: Dict[str, Any]) -> Dict[str, Any]:
    for section in ("credentials", "storage", "catalog", "compression", "queue", "validation"):
        if not isinstance(config.get(section), Mapping):
            raise ConfigError(f"Configuration must define a '{section}' section")
    if not config["credentials"].get("endpoint"):
        raise ConfigError("credentials.endpoint is required")
    if not config["catalog"].get("endpoint"):
        raise ConfigError("catalog.endpoint is required")
    if "{bucket}" not in str(config["storage"].get("endpoint_template", "")):
        raise ConfigError("storage.endpoint_template must contain a {bucket} placeholder")
    _positive(config["queue"], "concurrency", "queue")
    retry = config["queue"].get("retry", {})
    _positive(retry, "max_attempts", "queue.retry")
    if float(retry.get("base_delay_seconds", 0)) < 0:
        raise ConfigError("queue.retry.base_delay_seconds must not be negative")
    compression = config["compression"]
    for key in ("max_bytes", "max_dimension", "quality", "min_quality", "quality_step"):
        _positive(compression, key, "compression")
    if int(compression["min_quality"]) > int(compression["quality"]):
        raise ConfigError("compression.min_quality must not exceed compression.quality")
    validation = config["validation"]
    if not validation.get("model_bases") or not validation.get("style_sources"):
        raise ConfigError("validation.model_bases and validation.style_sources must not be empty")
    return config


def load_config(
    path: str | Path | None = None,
    *,
    include_sources: bool = False,
    base_dir: Path | None = None,
) -> ConfigLoadResult | Dict[str, Any]:
    """Load defaults merged with the project, environment and explicit overrides."""

    config: Dict[str, Any] = copy.deepcopy(DEFAULT_CONFIG)
    sources: list[str] = []

    if path and not Path(path).expanduser().exists():
        raise ConfigError(f"Configuration file not found: {path}")

    for candidate, required in _collect_sources(path):
        if required:
            _ensure_default_config(candidate)
        if not candidate.exists():
            continue
        config = _deep_merge(config, _load_yaml(candidate))
        sources.append(str(candidate.resolve()))

    config = _apply_path_defaults(config, base_dir or PROJECT_ROOT)
    config = validate_config(config)
    _ensure_directories(config)

    result = ConfigLoadResult(config=config, sources=tuple(sources))
    if include_sources:
        return result
    return result.config


__all__ = ["DEFAULT_CONFIG", "ConfigLoadResult", "load_config", "validate_config"]
