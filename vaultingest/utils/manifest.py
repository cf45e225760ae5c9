"""Helpers for loading upload manifests (YAML or JSON)."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping

import yaml

from ..errors import ValidationError
from ..models import TaskMetadata

_METADATA_FIELDS = ("title", "prompt", "model_base", "source", "style", "style_ref")


@dataclass(frozen=True)
class ManifestEntry:
    path: Path
    metadata: TaskMetadata


def load_manifest(path: str | Path) -> List[ManifestEntry]:
    """Read a manifest listing files and their metadata.

    Accepted shapes are a bare list of entries, or a mapping with ``files`` and
    optional ``defaults``. An entry is either a path string or a mapping with a
    ``path`` key plus metadata fields.
    """

    manifest_path = Path(path)
    if not manifest_path.exists():
        raise FileNotFoundError(f"Manifest not found: {manifest_path}")
    text = manifest_path.read_text(encoding="utf-8")
    try:
        if manifest_path.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (ValueError, yaml.YAMLError) as exc:
        raise ValidationError(f"Cannot parse manifest {manifest_path}: {exc}") from exc

    defaults: Mapping[str, Any] = {}
    if isinstance(data, Mapping):
        defaults = data.get("defaults") or {}
        if not isinstance(defaults, Mapping):
            raise ValidationError("Manifest 'defaults' must be a mapping")
        items: Iterable[Any] = data.get("files") or []
    elif isinstance(data, list):
        items = data
    else:
        raise ValidationError("Manifest must be a list of files or a mapping with 'files'")

    base_dir = manifest_path.parent
    entries: List[ManifestEntry] = []
    for item in items:
        if isinstance(item, str):
            raw: Dict[str, Any] = {"path": item}
        elif isinstance(item, Mapping):
            raw = dict(item)
        else:
            raise ValidationError(f"Unsupported manifest entry: {item!r}")
        if not raw.get("path"):
            raise ValidationError(f"Manifest entry without a path: {item!r}")
        file_path = Path(str(raw["path"])).expanduser()
        if not file_path.is_absolute():
            file_path = base_dir / file_path
        entries.append(ManifestEntry(path=file_path, metadata=_metadata(raw, defaults, file_path)))
    return entries


def _metadata(raw: Mapping[str, Any], defaults: Mapping[str, Any], file_path: Path) -> TaskMetadata:
    values = {}
    for name in _METADATA_FIELDS:
        value = raw.get(name)
        if value in (None, ""):
            value = defaults.get(name)
        values[name] = "" if value is None else str(value).strip()
    if not values["title"]:
        values["title"] = file_path.stem
    return TaskMetadata(**values)


__all__ = ["ManifestEntry", "load_manifest"]
