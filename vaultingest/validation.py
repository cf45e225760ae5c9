"""Pre-flight checks that turn manifest entries into upload tasks."""

from __future__ import annotations

import mimetypes
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Sequence, Tuple

from .models import UploadTask
from .utils.manifest import ManifestEntry

_KNOWN_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
    ".bmp": "image/bmp",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
}


@dataclass(frozen=True)
class ValidationSettings:
    allowed_types: Tuple[str, ...] = tuple(sorted(set(_KNOWN_TYPES.values())))
    max_file_bytes: int = 20 * 1024 * 1024
    max_batch_size: int = 500
    model_bases: Tuple[str, ...] = ()
    style_sources: Tuple[str, ...] = ()

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ValidationSettings":
        return cls(
            allowed_types=tuple(data.get("allowed_types") or cls.allowed_types),
            max_file_bytes=int(data.get("max_file_bytes", cls.max_file_bytes)),
            max_batch_size=int(data.get("max_batch_size", cls.max_batch_size)),
            model_bases=tuple(data.get("model_bases") or ()),
            style_sources=tuple(data.get("style_sources") or ()),
        )


@dataclass(frozen=True)
class Rejection:
    path: Path
    reason: str


@dataclass
class ValidationReport:
    tasks: List[UploadTask] = field(default_factory=list)
    rejected: List[Rejection] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.rejected


def guess_type(path: Path) -> str | None:
    return _KNOWN_TYPES.get(path.suffix.lower()) or mimetypes.guess_type(path.name)[0]


def check_entry(entry: ManifestEntry, settings: ValidationSettings) -> str | None:
    """Return the reason ``entry`` cannot be uploaded, or ``None`` if it can."""

    path = entry.path
    if not path.is_file():
        return "file not found"
    content_type = guess_type(path)
    if content_type not in settings.allowed_types:
        return f"unsupported file type ({content_type or path.suffix or 'unknown'})"
    size = path.stat().st_size
    if size > settings.max_file_bytes:
        limit = settings.max_file_bytes // (1024 * 1024)
        return f"file exceeds the {limit}MB limit"
    metadata = entry.metadata
    if not metadata.model_base or not metadata.source:
        return "model_base and source are required"
    if settings.model_bases and metadata.model_base not in settings.model_bases:
        return f"unknown model_base '{metadata.model_base}'"
    if settings.style_sources and metadata.source not in settings.style_sources:
        return f"unknown source '{metadata.source}'"
    return None


def validate_batch(entries: Iterable[ManifestEntry], settings: ValidationSettings) -> ValidationReport:
    report = ValidationReport()
    batch: Sequence[ManifestEntry] = list(entries)
    for entry in batch:
        if len(report.tasks) >= settings.max_batch_size:
            report.rejected.append(
                Rejection(entry.path, f"batch limit of {settings.max_batch_size} files reached")
            )
            continue
        reason = check_entry(entry, settings)
        if reason:
            report.rejected.append(Rejection(entry.path, reason))
            continue
        report.tasks.append(UploadTask.create(entry.path, entry.metadata))
    return report


__all__ = [
    "Rejection",
    "ValidationReport",
    "ValidationSettings",
    "check_entry",
    "guess_type",
    "validate_batch",
]
