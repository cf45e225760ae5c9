"""Data model shared by the queue, the pipeline stages and their observers."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Tuple


class TaskStatus(str, Enum):
    PENDING = "pending"
    COMPRESSING = "compressing"
    UPLOADING = "uploading"
    REGISTERING = "registering"
    SUCCESS = "success"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.SUCCESS, TaskStatus.ERROR)

    @property
    def is_active(self) -> bool:
        return self in (TaskStatus.COMPRESSING, TaskStatus.UPLOADING, TaskStatus.REGISTERING)


@dataclass(frozen=True)
class TaskMetadata:
    """Caller supplied description of one image. Frozen once submitted."""

    title: str
    prompt: str = ""
    model_base: str = ""
    source: str = ""
    style: str = ""
    style_ref: str = ""

    def catalog_payload(self) -> Dict[str, Any]:
        # The catalog stores the style reference in its ``imported_at`` field.
        return {
            "prompt": self.prompt or None,
            "model_base": self.model_base or None,
            "source": self.source or None,
            "style": self.style or None,
            "imported_at": self.style_ref or None,
        }


@dataclass
class UploadTask:
    id: str
    payload: Path
    metadata: TaskMetadata
    status: TaskStatus = TaskStatus.PENDING
    error: str | None = None
    attempt: int = field(default=0, repr=False, compare=False)

    @classmethod
    def create(cls, payload: str | Path, metadata: TaskMetadata) -> "UploadTask":
        return cls(id=uuid.uuid4().hex, payload=Path(payload), metadata=metadata)

    @property
    def filename(self) -> str:
        return self.payload.name

    def snapshot(self) -> "UploadTask":
        return replace(self)


@dataclass(frozen=True)
class Credentials:
    """Short-lived object store authorisation issued by the token endpoint."""

    access_key: str
    secret: str
    session_token: str
    expires_at: float
    bucket: str
    region: str
    path_prefix: str = ""

    def is_fresh(self, now: float, margin: float) -> bool:
        return now < self.expires_at - margin


@dataclass(frozen=True)
class NormalizedFile:
    data: bytes = field(repr=False)
    content_type: str
    extension: str
    width: int
    height: int
    compressed: bool = True

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class RegisteredAsset:
    asset_id: int | str
    key: str


@dataclass(frozen=True)
class QueueState:
    """Read-only projection of the task list. Counts are derived on access."""

    tasks: Tuple[UploadTask, ...] = ()
    is_uploading: bool = False

    @property
    def total_count(self) -> int:
        return len(self.tasks)

    @property
    def completed_count(self) -> int:
        return sum(1 for task in self.tasks if task.status is TaskStatus.SUCCESS)

    @property
    def failed_count(self) -> int:
        return sum(1 for task in self.tasks if task.status is TaskStatus.ERROR)

    @property
    def active_count(self) -> int:
        return sum(1 for task in self.tasks if task.status.is_active)

    @property
    def progress(self) -> float:
        if not self.tasks:
            return 0.0
        return (self.completed_count + self.failed_count) / self.total_count

    def as_dict(self) -> Dict[str, Any]:
        return {
            "is_uploading": self.is_uploading,
            "total": self.total_count,
            "completed": self.completed_count,
            "failed": self.failed_count,
            "progress": round(self.progress, 4),
            "tasks": [
                {
                    "id": task.id,
                    "file": str(task.payload),
                    "title": task.metadata.title,
                    "status": task.status.value,
                    "error": task.error,
                }
                for task in self.tasks
            ],
        }


__all__ = [
    "Credentials",
    "NormalizedFile",
    "QueueState",
    "RegisteredAsset",
    "TaskMetadata",
    "TaskStatus",
    "UploadTask",
]
