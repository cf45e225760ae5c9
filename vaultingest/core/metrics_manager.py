"""Per-stage ingestion counters with periodic JSON-lines snapshots."""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping


@dataclass
class StageStats:
    success: int = 0
    failure: int = 0
    retries: int = 0
    bytes: int = 0
    elapsed: float = 0.0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "failure": self.failure,
            "retries": self.retries,
            "bytes": self.bytes,
            "avg_elapsed": self.elapsed / self.success if self.success else 0.0,
        }


class MetricsManager:
    """Collects stage events from the workers through an asyncio queue.

    Recording never blocks; ``run`` folds events into :class:`StageStats` and
    appends a snapshot to ``metrics.jsonl`` every ``report_interval`` seconds
    and once more when stopped. Without a directory nothing is written.
    """

    def __init__(
        self,
        metrics_dir: str | Path | None,
        *,
        report_interval: float,
        logger,
    ) -> None:
        self.metrics_path: Path | None = None
        if metrics_dir:
            directory = Path(metrics_dir)
            directory.mkdir(parents=True, exist_ok=True)
            self.metrics_path = directory / "metrics.jsonl"
        self.report_interval = report_interval
        self.logger = logger
        self._events: asyncio.Queue[Dict[str, Any]] = asyncio.Queue()
        self._stopping = asyncio.Event()
        self._stages: Dict[str, StageStats] = {}
        self._last_flush = time.monotonic()

    def record_success(self, stage: str, *, elapsed: float, size: int = 0) -> None:
        self._events.put_nowait({"kind": "success", "stage": stage, "elapsed": float(elapsed), "bytes": int(size)})

    def record_failure(self, stage: str) -> None:
        self._events.put_nowait({"kind": "failure", "stage": stage})

    def record_retry(self, stage: str) -> None:
        self._events.put_nowait({"kind": "retry", "stage": stage})

    async def run(self) -> None:
        while not self._stopping.is_set():
            try:
                event = await asyncio.wait_for(self._events.get(), timeout=self.report_interval)
            except asyncio.TimeoutError:
                self._flush()
                continue
            self._apply(event)
            if time.monotonic() - self._last_flush >= self.report_interval:
                self._flush()
        self.drain()
        self._flush(final=True)

    def stop(self) -> None:
        self._stopping.set()
        # Wakes ``run`` when it is parked on an empty queue.
        self._events.put_nowait({"kind": "wake"})

    def drain(self) -> None:
        while not self._events.empty():
            self._apply(self._events.get_nowait())

    def summary(self) -> Dict[str, Any]:
        return {
            "stages": {name: stats.as_dict() for name, stats in self._stages.items()},
            "timestamp": time.time(),
        }

    def _apply(self, event: Mapping[str, Any]) -> None:
        stage = event.get("stage")
        if not stage:
            return
        stats = self._stages.setdefault(stage, StageStats())
        kind = event["kind"]
        if kind == "success":
            stats.success += 1
            stats.elapsed += float(event.get("elapsed", 0.0))
            stats.bytes += int(event.get("bytes", 0))
        elif kind == "failure":
            stats.failure += 1
        elif kind == "retry":
            stats.retries += 1

    def _flush(self, *, final: bool = False) -> None:
        self._last_flush = time.monotonic()
        if self.metrics_path is None:
            return
        snapshot = self.summary()
        snapshot["final"] = final
        with self.metrics_path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(snapshot, ensure_ascii=False) + "\n")
        self.logger.debug("Metrics snapshot written to %s", self.metrics_path)


__all__ = ["MetricsManager", "StageStats"]
