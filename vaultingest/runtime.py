"""Runtime orchestration for vaultingest."""

from __future__ import annotations

import asyncio
import json
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from .core import (
    CatalogRegistrar,
    CompressionSettings,
    CompressionStage,
    CredentialCache,
    GracefulShutdown,
    IngestPipeline,
    MetricsManager,
    ObjectStoreUploader,
    RetryConfig,
    RetryPolicy,
    TaskQueue,
)
from .models import QueueState
from .utils.manifest import load_manifest
from .validation import Rejection, ValidationSettings, validate_batch


class IngestRuntime:
    def __init__(self, config: Dict[str, Any], logger) -> None:
        self.config = config
        self.logger = logger
        self._reported = -1

    def build_pipeline(self, metrics: Optional[MetricsManager] = None) -> IngestPipeline:
        credentials_cfg = self.config.get("credentials", {})
        storage_cfg = self.config.get("storage", {})
        catalog_cfg = self.config.get("catalog", {})
        retry_cfg = self.config.get("queue", {}).get("retry", {})
        return IngestPipeline(
            compressor=CompressionStage(
                CompressionSettings.from_mapping(self.config.get("compression", {})),
                logger=self.logger.getChild("compression"),
            ),
            credentials=CredentialCache(
                endpoint=str(credentials_cfg.get("endpoint")),
                timeout=float(credentials_cfg.get("timeout", 15)),
                safety_margin=float(credentials_cfg.get("safety_margin_seconds", 120)),
                headers=credentials_cfg.get("headers") or {},
                logger=self.logger.getChild("credentials"),
            ),
            uploader=ObjectStoreUploader(
                endpoint_template=str(storage_cfg.get("endpoint_template")),
                timeout=float(storage_cfg.get("timeout", 120)),
                cache_control=str(storage_cfg.get("cache_control", "")),
                logger=self.logger.getChild("uploader"),
            ),
            registrar=CatalogRegistrar(
                endpoint=str(catalog_cfg.get("endpoint")),
                timeout=float(catalog_cfg.get("timeout", 60)),
                headers=catalog_cfg.get("headers") or {},
                logger=self.logger.getChild("registrar"),
            ),
            retry=RetryPolicy(RetryConfig.from_mapping(retry_cfg), logger=self.logger.getChild("retry")),
            metrics=metrics,
            logger=self.logger.getChild("pipeline"),
        )

    async def run(self, manifest_path: str | Path) -> bool:
        """Upload every valid file listed in ``manifest_path``.

        Returns ``True`` only when nothing was rejected and every task succeeded.
        Raises ``KeyboardInterrupt`` after cleanup when SIGINT/SIGTERM cancelled
        the run.
        """

        try:
            entries = load_manifest(manifest_path)
        except FileNotFoundError as exc:
            self.logger.error("Manifest missing: %s", exc)
            return False
        except ValueError as exc:
            self.logger.error("Invalid manifest: %s", exc)
            return False

        report = validate_batch(entries, ValidationSettings.from_mapping(self.config.get("validation", {})))
        for rejection in report.rejected:
            self.logger.warning("Skipping %s: %s", rejection.path, rejection.reason)
        self.logger.info(
            "Manifest %s: %d file(s) accepted, %d rejected",
            manifest_path,
            len(report.tasks),
            len(report.rejected),
        )
        paths = self.config.get("paths", {})
        if not report.tasks:
            self.logger.warning("No files to upload.")
            self._write_summary(paths.get("summaries"), self._summary(manifest_path, QueueState(), report.rejected, None))
            return False

        metrics_cfg = self.config.get("metrics", {})
        metrics = MetricsManager(
            paths.get("metrics"),
            report_interval=float(metrics_cfg.get("report_interval", 10.0)),
            logger=self.logger,
        )
        metrics_task = asyncio.create_task(metrics.run())
        pipeline = self.build_pipeline(metrics)
        queue = TaskQueue(
            pipeline=pipeline,
            concurrency=int(self.config.get("queue", {}).get("concurrency", 4)),
            logger=self.logger.getChild("queue"),
        )
        unsubscribe = queue.subscribe(self._log_progress)
        shutdown = GracefulShutdown(queue.cancel)
        shutdown.install()

        try:
            queue.submit(report.tasks)
            state = await queue.join()
        except BaseException:
            queue.cancel()
            await queue.join()
            raise
        finally:
            shutdown.uninstall()
            unsubscribe()
            metrics.stop()
            await asyncio.gather(metrics_task, return_exceptions=True)
            await pipeline.aclose()

        interrupted = shutdown.is_triggered()
        summary = self._summary(manifest_path, state, report.rejected, metrics.summary())
        summary["interrupted"] = interrupted
        self._write_summary(paths.get("summaries"), summary)
        if interrupted:
            pending = state.total_count - state.completed_count - state.failed_count
            self.logger.warning("Run interrupted; %d task(s) were not uploaded.", pending)
            raise KeyboardInterrupt
        return report.ok and state.completed_count == state.total_count

    def _log_progress(self, state: QueueState) -> None:
        finished = state.completed_count + state.failed_count
        if finished == self._reported or not state.total_count:
            return
        self._reported = finished
        self.logger.info(
            "Progress: %d/%d done (%d failed, %.0f%%)",
            finished,
            state.total_count,
            state.failed_count,
            state.progress * 100,
        )

    def _summary(
        self,
        manifest_path: str | Path,
        state: QueueState,
        rejected: List[Rejection],
        metrics: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        return {
            "manifest": str(manifest_path),
            "queue": state.as_dict(),
            "rejected": [{"file": str(item.path), "reason": item.reason} for item in rejected],
            "metrics": metrics or {},
        }

    def _write_summary(self, directory: str | None, summary: Dict[str, Any]) -> Path | None:
        if not directory:
            return None
        target_dir = Path(directory)
        target_dir.mkdir(parents=True, exist_ok=True)
        timestamp = time.strftime("%Y%m%dT%H%M%S", time.gmtime())
        summary_path = target_dir / f"run-summary-{timestamp}.json"
        summary_path.write_text(json.dumps(summary, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
        self.logger.info("Run summary written to %s", summary_path)
        return summary_path


__all__ = ["IngestRuntime"]
