"""Drives one upload task through compress, upload and register."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional, TypeVar

from ..errors import CancelledError, UploadError
from ..models import RegisteredAsset, TaskStatus, UploadTask
from .cancellation import CancellationScope
from .compression import CompressionStage
from .credentials import CredentialCache
from .metrics_manager import MetricsManager
from .registrar import CatalogRegistrar
from .retry import RetryPolicy
from .uploader import ObjectStoreUploader, generate_object_key

T = TypeVar("T")
StatusSink = Callable[[TaskStatus], None]


class IngestPipeline:
    """The retried unit of work for a single task.

    A failure in any stage restarts the whole sequence from compression, so no
    intermediate artefact outlives an attempt.
    """

    def __init__(
        self,
        *,
        compressor: CompressionStage,
        credentials: CredentialCache,
        uploader: ObjectStoreUploader,
        registrar: CatalogRegistrar,
        retry: RetryPolicy,
        metrics: Optional[MetricsManager] = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.compressor = compressor
        self.credentials = credentials
        self.uploader = uploader
        self.registrar = registrar
        self.retry = retry
        self.metrics = metrics
        self.logger = logger or logging.getLogger("vaultingest.pipeline")

    async def process(
        self,
        task: UploadTask,
        scope: CancellationScope,
        set_status: StatusSink,
    ) -> RegisteredAsset:
        async def attempt(number: int) -> RegisteredAsset:
            task.attempt = number
            return await self._attempt(task, scope, set_status)

        def on_retry(number: int, exc: BaseException) -> None:
            if self.metrics is not None:
                self.metrics.record_retry("pipeline")

        return await self.retry.run(attempt, scope, label=f"Task {task.id} ({task.filename})", on_retry=on_retry)

    async def aclose(self) -> None:
        await self.credentials.aclose()
        await self.uploader.aclose()
        await self.registrar.aclose()

    # ------------------------------------------------------------------
    async def _attempt(
        self,
        task: UploadTask,
        scope: CancellationScope,
        set_status: StatusSink,
    ) -> RegisteredAsset:
        set_status(TaskStatus.COMPRESSING)
        normalized = await self._timed(
            "compress", asyncio.to_thread(self.compressor.compress, task.payload)
        )
        # Compression runs in a thread and cannot be interrupted; check afterwards.
        scope.raise_if_cancelled()

        set_status(TaskStatus.UPLOADING)
        credentials = await self._timed("credentials", self.credentials.get_credentials(scope))
        key = generate_object_key(
            task.filename,
            prefix=credentials.path_prefix,
            extension=normalized.extension,
        )
        try:
            await self._timed(
                "upload",
                self.uploader.upload(credentials, key, normalized, scope),
                size=normalized.size,
            )
        except UploadError as exc:
            if exc.is_auth_failure:
                self.credentials.invalidate()
            raise

        set_status(TaskStatus.REGISTERING)
        return await self._timed(
            "register",
            self.registrar.register(
                key,
                filename=task.metadata.title or task.filename,
                metadata=task.metadata,
                width=normalized.width,
                height=normalized.height,
                size=normalized.size,
                scope=scope,
            ),
        )

    async def _timed(self, stage: str, awaitable: Awaitable[T], *, size: int = 0) -> T:
        started = time.perf_counter()
        try:
            result = await awaitable
        except (CancelledError, asyncio.CancelledError):
            raise
        except Exception:
            if self.metrics is not None:
                self.metrics.record_failure(stage)
            raise
        if self.metrics is not None:
            self.metrics.record_success(stage, elapsed=time.perf_counter() - started, size=size)
        return result


__all__ = ["IngestPipeline"]
