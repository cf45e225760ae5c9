"""Bounded worker pool that drains the shared upload queue."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import deque
from typing import Callable, Deque, Dict, Iterable, List, Optional, Set

from ..errors import CancelledError
from ..logging_utils import task_logger
from ..models import QueueState, TaskStatus, UploadTask
from .cancellation import CancellationScope
from .pipeline import IngestPipeline

Listener = Callable[[QueueState], None]

DEFAULT_CONCURRENCY = 4


class TaskQueue:
    """Runs submitted tasks through the pipeline with at most ``concurrency`` workers.

    One run (one set of workers sharing one :class:`CancellationScope`) is active
    at a time. Tasks submitted during a run join its queue; the run ends when
    the last worker finds the queue empty, at which point ``on_complete`` fires.
    The task list and the pending deque are guarded by a ``threading.Lock`` so
    ``state()`` and ``cancel()`` may be called from other threads.
    """

    def __init__(
        self,
        *,
        pipeline: IngestPipeline,
        concurrency: int = DEFAULT_CONCURRENCY,
        on_complete: Optional[Listener] = None,
        logger: logging.Logger | None = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.pipeline = pipeline
        self.concurrency = concurrency
        self.on_complete = on_complete
        self.logger = logger or logging.getLogger("vaultingest.queue")
        self._lock = threading.Lock()
        self._tasks: List[UploadTask] = []
        self._index: Dict[str, UploadTask] = {}
        self._pending: Deque[UploadTask] = deque()
        self._queued: Set[str] = set()
        self._in_flight: Set[str] = set()
        self._listeners: List[Listener] = []
        self._workers: Set[asyncio.Task] = set()
        self._scope: CancellationScope | None = None
        self._is_uploading = False
        self._run_number = 0
        self._worker_counter = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def submit(self, tasks: Iterable[UploadTask]) -> None:
        """Queue ``tasks`` and make sure a run is draining them.

        Must be called from a running event loop. A known task id may be
        resubmitted once it is ``pending`` or ``error`` again.
        """

        asyncio.get_running_loop()
        batch = list(tasks)
        if not batch:
            return
        with self._lock:
            seen: Set[str] = set()
            for task in batch:
                if task.id in seen:
                    raise ValueError(f"Task {task.id} appears twice in the batch")
                seen.add(task.id)
                known = self._index.get(task.id)
                if known is None:
                    continue
                if task.id in self._queued or task.id in self._in_flight:
                    raise ValueError(f"Task {task.id} is already queued or running")
                if known.status is TaskStatus.SUCCESS:
                    raise ValueError(f"Task {task.id} has already been uploaded")
            for task in batch:
                known = self._index.get(task.id)
                if known is None:
                    known = task
                    self._tasks.append(known)
                    self._index[known.id] = known
                known.status = TaskStatus.PENDING
                known.error = None
                known.attempt = 0
                self._pending.append(known)
                self._queued.add(known.id)
        self.logger.info("Queued %d task(s)", len(batch))
        self._ensure_workers()
        self._notify()

    def cancel(self) -> None:
        """Stop the current run: no new task starts and in-flight calls abort."""

        with self._lock:
            dropped = len(self._pending)
            self._pending.clear()
            self._queued.clear()
            scope = self._scope if self._is_uploading else None
        if scope is not None:
            scope.cancel("upload cancelled")
            self.logger.warning("Upload cancelled; %d queued task(s) left pending", dropped)

    def clear(self) -> None:
        """Cancel any active run and forget every task."""

        self.cancel()
        with self._lock:
            self._tasks = []
            self._index = {}
        self._notify()

    def state(self) -> QueueState:
        with self._lock:
            return QueueState(
                tasks=tuple(task.snapshot() for task in self._tasks),
                is_uploading=self._is_uploading,
            )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` with a fresh state after every change."""

        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def join(self) -> QueueState:
        """Wait until no run is active and return the final state."""

        while self._workers:
            await asyncio.gather(*list(self._workers), return_exceptions=True)
        return self.state()

    async def aclose(self) -> None:
        self.cancel()
        await self.join()

    # ------------------------------------------------------------------
    # Worker pool
    # ------------------------------------------------------------------
    def _ensure_workers(self) -> None:
        scope = self._scope
        if self._workers and scope is not None and scope.is_cancelled():
            # The cancelled run is winding down; _finish_run starts the next one.
            return
        if not self._workers:
            self._scope = scope = CancellationScope()
            self._run_number += 1
            with self._lock:
                self._is_uploading = True
            self.logger.info("Starting upload run %d", self._run_number)
        with self._lock:
            wanted = min(self.concurrency - len(self._workers), len(self._pending))
        for _ in range(max(0, wanted)):
            self._worker_counter += 1
            worker = asyncio.create_task(
                self._worker(self._worker_counter, scope),
                name=f"upload-worker-{self._worker_counter}",
            )
            self._workers.add(worker)

    async def _worker(self, worker_id: int, scope: CancellationScope) -> None:
        self.logger.debug("Worker %d started", worker_id)
        try:
            while not scope.is_cancelled():
                task = self._pop()
                if task is None:
                    break
                await self._run_task(task, scope)
        finally:
            self._workers.discard(asyncio.current_task())
            self.logger.debug("Worker %d exiting", worker_id)
            if not self._workers:
                self._finish_run(scope)

    def _pop(self) -> UploadTask | None:
        with self._lock:
            if not self._pending:
                return None
            task = self._pending.popleft()
            self._queued.discard(task.id)
            self._in_flight.add(task.id)
            return task

    async def _run_task(self, task: UploadTask, scope: CancellationScope) -> None:
        log = task_logger(self.logger, task.id)
        try:
            asset = await self.pipeline.process(
                task, scope, lambda status: self._set_status(task, status)
            )
        except CancelledError:
            self._set_status(task, TaskStatus.PENDING)
            log.info("%s returned to pending (cancelled)", task.filename)
        except asyncio.CancelledError:
            self._set_status(task, TaskStatus.PENDING)
            raise
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            self._set_status(task, TaskStatus.ERROR, error=message)
            log.error("%s failed: %s", task.filename, message)
        else:
            self._set_status(task, TaskStatus.SUCCESS)
            log.info("%s registered as asset %s", task.filename, asset.asset_id)
        finally:
            with self._lock:
                self._in_flight.discard(task.id)

    def _finish_run(self, scope: CancellationScope) -> None:
        with self._lock:
            self._is_uploading = False
            restart = bool(self._pending)
        state = self.state()
        self.logger.info(
            "Upload run %d finished: %d succeeded, %d failed, %d total%s",
            self._run_number,
            state.completed_count,
            state.failed_count,
            state.total_count,
            " (cancelled)" if scope.is_cancelled() else "",
        )
        self._notify(state)
        if self.on_complete is not None:
            try:
                self.on_complete(state)
            except Exception:
                self.logger.exception("Upload completion callback failed")
        if restart:
            self._ensure_workers()

    # ------------------------------------------------------------------
    # State changes
    # ------------------------------------------------------------------
    def _set_status(self, task: UploadTask, status: TaskStatus, *, error: str | None = None) -> None:
        with self._lock:
            task.status = status
            task.error = error if status is TaskStatus.ERROR else None
        self.logger.debug("Task %s -> %s", task.id, status.value)
        self._notify()

    def _notify(self, state: QueueState | None = None) -> None:
        if not self._listeners:
            return
        state = state or self.state()
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                self.logger.exception("Queue listener failed")


__all__ = ["DEFAULT_CONCURRENCY", "TaskQueue"]
