"""Cooperative cancellation token shared by one queue run."""

from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

from ..errors import CancelledError

T = TypeVar("T")


class CancellationScope:
    """A single switch checked before new work starts and raced against network calls.

    Each queue run owns its own scope, so independent queues never observe each
    other's cancellation.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._cancelled = False
        self._reason = "cancelled"
        self._loop: asyncio.AbstractEventLoop | None = None

    # ------------------------------------------------------------------
    def cancel(self, reason: str = "cancelled") -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason
        loop = self._loop
        if loop is not None and not loop.is_closed():
            try:
                running = asyncio.get_running_loop()
            except RuntimeError:
                running = None
            if running is not loop:
                loop.call_soon_threadsafe(self._event.set)
                return
        self._event.set()

    def is_cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str:
        return self._reason

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise CancelledError(self._reason)

    # ------------------------------------------------------------------
    async def sleep(self, delay: float) -> None:
        """Sleep for ``delay`` seconds unless the scope is cancelled first."""

        self.raise_if_cancelled()
        if delay <= 0:
            return
        self._bind()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        raise CancelledError(self._reason)

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable``, aborting it as soon as the scope is cancelled."""

        if self._cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise CancelledError(self._reason)
        self._bind()
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            waiter.cancel()
        if work in done:
            return work.result()
        work.cancel()
        await asyncio.gather(work, return_exceptions=True)
        raise CancelledError(self._reason)

    def _bind(self) -> None:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()


__all__ = ["CancellationScope"]
