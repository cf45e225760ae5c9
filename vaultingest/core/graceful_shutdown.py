"""Signal-aware shutdown helper."""

from __future__ import annotations

import asyncio
import signal
from typing import Callable, Iterable, List


class GracefulShutdown:
    """Routes SIGINT/SIGTERM to a callback (normally ``TaskQueue.cancel``)."""

    def __init__(self, on_trigger: Callable[[], None]) -> None:
        self._on_trigger = on_trigger
        self._triggered = False
        self._installed: List[int] = []
        self._loop: asyncio.AbstractEventLoop | None = None

    def install(self, signals: Iterable[int] | None = None) -> None:
        loop = asyncio.get_running_loop()
        self._loop = loop
        targets = list(signals) if signals is not None else [signal.SIGINT, signal.SIGTERM]
        for sig in targets:
            try:
                loop.add_signal_handler(sig, self.trigger)
            except (NotImplementedError, RuntimeError):  # pragma: no cover - windows / non-main thread
                continue
            self._installed.append(sig)

    def uninstall(self) -> None:
        if self._loop is None or self._loop.is_closed():
            return
        for sig in self._installed:
            self._loop.remove_signal_handler(sig)
        self._installed.clear()

    def trigger(self) -> None:
        if self._triggered:
            return
        self._triggered = True
        self._on_trigger()

    def is_triggered(self) -> bool:
        return self._triggered


__all__ = ["GracefulShutdown"]
