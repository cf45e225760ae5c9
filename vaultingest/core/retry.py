"""Retry policy wrapping the per-task stage sequence."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from ..errors import CancelledError
from .cancellation import CancellationScope

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 3
    base_delay_seconds: float = 1.0

    @classmethod
    def from_mapping(cls, data) -> "RetryConfig":
        return cls(
            max_attempts=int(data.get("max_attempts", 3)),
            base_delay_seconds=float(data.get("base_delay_seconds", 1.0)),
        )


class RetryPolicy:
    """Runs an operation up to ``max_attempts`` times with linear backoff.

    The operation receives the 1-based attempt number. ``CancelledError`` ends
    the loop at once; every other exception is retried and the last one is
    re-raised when attempts run out.
    """

    def __init__(self, config: RetryConfig, *, logger: logging.Logger | None = None) -> None:
        if config.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.config = config
        self.logger = logger or logging.getLogger("vaultingest.retry")

    def backoff(self, attempt: int) -> float:
        return attempt * self.config.base_delay_seconds

    async def run(
        self,
        operation: Callable[[int], Awaitable[T]],
        scope: CancellationScope,
        *,
        label: str = "operation",
        on_retry: Optional[Callable[[int, BaseException], None]] = None,
    ) -> T:
        attempt = 0
        while True:
            attempt += 1
            scope.raise_if_cancelled()
            try:
                return await operation(attempt)
            except (CancelledError, asyncio.CancelledError):
                raise
            except Exception as exc:
                if attempt >= self.config.max_attempts:
                    self.logger.error(
                        "%s failed after %d attempt(s): %s", label, attempt, exc
                    )
                    raise
                delay = self.backoff(attempt)
                self.logger.warning(
                    "%s attempt %d/%d failed (%s); retrying in %.1fs",
                    label,
                    attempt,
                    self.config.max_attempts,
                    exc,
                    delay,
                )
                if on_retry is not None:
                    on_retry(attempt, exc)
                await scope.sleep(delay)


__all__ = ["RetryConfig", "RetryPolicy"]
