from __future__ import annotations

import asyncio
from typing import List

import pytest

from vaultingest.core import CancellationScope, RetryConfig, RetryPolicy
from vaultingest.errors import CancelledError


def test_backoff_is_linear() -> None:
    policy = RetryPolicy(RetryConfig(max_attempts=3, base_delay_seconds=1.5))

    assert [policy.backoff(attempt) for attempt in (1, 2, 3)] == [1.5, 3.0, 4.5]


def test_succeeds_after_transient_failures() -> None:
    attempts: List[int] = []
    retried: List[int] = []

    async def operation(attempt: int) -> str:
        attempts.append(attempt)
        if attempt < 3:
            raise RuntimeError("flaky")
        return "done"

    policy = RetryPolicy(RetryConfig(max_attempts=3, base_delay_seconds=0))
    result = asyncio.run(
        policy.run(operation, CancellationScope(), on_retry=lambda attempt, exc: retried.append(attempt))
    )

    assert result == "done"
    assert attempts == [1, 2, 3]
    assert retried == [1, 2]


def test_gives_up_after_max_attempts() -> None:
    attempts: List[int] = []

    async def operation(attempt: int) -> None:
        attempts.append(attempt)
        raise RuntimeError(f"failure {attempt}")

    policy = RetryPolicy(RetryConfig(max_attempts=3, base_delay_seconds=0))

    with pytest.raises(RuntimeError, match="failure 3"):
        asyncio.run(policy.run(operation, CancellationScope()))
    assert attempts == [1, 2, 3]


def test_success_after_the_cap_is_never_reached() -> None:
    attempts: List[int] = []

    async def operation(attempt: int) -> str:
        attempts.append(attempt)
        if attempt <= 3:
            raise RuntimeError("still failing")
        return "too late"

    policy = RetryPolicy(RetryConfig(max_attempts=3, base_delay_seconds=0))

    with pytest.raises(RuntimeError):
        asyncio.run(policy.run(operation, CancellationScope()))
    assert attempts == [1, 2, 3]


def test_cancellation_is_not_retried() -> None:
    attempts: List[int] = []

    async def operation(attempt: int) -> None:
        attempts.append(attempt)
        raise CancelledError("stop")

    policy = RetryPolicy(RetryConfig(max_attempts=3, base_delay_seconds=0))

    with pytest.raises(CancelledError):
        asyncio.run(policy.run(operation, CancellationScope()))
    assert attempts == [1]


def test_cancel_during_backoff_stops_retrying() -> None:
    attempts: List[int] = []
    scope = CancellationScope()

    async def operation(attempt: int) -> None:
        attempts.append(attempt)
        raise RuntimeError("flaky")

    async def scenario():
        policy = RetryPolicy(RetryConfig(max_attempts=3, base_delay_seconds=30))
        run = asyncio.create_task(policy.run(operation, scope))
        await asyncio.sleep(0.01)
        scope.cancel()
        await run

    with pytest.raises(CancelledError):
        asyncio.run(scenario())
    assert attempts == [1]


def test_max_attempts_must_be_positive() -> None:
    with pytest.raises(ValueError):
        RetryPolicy(RetryConfig(max_attempts=0))
