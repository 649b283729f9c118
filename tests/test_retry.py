"""退避表驱动的重试策略。"""

from __future__ import annotations

import pytest
from conftest import SleepRecorder
from tenacity import RetryError

from alpha_arcade_cli.retry import DEFAULT_LOOKUP_BACKOFF, LookupPending, RetryPolicy


async def _run(policy: RetryPolicy, succeed_on: int) -> tuple[int, int]:
    calls = 0
    async for attempt in policy.retrying():
        with attempt:
            calls += 1
            if calls < succeed_on:
                raise LookupPending("not yet")
            return calls, attempt.retry_state.attempt_number
    raise AssertionError("unreachable")


@pytest.mark.asyncio
async def test_first_attempt_runs_without_waiting(sleeper: SleepRecorder) -> None:
    policy = RetryPolicy(sleep=sleeper)
    assert await _run(policy, succeed_on=1) == (1, 1)
    assert sleeper.delays == []


@pytest.mark.asyncio
async def test_delays_follow_schedule(sleeper: SleepRecorder) -> None:
    policy = RetryPolicy(sleep=sleeper)
    assert await _run(policy, succeed_on=4) == (4, 4)
    assert sleeper.delays == [1.0, 1.5, 2.0]


@pytest.mark.asyncio
async def test_exhaustion_raises_retry_error(sleeper: SleepRecorder) -> None:
    policy = RetryPolicy.from_delays([0.5, 2], sleep=sleeper)
    assert policy.max_attempts == 3
    with pytest.raises(RetryError):
        await _run(policy, succeed_on=10)
    assert sleeper.delays == [0.5, 2.0]


def test_default_schedule() -> None:
    assert RetryPolicy().delays == DEFAULT_LOOKUP_BACKOFF
    assert RetryPolicy().max_attempts == 7
