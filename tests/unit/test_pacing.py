from unittest.mock import AsyncMock

import pytest

from app.core.exceptions import ConfigurationError
from app.generation_logic import pacing
from app.generation_logic.pacing import FixedDelayPacing
from app.generation_logic.pacing import RateLimitedCaller
from app.generation_logic.pacing import TokenBucketPacing
from app.generation_logic.pacing import build_pacing
from app.generation_logic.pacing import call_with_delay


@pytest.fixture
def sleep_mock(monkeypatch):
    mock = AsyncMock()
    monkeypatch.setattr(pacing.asyncio, "sleep", mock)
    return mock


@pytest.mark.asyncio
async def test_fixed_delay_skips_first_call_and_delays_the_rest(sleep_mock):
    caller = RateLimitedCaller(FixedDelayPacing(15.0), job_id="job_test")
    fn = AsyncMock(return_value="ok")

    for _ in range(3):
        assert await caller.call(fn, "prompt", system_prompt="sys") == "ok"

    assert [c.args[0] for c in sleep_mock.await_args_list] == [15.0, 15.0]
    assert fn.await_count == 3
    fn.assert_awaited_with("prompt", system_prompt="sys")
    assert caller.calls == 3


@pytest.mark.asyncio
async def test_zero_delay_never_sleeps(sleep_mock):
    caller = RateLimitedCaller(FixedDelayPacing(0))

    await caller.call(AsyncMock())
    await caller.call(AsyncMock())

    sleep_mock.assert_not_awaited()


@pytest.mark.asyncio
async def test_failures_propagate_without_retry(sleep_mock):
    caller = RateLimitedCaller(FixedDelayPacing(1.0))
    fn = AsyncMock(side_effect=RuntimeError("upstream down"))

    with pytest.raises(RuntimeError, match="upstream down"):
        await caller.call(fn)

    assert fn.await_count == 1


@pytest.mark.asyncio
async def test_separate_callers_do_not_throttle_each_other(sleep_mock):
    first = RateLimitedCaller(FixedDelayPacing(15.0))
    second = RateLimitedCaller(FixedDelayPacing(15.0))

    await first.call(AsyncMock())
    await second.call(AsyncMock())

    sleep_mock.assert_not_awaited()


@pytest.mark.asyncio
async def test_token_bucket_allows_burst_then_waits(sleep_mock):
    bucket = TokenBucketPacing(capacity=2, refill_seconds=10.0, clock=lambda: 1000.0)

    waits = [await bucket.acquire() for _ in range(3)]

    assert waits[:2] == [0.0, 0.0]
    assert waits[2] == pytest.approx(10.0)
    sleep_mock.assert_awaited_once()


def test_build_pacing_from_settings():
    assert isinstance(build_pacing("fixed", 3.0), FixedDelayPacing)
    assert isinstance(build_pacing("token_bucket", 3.0), TokenBucketPacing)


def test_build_pacing_rejects_unknown_strategy():
    with pytest.raises(ConfigurationError):
        build_pacing("random", 1.0)


def test_fixed_delay_rejects_negative_delay():
    with pytest.raises(ValueError):
        FixedDelayPacing(-1)


@pytest.mark.asyncio
async def test_call_with_delay_waits_then_calls(sleep_mock):
    fn = AsyncMock(return_value=42)

    assert await call_with_delay(fn, 2.5) == 42

    sleep_mock.assert_awaited_once_with(2.5)
    fn.assert_awaited_once_with()
