"""Pacing of external AI calls within a single job.

A ``RateLimitedCaller`` is created per run, so jobs for different engagements
never throttle each other. Only successive calls made through the same caller
are spaced. There is no retry here: a failing call propagates to the stage
executor, which decides whether the failure is soft or hard.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable
from collections.abc import Callable
from typing import Any
from typing import TypeVar

from app.core.config import settings
from app.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PacingStrategy:
    """Decides how long to wait before the next call."""

    async def acquire(self) -> float:
        """Wait until the next call may be issued. Returns the seconds waited."""
        raise NotImplementedError


class FixedDelayPacing(PacingStrategy):
    """Waits a fixed delay before every call except the first."""

    def __init__(self, delay_seconds: float):
        if delay_seconds < 0:
            raise ValueError("delay_seconds must be >= 0")
        self.delay_seconds = delay_seconds
        self._calls = 0

    async def acquire(self) -> float:
        self._calls += 1
        if self._calls == 1 or self.delay_seconds == 0:
            return 0.0
        await asyncio.sleep(self.delay_seconds)
        return self.delay_seconds


class TokenBucketPacing(PacingStrategy):
    """Allows bursts of ``capacity`` calls, refilling one token every ``refill_seconds``."""

    def __init__(self, capacity: int, refill_seconds: float, clock: Callable[[], float] = time.monotonic):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self.refill_seconds = refill_seconds
        self._clock = clock
        self._tokens = float(capacity)
        self._updated = clock()

    def _refill(self) -> None:
        now = self._clock()
        if self.refill_seconds > 0:
            self._tokens = min(self.capacity, self._tokens + (now - self._updated) / self.refill_seconds)
        else:
            self._tokens = float(self.capacity)
        self._updated = now

    async def acquire(self) -> float:
        self._refill()
        waited = 0.0
        if self._tokens < 1:
            waited = (1 - self._tokens) * self.refill_seconds
            await asyncio.sleep(waited)
            self._refill()
        self._tokens = max(0.0, self._tokens - 1)
        return waited


def build_pacing(strategy: str | None = None, delay_seconds: float | None = None) -> PacingStrategy:
    """Create a fresh pacing strategy from settings."""
    strategy = strategy or settings.pacing_strategy
    delay = settings.ai_call_delay_seconds if delay_seconds is None else delay_seconds
    if strategy == "fixed":
        return FixedDelayPacing(delay)
    if strategy == "token_bucket":
        # One call per delay on average, first call immediate
        return TokenBucketPacing(capacity=1, refill_seconds=delay)
    raise ConfigurationError(f"Unknown pacing strategy: {strategy!r}")


class RateLimitedCaller:
    def __init__(self, pacing: PacingStrategy, job_id: str = "-"):
        self.pacing = pacing
        self.job_id = job_id
        self.calls = 0

    async def call(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        waited = await self.pacing.acquire()
        if waited:
            logger.debug("[%s] Waited %.1fs before external call #%d", self.job_id, waited, self.calls + 1)
        self.calls += 1
        return await fn(*args, **kwargs)


async def call_with_delay(fn: Callable[[], Awaitable[T]], delay_seconds: float) -> T:
    """Wait *delay_seconds*, then await *fn*. Standalone form of fixed pacing."""
    if delay_seconds > 0:
        await asyncio.sleep(delay_seconds)
    return await fn()
