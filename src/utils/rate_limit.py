"""
Rate limiting strategies.

The reconciler paces remote writes through a RateLimiter instead of inline
sleeps. The default is a fixed post-operation delay; a token bucket can be
plugged in where bursts are acceptable.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class RateLimiter:
    """Strategy interface: pause() is awaited after each paced operation."""

    async def pause(self) -> None:
        raise NotImplementedError


class NoDelayRateLimiter(RateLimiter):
    """Never waits."""

    async def pause(self) -> None:
        return None


class FixedDelayRateLimiter(RateLimiter):
    """
    Waits a fixed delay after every operation.
    """

    def __init__(
        self,
        delay_seconds: float,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        if delay_seconds < 0:
            raise ValueError(f"delay_seconds must be >= 0, got {delay_seconds}")
        self.delay_seconds = delay_seconds
        self._sleep = sleep

    async def pause(self) -> None:
        if self.delay_seconds > 0:
            await self._sleep(self.delay_seconds)


class TokenBucketRateLimiter(RateLimiter):
    """
    Allows bursts of up to `capacity` operations, refilling at `rate` per second.
    """

    def __init__(
        self,
        rate: float,
        capacity: int,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Optional[Callable[[], float]] = None
    ):
        if rate <= 0:
            raise ValueError(f"rate must be > 0, got {rate}")
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")

        self.rate = rate
        self.capacity = capacity
        self._sleep = sleep
        self._clock = clock or time.monotonic
        self._tokens = float(capacity)
        self._updated = self._clock()

    def _refill(self) -> None:
        now = self._clock()
        self._tokens = min(self.capacity, self._tokens + (now - self._updated) * self.rate)
        self._updated = now

    async def pause(self) -> None:
        self._refill()
        if self._tokens < 1:
            wait = (1 - self._tokens) / self.rate
            logger.debug(f"Token bucket empty, waiting {wait:.2f}s")
            await self._sleep(wait)
            self._refill()
            # Clock may not have advanced (test clocks); the wait paid for one token
            self._tokens = max(self._tokens, 1.0)
        self._tokens -= 1
