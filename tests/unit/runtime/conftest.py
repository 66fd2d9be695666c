"""Deterministic time for runtime tests."""

from __future__ import annotations

import asyncio

import pytest

from marketbridge.core import ExchangeConfig, Venue
from marketbridge.runtime import RateLimiter


class FakeClock:
    """Monotonic clock that only moves when ``sleep`` is awaited."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def limiter(clock) -> RateLimiter:
    """Generous limiter so dispatch tests never wait on tokens."""
    config = ExchangeConfig(rate_limit_per_second=100, burst=100)
    return RateLimiter.from_config(Venue.KALSHI, config, clock=clock, sleep=clock.sleep)
