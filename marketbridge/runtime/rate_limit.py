"""Token-bucket admission control per (venue, endpoint class).

Architecture:
    Each bucket refills continuously at ``refill_rate`` tokens per second up
    to ``capacity``. ``acquire`` holds the bucket's asyncio.Lock while it
    waits, so waiters are served in arrival order and token accounting has
    a single point of mutation. The wait is an ``asyncio.sleep`` computed
    from the refill rate, never a polling loop.

Design Decisions:
    - Limiter instances are owned by a venue adapter; no global state
    - Clock and sleep are injectable so tests run without real time
    - ``try_acquire`` is synchronous: on a single event loop it cannot
      interleave with the accounting done inside ``acquire``
    - Tokens are never shared between buckets
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass

from ..core.config import BucketConfig
from ..core.enums import EndpointClass, Venue
from ..core.exceptions import RateLimitExceeded

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class Permit:
    """Proof that one token was taken from a bucket."""

    venue: Venue
    endpoint_class: EndpointClass
    granted_at: float
    waited: float = 0.0


@dataclass
class TokenBucket:
    """Mutable bucket state; only the owning RateLimiter mutates it."""

    capacity: float
    refill_rate: float
    tokens: float | None = None
    last_refill: float = 0.0

    def __post_init__(self) -> None:
        if self.tokens is None:
            self.tokens = self.capacity

    def refill(self, now: float) -> None:
        elapsed = now - self.last_refill
        if elapsed > 0:
            self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate)
        self.last_refill = max(self.last_refill, now)

    def try_take(self, now: float) -> bool:
        self.refill(now)
        if self.tokens >= 1:
            self.tokens -= 1
            return True
        return False

    def wait_time(self, now: float) -> float:
        """Seconds until one whole token is available."""
        self.refill(now)
        if self.tokens >= 1:
            return 0.0
        return (1 - self.tokens) / self.refill_rate


class RateLimiter:
    """Per-venue set of token buckets, one per EndpointClass."""

    def __init__(
        self,
        venue: Venue,
        buckets: Mapping[EndpointClass, BucketConfig],
        *,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        missing = [c.value for c in EndpointClass if c not in buckets]
        if missing:
            raise ValueError(f"RateLimiter missing bucket config for: {', '.join(missing)}")
        self.venue = venue
        self._clock = clock
        self._sleep = sleep
        now = clock()
        self._configs = dict(buckets)
        self._buckets = {
            cls: TokenBucket(capacity=conf.capacity, refill_rate=conf.refill_rate, last_refill=now)
            for cls, conf in buckets.items()
        }
        self._locks = {cls: asyncio.Lock() for cls in buckets}

    @classmethod
    def from_config(cls, venue: Venue, config, **kwargs) -> RateLimiter:
        """Build from an ExchangeConfig (per-class overrides or the shared rate)."""
        return cls(venue, {c: config.bucket_for(c) for c in EndpointClass}, **kwargs)

    def bucket(self, endpoint_class: EndpointClass) -> TokenBucket:
        """Bucket state, refilled to the current time."""
        bucket = self._buckets[endpoint_class]
        bucket.refill(self._clock())
        return bucket

    def try_acquire(self, endpoint_class: EndpointClass = EndpointClass.PUBLIC_READ) -> bool:
        """Take a token if one is available right now."""
        if self._locks[endpoint_class].locked():
            # Queued waiters go first.
            return False
        return self._buckets[endpoint_class].try_take(self._clock())

    async def acquire(
        self,
        endpoint_class: EndpointClass = EndpointClass.PUBLIC_READ,
        *,
        max_wait: float | None = -1.0,
    ) -> Permit:
        """Suspend until a token is available and take it.

        Args:
            endpoint_class: Bucket to draw from
            max_wait: Longest wait in seconds; default uses the bucket
                config, None waits indefinitely

        Raises:
            RateLimitExceeded: if no token can be granted within ``max_wait``
        """
        if max_wait is not None and max_wait < 0:
            max_wait = self._configs[endpoint_class].max_wait
        bucket = self._buckets[endpoint_class]
        lock = self._locks[endpoint_class]
        start = self._clock()
        deadline = None if max_wait is None else start + max_wait

        try:
            if max_wait is None or not lock.locked():
                await lock.acquire()
            else:
                await asyncio.wait_for(lock.acquire(), timeout=max_wait)
        except asyncio.TimeoutError as e:
            raise RateLimitExceeded(
                f"{self.venue.value}/{endpoint_class.value} queue wait exceeded {max_wait:.3f}s",
                venue=self.venue,
            ) from e

        try:
            while True:
                now = self._clock()
                if bucket.try_take(now):
                    return Permit(
                        venue=self.venue,
                        endpoint_class=endpoint_class,
                        granted_at=now,
                        waited=now - start,
                    )
                wait = bucket.wait_time(now)
                if deadline is not None and now + wait > deadline:
                    raise RateLimitExceeded(
                        f"{self.venue.value}/{endpoint_class.value} bucket exhausted "
                        f"(needs {wait:.3f}s, budget {max(deadline - now, 0):.3f}s)",
                        retry_after=wait,
                        venue=self.venue,
                    )
                logger.debug(
                    "rate_limit_wait",
                    extra={"venue": self.venue.value, "endpoint_class": endpoint_class.value, "wait": wait},
                )
                await self._sleep(wait)
        finally:
            lock.release()
