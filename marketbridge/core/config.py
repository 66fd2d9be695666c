"""Configuration structures and environment helpers.

Policies are immutable dataclasses validated on construction. ExchangeConfig
exposes ``with_*`` builders that return modified copies, so a config shared
between adapters can never be mutated from under them.
"""

from __future__ import annotations

import os
import random
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace

from .enums import EndpointClass, Venue
from .exceptions import ConfigError

DEFAULT_TIMEOUT = 30.0
DEFAULT_RATE_LIMIT_PER_SECOND = 10.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 1.0


@dataclass(frozen=True)
class BucketConfig:
    """Token bucket parameters for one (venue, endpoint class).

    Attributes:
        capacity: Maximum burst size (tokens)
        refill_rate: Sustained rate (tokens per second)
        max_wait: Longest ``acquire`` may suspend before raising
            RateLimitExceeded (None waits forever)
    """

    capacity: float
    refill_rate: float
    max_wait: float | None = 30.0

    def __post_init__(self) -> None:
        if self.refill_rate <= 0:
            raise ValueError("BucketConfig refill_rate must be positive")
        if self.capacity < self.refill_rate:
            raise ValueError("BucketConfig capacity must be >= refill_rate")
        if self.capacity < 1:
            raise ValueError("BucketConfig capacity must hold at least one token")
        if self.max_wait is not None and self.max_wait < 0:
            raise ValueError("BucketConfig max_wait cannot be negative")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff with jitter for transient failures."""

    max_attempts: int = DEFAULT_MAX_RETRIES
    base_delay: float = DEFAULT_RETRY_DELAY
    max_delay: float = 8.0
    jitter: float = 0.2  # +/-20%

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("RetryPolicy max_attempts must be >= 1")
        if self.base_delay < 0 or self.max_delay < self.base_delay:
            raise ValueError("RetryPolicy requires 0 <= base_delay <= max_delay")
        if not 0 <= self.jitter < 1:
            raise ValueError("RetryPolicy jitter must be in [0, 1)")

    def delay_for(self, attempt: int) -> float:
        """Backoff before retrying after failed ``attempt`` (1-based)."""
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        if self.jitter:
            delay *= random.uniform(1 - self.jitter, 1 + self.jitter)
        return delay


@dataclass(frozen=True)
class ExchangeConfig:
    """Per-adapter settings shared by the dispatcher and rate limiter."""

    timeout: float = DEFAULT_TIMEOUT
    rate_limit_per_second: float = DEFAULT_RATE_LIMIT_PER_SECOND
    burst: float | None = None
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay: float = DEFAULT_RETRY_DELAY
    verbose: bool = False
    buckets: Mapping[EndpointClass, BucketConfig] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.timeout <= 0:
            raise ValueError("ExchangeConfig timeout must be positive")
        if self.burst is not None and self.burst < self.rate_limit_per_second:
            raise ValueError("ExchangeConfig burst must be >= rate_limit_per_second")

    def with_timeout(self, timeout: float) -> ExchangeConfig:
        return replace(self, timeout=timeout)

    def with_rate_limit(self, per_second: float, burst: float | None = None) -> ExchangeConfig:
        return replace(self, rate_limit_per_second=per_second, burst=burst)

    def with_retry(self, max_retries: int, retry_delay: float | None = None) -> ExchangeConfig:
        delay = self.retry_delay if retry_delay is None else retry_delay
        return replace(self, max_retries=max_retries, retry_delay=delay)

    def with_bucket(self, endpoint_class: EndpointClass, bucket: BucketConfig) -> ExchangeConfig:
        buckets = dict(self.buckets)
        buckets[endpoint_class] = bucket
        return replace(self, buckets=buckets)

    def with_verbose(self, verbose: bool = True) -> ExchangeConfig:
        return replace(self, verbose=verbose)

    def bucket_for(self, endpoint_class: EndpointClass) -> BucketConfig:
        """Bucket for a class, falling back to the adapter-wide rate."""
        if endpoint_class in self.buckets:
            return self.buckets[endpoint_class]
        rate = self.rate_limit_per_second
        return BucketConfig(capacity=self.burst or rate, refill_rate=rate, max_wait=self.timeout)

    def retry_policy(self) -> RetryPolicy:
        delay = self.retry_delay
        return RetryPolicy(
            max_attempts=self.max_retries,
            base_delay=delay,
            max_delay=max(delay * 8, delay),
        )


# Environment variables each venue needs for authenticated access.
VENUE_ENV: dict[Venue, tuple[str, ...]] = {
    Venue.POLYMARKET: ("POLYMARKET_PRIVATE_KEY", "POLYMARKET_FUNDER"),
    Venue.KALSHI: ("KALSHI_API_KEY_ID", "KALSHI_PRIVATE_KEY_PATH"),
    Venue.LIMITLESS: ("LIMITLESS_PRIVATE_KEY",),
    Venue.OPINION: ("OPINION_API_KEY", "OPINION_PRIVATE_KEY", "OPINION_MULTI_SIG_ADDR"),
    Venue.PREDICTFUN: ("PREDICTFUN_API_KEY", "PREDICTFUN_PRIVATE_KEY"),
}


def env_str(name: str, default: str | None = None, environ: Mapping[str, str] | None = None) -> str | None:
    """Read an environment variable, treating blank values as unset."""
    env = os.environ if environ is None else environ
    value = env.get(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def missing_env(venue: Venue, environ: Mapping[str, str] | None = None) -> list[str]:
    """Names of required variables for ``venue`` that are unset."""
    return [name for name in VENUE_ENV[venue] if env_str(name, environ=environ) is None]


def require_env(names: Iterable[str], environ: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return the requested variables or raise ConfigError listing the missing ones."""
    values: dict[str, str] = {}
    missing: list[str] = []
    for name in names:
        value = env_str(name, environ=environ)
        if value is None:
            missing.append(name)
        else:
            values[name] = value
    if missing:
        raise ConfigError(f"Missing environment variables: {', '.join(missing)}")
    return values


def validate_env(venue: Venue, environ: Mapping[str, str] | None = None) -> dict[str, str]:
    """Validate and return the credentials ``venue`` needs from the environment."""
    try:
        return require_env(VENUE_ENV[venue], environ=environ)
    except ConfigError as e:
        raise ConfigError(str(e), venue=venue) from e
