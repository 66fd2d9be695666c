"""WebSocket connection factory with shared keepalive and backoff settings."""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Any, Optional

import websockets


@dataclass(frozen=True)
class TransportConfig:
    ping_interval: float = 30
    ping_timeout: float = 10
    base_reconnect_delay: float = 1.0
    max_reconnect_delay: float = 30.0
    backoff_multiplier: float = 2.0
    jitter: float = 0.2  # +/-20% jitter to avoid thundering herds
    max_size: Optional[int] = None  # bytes; None = websockets default
    max_queue: Optional[int] = 1024  # number of messages queued; None = unlimited
    close_timeout: float = 10
    # Consecutive failed reconnects before giving up; None retries forever.
    max_reconnect_attempts: Optional[int] = None

    def __post_init__(self) -> None:
        if self.base_reconnect_delay < 0 or self.max_reconnect_delay < self.base_reconnect_delay:
            raise ValueError("TransportConfig requires 0 <= base_reconnect_delay <= max_reconnect_delay")
        if self.backoff_multiplier < 1:
            raise ValueError("TransportConfig backoff_multiplier must be >= 1")
        if self.max_reconnect_attempts is not None and self.max_reconnect_attempts < 0:
            raise ValueError("TransportConfig max_reconnect_attempts cannot be negative")


class WebSocketTransport:
    """Opens websockets connections configured from a TransportConfig."""

    def __init__(self, config: Optional[TransportConfig] = None) -> None:
        self._conf = config or TransportConfig()

    @property
    def config(self) -> TransportConfig:
        return self._conf

    def _next_delay(self, delay: float) -> float:
        """Exponential backoff with jitter, capped to max_reconnect_delay."""
        conf = self._conf
        delay = min(delay * conf.backoff_multiplier, conf.max_reconnect_delay)
        factor = random.uniform(1 - conf.jitter, 1 + conf.jitter)
        return max(conf.base_reconnect_delay, min(delay * factor, conf.max_reconnect_delay))

    def _connect_kwargs(self) -> dict[str, Any]:
        conf = self._conf
        kwargs: dict[str, Any] = {
            "ping_interval": conf.ping_interval,
            "ping_timeout": conf.ping_timeout,
            "close_timeout": conf.close_timeout,
        }
        # Only include size/queue if not None to keep library defaults
        if conf.max_size is not None:
            kwargs["max_size"] = conf.max_size
        if conf.max_queue is not None:
            kwargs["max_queue"] = conf.max_queue
        return kwargs

    def connect(self, url: str, headers: Optional[dict[str, str]] = None):
        """Return a ``websockets.connect`` context for ``url``."""
        kwargs = self._connect_kwargs()
        if headers:
            kwargs["additional_headers"] = headers
        return websockets.connect(url, **kwargs)
