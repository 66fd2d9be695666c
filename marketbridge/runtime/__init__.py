"""Runtime: rate limiting, request dispatch, streams and order tracking."""

from .dispatcher import RequestDispatcher, Transport
from .order_tracker import OrderTracker, log_fills
from .rate_limit import Permit, RateLimiter, TokenBucket
from .stream import StreamNormalizer, StreamProtocol, StreamSubscription

__all__ = [
    "RequestDispatcher",
    "Transport",
    "RateLimiter",
    "TokenBucket",
    "Permit",
    "StreamNormalizer",
    "StreamProtocol",
    "StreamSubscription",
    "OrderTracker",
    "log_fills",
]
