"""Core components."""

from .config import (
    VENUE_ENV,
    BucketConfig,
    ExchangeConfig,
    RetryPolicy,
    env_str,
    missing_env,
    require_env,
    validate_env,
)
from .enums import (
    BookSide,
    Capability,
    EndpointClass,
    MarketStatus,
    OrderEventKind,
    OrderSide,
    OrderStatus,
    PriceHistoryInterval,
    SchemeKind,
    StreamState,
    Venue,
)
from .exceptions import (
    AuthError,
    ClockSkewError,
    ConfigError,
    DrmError,
    ExchangeRejected,
    InsufficientFunds,
    InvalidOrder,
    MarketNotFound,
    NetworkError,
    NotSupported,
    RateLimitExceeded,
    SerializationError,
    StreamDisconnected,
    Timeout,
    ValidationError,
)

__all__ = [
    "Venue",
    "EndpointClass",
    "OrderSide",
    "BookSide",
    "OrderStatus",
    "MarketStatus",
    "StreamState",
    "OrderEventKind",
    "PriceHistoryInterval",
    "SchemeKind",
    "Capability",
    "BucketConfig",
    "ExchangeConfig",
    "RetryPolicy",
    "VENUE_ENV",
    "env_str",
    "missing_env",
    "require_env",
    "validate_env",
    "DrmError",
    "AuthError",
    "ClockSkewError",
    "RateLimitExceeded",
    "NetworkError",
    "Timeout",
    "ValidationError",
    "InvalidOrder",
    "ExchangeRejected",
    "MarketNotFound",
    "InsufficientFunds",
    "SerializationError",
    "StreamDisconnected",
    "NotSupported",
    "ConfigError",
]
