"""marketbridge - unified access to prediction-market venues."""

from .core import (
    AuthError,
    BookSide,
    BucketConfig,
    ClockSkewError,
    ConfigError,
    DrmError,
    EndpointClass,
    ExchangeConfig,
    ExchangeRejected,
    InsufficientFunds,
    InvalidOrder,
    MarketNotFound,
    NetworkError,
    NotSupported,
    OrderSide,
    OrderStatus,
    RateLimitExceeded,
    RetryPolicy,
    SerializationError,
    StreamDisconnected,
    StreamState,
    Timeout,
    ValidationError,
    Venue,
)
from .io import HTTPClient, RawResponse, TransportConfig, WebSocketTransport
from .models import (
    Credential,
    Market,
    MarketRef,
    ObservationSource,
    Order,
    OrderBook,
    OrderBookDelta,
    OrderEvent,
    OrderObservation,
    OrderRequest,
    Position,
    ReconciliationWarning,
    SignedPayload,
    StreamStateChange,
    Trade,
)
from .runtime import (
    OrderTracker,
    RateLimiter,
    RequestDispatcher,
    StreamNormalizer,
    StreamProtocol,
    log_fills,
)
from .signing import (
    ApiKeyMultiSig,
    MessageSignatureAuth,
    RsaSignatureAuth,
    SigningScheme,
    TypedDataDomain,
    TypedDataOrderSigning,
)
from .venues import VenueInfo, describe, list_venues

__version__ = "0.1.0"

__all__ = [
    # Enums and config
    "Venue",
    "EndpointClass",
    "OrderSide",
    "BookSide",
    "OrderStatus",
    "StreamState",
    "BucketConfig",
    "ExchangeConfig",
    "RetryPolicy",
    # Exceptions
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
    # Models
    "Market",
    "MarketRef",
    "OrderBook",
    "OrderBookDelta",
    "Order",
    "OrderRequest",
    "Trade",
    "Position",
    "Credential",
    "SignedPayload",
    "ObservationSource",
    "OrderObservation",
    "OrderEvent",
    "ReconciliationWarning",
    "StreamStateChange",
    # I/O
    "HTTPClient",
    "RawResponse",
    "TransportConfig",
    "WebSocketTransport",
    # Runtime
    "RateLimiter",
    "RequestDispatcher",
    "StreamNormalizer",
    "StreamProtocol",
    "OrderTracker",
    "log_fills",
    # Signing
    "SigningScheme",
    "MessageSignatureAuth",
    "TypedDataOrderSigning",
    "TypedDataDomain",
    "RsaSignatureAuth",
    "ApiKeyMultiSig",
    # Venues
    "VenueInfo",
    "describe",
    "list_venues",
]
