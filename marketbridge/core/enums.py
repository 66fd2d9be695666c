"""Core enumerations shared by every venue adapter.

Architecture:
    Everything that crosses the boundary between a venue adapter and the
    core (endpoint classes, order sides and statuses, stream states) is
    expressed with the string enums below so that values serialize cleanly
    and compare equal to the raw strings venues send.

Design Decisions:
    - String enums: easy logging/serialization, tolerant ``from_str`` parsing
    - OrderStatus carries its own ordering (``rank``) so reconciliation never
      needs a separate lookup table
    - Venue lists the five supported prediction-market venues

See Also:
    - OrderTracker: uses OrderStatus.rank/is_terminal for reconciliation
    - RateLimiter: one bucket per (Venue, EndpointClass)
"""

from __future__ import annotations

from enum import Enum


class Venue(str, Enum):
    """Supported prediction-market venues."""

    POLYMARKET = "polymarket"
    KALSHI = "kalshi"
    LIMITLESS = "limitless"
    OPINION = "opinion"
    PREDICTFUN = "predictfun"

    @classmethod
    def from_str(cls, value: str) -> Venue:
        """Parse a venue name, accepting a few common spellings."""
        normalized = value.strip().lower().replace("-", "").replace("_", "").replace(".", "")
        for venue in cls:
            if venue.value == normalized:
                return venue
        raise ValueError(f"Unknown venue: {value}")


class EndpointClass(str, Enum):
    """Rate-limit class of a REST endpoint."""

    PUBLIC_READ = "public_read"
    AUTHENTICATED_READ = "authenticated_read"
    ORDER_WRITE = "order_write"

    @property
    def requires_auth(self) -> bool:
        """Whether requests of this class must carry a credential."""
        return self is not EndpointClass.PUBLIC_READ


class OrderSide(str, Enum):
    """Order side."""

    BUY = "buy"
    SELL = "sell"

    @property
    def opposite(self) -> OrderSide:
        return OrderSide.SELL if self is OrderSide.BUY else OrderSide.BUY

    @classmethod
    def from_str(cls, value: str) -> OrderSide:
        normalized = value.strip().lower()
        if normalized in ("buy", "bid", "b"):
            return cls.BUY
        if normalized in ("sell", "ask", "s"):
            return cls.SELL
        raise ValueError(f"Unknown order side: {value}")


class BookSide(str, Enum):
    """Side of an order book."""

    BID = "bid"
    ASK = "ask"


_STATUS_RANK = {
    "pending": 0,
    "open": 1,
    "partially_filled": 2,
    "filled": 3,
    "cancelled": 3,
    "rejected": 3,
}


class OrderStatus(str, Enum):
    """Lifecycle status of a locally tracked order.

    ``Pending -> {Open, Rejected} -> {PartiallyFilled -> Filled, Cancelled}``
    """

    PENDING = "pending"
    OPEN = "open"
    PARTIALLY_FILLED = "partially_filled"
    FILLED = "filled"
    CANCELLED = "cancelled"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        """Filled, Cancelled and Rejected accept no further transitions."""
        return self in (OrderStatus.FILLED, OrderStatus.CANCELLED, OrderStatus.REJECTED)

    @property
    def rank(self) -> int:
        """Progress rank; a status never moves to a lower rank."""
        return _STATUS_RANK[self.value]

    def can_transition_to(self, target: OrderStatus) -> bool:
        """Return True if ``target`` is a legal forward transition."""
        if self.is_terminal:
            return False
        if target is self:
            return target is OrderStatus.PARTIALLY_FILLED
        if self is OrderStatus.PENDING:
            return True
        if target in (OrderStatus.PENDING, OrderStatus.REJECTED):
            return False
        return target.rank >= self.rank

    @classmethod
    def from_str(cls, value: str) -> OrderStatus:
        """Parse venue status strings (``live``, ``canceled``, ``matched`` ...)."""
        normalized = value.strip().lower().replace(" ", "_").replace("-", "_")
        aliases = {
            "new": cls.OPEN,
            "live": cls.OPEN,
            "resting": cls.OPEN,
            "active": cls.OPEN,
            "partial": cls.PARTIALLY_FILLED,
            "partially_matched": cls.PARTIALLY_FILLED,
            "matched": cls.FILLED,
            "executed": cls.FILLED,
            "canceled": cls.CANCELLED,
            "expired": cls.CANCELLED,
        }
        if normalized in aliases:
            return aliases[normalized]
        return cls(normalized)


class MarketStatus(str, Enum):
    """Market trading status."""

    OPEN = "open"
    CLOSED = "closed"
    RESOLVED = "resolved"


class StreamState(str, Enum):
    """Connection state of a stream subscription."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    RESYNCING = "resyncing"


class OrderEventKind(str, Enum):
    """Order lifecycle events emitted by the OrderTracker."""

    CREATED = "created"
    PARTIAL_FILL = "partial_fill"
    FILLED = "filled"
    CANCELLED = "cancelled"
    REJECTED = "rejected"
    EXPIRED = "expired"


_INTERVAL_SECONDS = {
    "1m": 60,
    "1h": 3600,
    "6h": 21600,
    "1d": 86400,
    "1w": 604800,
}


class PriceHistoryInterval(str, Enum):
    """Sampling interval for market price history."""

    M1 = "1m"
    H1 = "1h"
    H6 = "6h"
    D1 = "1d"
    W1 = "1w"
    MAX = "max"

    @property
    def seconds(self) -> int | None:
        """Interval length in seconds, or None for the full history."""
        return _INTERVAL_SECONDS.get(self.value)


class SchemeKind(str, Enum):
    """Signing scheme variants; the set is closed."""

    MESSAGE_SIGNATURE = "message_signature"
    TYPED_DATA = "typed_data"
    RSA_SIGNATURE = "rsa_signature"
    API_KEY_MULTISIG = "api_key_multisig"


class Capability(str, Enum):
    """What a signing scheme can do."""

    SIGN_MESSAGE = "sign_message"
    SIGN_TYPED_DATA = "sign_typed_data"
    SIGN_DIGEST = "sign_digest"
    STATIC_KEY = "static_key"
