"""Canonical data models shared by every venue.

Architecture:
    Pydantic v2 models for market data and orders, frozen so that a snapshot
    handed to a caller can never be changed by the component that produced
    it. Lifecycle events are frozen dataclasses.

Design Decisions:
    - Pydantic v2: type validation, serialization, and immutable models
    - Decimal for prices and sizes: no float drift in fill accounting
    - Prices are probabilities in [0, 1] for every venue
    - Computed properties: spreads, mid prices, fill progress, PnL

Model Categories:
    - Market Data: Market, MarketRef, OrderBook, OrderBookDelta, Trade, PricePoint
    - Trading: OrderRequest, Order, Position
    - Auth: Credential, SignedPayload
    - Events: OrderObservation, OrderEvent, ReconciliationWarning,
      StreamStateChange
"""

from .credential import Credential, SignedPayload
from .events import (
    ObservationSource,
    OrderEvent,
    OrderObservation,
    ReconciliationWarning,
    StreamStateChange,
)
from .market import FetchMarketsParams, FetchOrdersParams, Market, MarketRef, OutcomeToken
from .order import Order, OrderRequest
from .order_book import LevelChange, OrderBook, OrderBookDelta, PriceLevel
from .position import Position
from .price_history import PricePoint
from .trade import Trade

__all__ = [
    "Credential",
    "SignedPayload",
    "ObservationSource",
    "OrderEvent",
    "OrderObservation",
    "ReconciliationWarning",
    "StreamStateChange",
    "FetchMarketsParams",
    "FetchOrdersParams",
    "Market",
    "MarketRef",
    "OutcomeToken",
    "Order",
    "OrderRequest",
    "LevelChange",
    "OrderBook",
    "OrderBookDelta",
    "PriceLevel",
    "Position",
    "PricePoint",
    "Trade",
]
