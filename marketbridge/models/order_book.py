"""Order book data models."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..core.enums import BookSide

_ONE = Decimal("1")


class PriceLevel(BaseModel):
    """Aggregated size resting at one price."""

    price: Decimal = Field(..., ge=0, le=1)
    size: Decimal = Field(..., gt=0)

    model_config = ConfigDict(frozen=True)


class LevelChange(BaseModel):
    """Absolute size at a price level; size 0 removes the level."""

    side: BookSide
    price: Decimal = Field(..., ge=0, le=1)
    size: Decimal = Field(..., ge=0)

    model_config = ConfigDict(frozen=True)


class OrderBookDelta(BaseModel):
    """Incremental book update carried by a stream message."""

    market_id: str = Field(..., min_length=1)
    outcome: str = Field(..., min_length=1)
    changes: tuple[LevelChange, ...] = ()
    sequence: Optional[int] = Field(default=None, ge=0)
    timestamp: Optional[datetime] = None

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)


class OrderBook(BaseModel):
    """Order book snapshot for one market outcome.

    Bids are sorted best (highest) first, asks best (lowest) first. Every
    operation returns a new book, so a snapshot handed to a consumer never
    changes underneath it.
    """

    market_id: str = Field(..., min_length=1)
    outcome: str = Field(..., min_length=1)
    bids: tuple[PriceLevel, ...] = ()
    asks: tuple[PriceLevel, ...] = ()
    sequence: Optional[int] = Field(default=None, ge=0)
    timestamp: Optional[datetime] = None

    @field_validator("bids")
    @classmethod
    def validate_bids_sorted(cls, v: tuple[PriceLevel, ...]) -> tuple[PriceLevel, ...]:
        """Validate bids are strictly descending by price."""
        for prev, cur in zip(v, v[1:]):
            if cur.price >= prev.price:
                raise ValueError("bids must be sorted by descending price")
        return v

    @field_validator("asks")
    @classmethod
    def validate_asks_sorted(cls, v: tuple[PriceLevel, ...]) -> tuple[PriceLevel, ...]:
        """Validate asks are strictly ascending by price."""
        for prev, cur in zip(v, v[1:]):
            if cur.price <= prev.price:
                raise ValueError("asks must be sorted by ascending price")
        return v

    @classmethod
    def from_levels(
        cls,
        market_id: str,
        outcome: str,
        bids: list[tuple[Decimal, Decimal]],
        asks: list[tuple[Decimal, Decimal]],
        sequence: Optional[int] = None,
        timestamp: Optional[datetime] = None,
    ) -> "OrderBook":
        """Build a book from unsorted (price, size) pairs.

        Zero-size levels are dropped and duplicate prices are merged.
        """
        return cls(
            market_id=market_id,
            outcome=outcome,
            bids=_sorted_levels(_merge(bids), descending=True),
            asks=_sorted_levels(_merge(asks), descending=False),
            sequence=sequence,
            timestamp=timestamp,
        )

    @property
    def best_bid(self) -> Optional[Decimal]:
        return self.bids[0].price if self.bids else None

    @property
    def best_ask(self) -> Optional[Decimal]:
        return self.asks[0].price if self.asks else None

    @property
    def mid_price(self) -> Optional[Decimal]:
        if self.best_bid is None or self.best_ask is None:
            return None
        return (self.best_bid + self.best_ask) / 2

    @property
    def spread(self) -> Optional[Decimal]:
        if self.best_bid is None or self.best_ask is None:
            return None
        return self.best_ask - self.best_bid

    @property
    def has_data(self) -> bool:
        return bool(self.bids or self.asks)

    @property
    def is_crossed(self) -> bool:
        """True if best bid >= best ask (inconsistent top of book)."""
        return (
            self.best_bid is not None
            and self.best_ask is not None
            and self.best_bid >= self.best_ask
        )

    def apply(self, delta: OrderBookDelta) -> "OrderBook":
        """Return a new book with ``delta`` applied; the result stays sorted."""
        bids = {level.price: level.size for level in self.bids}
        asks = {level.price: level.size for level in self.asks}
        for change in delta.changes:
            side = bids if change.side is BookSide.BID else asks
            if change.size == 0:
                side.pop(change.price, None)
            else:
                side[change.price] = change.size
        return self.model_copy(
            update={
                "bids": _sorted_levels(bids, descending=True),
                "asks": _sorted_levels(asks, descending=False),
                "sequence": delta.sequence if delta.sequence is not None else self.sequence,
                "timestamp": delta.timestamp or self.timestamp,
            }
        )

    def inverted(self, outcome: str) -> "OrderBook":
        """Book of the complementary outcome in a binary market.

        A bid for YES at p is an ask for NO at 1 - p and vice versa.
        """
        return self.model_copy(
            update={
                "outcome": outcome,
                "bids": tuple(PriceLevel(price=_ONE - a.price, size=a.size) for a in self.asks),
                "asks": tuple(PriceLevel(price=_ONE - b.price, size=b.size) for b in self.bids),
            }
        )

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)


def _merge(levels: list[tuple[Decimal, Decimal]]) -> dict[Decimal, Decimal]:
    merged: dict[Decimal, Decimal] = {}
    for price, size in levels:
        price, size = Decimal(str(price)), Decimal(str(size))
        if size > 0:
            merged[price] = merged.get(price, Decimal("0")) + size
    return merged


def _sorted_levels(levels: dict[Decimal, Decimal], *, descending: bool) -> tuple[PriceLevel, ...]:
    return tuple(
        PriceLevel(price=price, size=size)
        for price, size in sorted(levels.items(), key=lambda kv: kv[0], reverse=descending)
        if size > 0
    )
