"""Market data model."""

import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..core.enums import MarketStatus


class OutcomeToken(BaseModel):
    """Outcome label paired with its venue token id."""

    outcome: str = Field(..., min_length=1)
    token_id: str = ""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)


class Market(BaseModel):
    """Prediction market snapshot.

    Snapshots are refreshed by re-fetching; they are never mutated in place.
    """

    id: str = Field(..., min_length=1)
    question: str = Field(..., min_length=1)
    outcomes: tuple[str, ...] = Field(..., min_length=2)
    prices: dict[str, Decimal] = Field(default_factory=dict)
    volume: Decimal = Field(default=Decimal("0"), ge=0)
    liquidity: Decimal = Field(default=Decimal("0"), ge=0)
    status: MarketStatus = MarketStatus.OPEN
    tick_size: Decimal = Field(default=Decimal("0.01"), gt=0)
    close_time: Optional[datetime] = None
    description: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("prices")
    @classmethod
    def validate_prices(cls, v: dict[str, Decimal]) -> dict[str, Decimal]:
        """Validate every outcome price lies in [0, 1]."""
        for outcome, price in v.items():
            if price < 0 or price > 1:
                raise ValueError(f"price for {outcome!r} must be within [0, 1]")
        return v

    @model_validator(mode="after")
    def validate_price_outcomes(self) -> "Market":
        """Validate prices only reference known outcomes."""
        unknown = set(self.prices) - set(self.outcomes)
        if unknown:
            raise ValueError(f"prices reference unknown outcomes: {sorted(unknown)}")
        return self

    @property
    def is_binary(self) -> bool:
        return len(self.outcomes) == 2

    @property
    def is_open(self) -> bool:
        """Open for trading: status Open, not flagged closed, not past close time."""
        if self.status is not MarketStatus.OPEN:
            return False
        closed = self.metadata.get("closed")
        if isinstance(closed, bool):
            return not closed
        if self.close_time is None:
            return True
        close_time = self.close_time
        if close_time.tzinfo is None:
            close_time = close_time.replace(tzinfo=timezone.utc)
        return datetime.now(timezone.utc) < close_time

    @property
    def spread(self) -> Optional[Decimal]:
        """Binary overround: ``|1 - (p_yes + p_no)|``."""
        if not self.is_binary or len(self.prices) != 2:
            return None
        return abs(Decimal("1") - sum(self.prices.values(), Decimal("0")))

    @property
    def token_ids(self) -> list[str]:
        """Venue token ids, in outcome order (from ``clobTokenIds`` metadata)."""
        raw = self.metadata.get("clobTokenIds") or self.metadata.get("token_ids")
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except ValueError:
                return []
        if isinstance(raw, (list, tuple)):
            return [str(t) for t in raw if isinstance(t, (str, int))]
        return []

    @property
    def outcome_tokens(self) -> list[OutcomeToken]:
        token_ids = self.token_ids
        return [
            OutcomeToken(outcome=outcome, token_id=token_ids[i] if i < len(token_ids) else "")
            for i, outcome in enumerate(self.outcomes)
        ]

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)


class FetchMarketsParams(BaseModel):
    """Filters for listing markets."""

    limit: Optional[int] = Field(default=None, gt=0)
    active_only: bool = True

    model_config = ConfigDict(frozen=True)


class FetchOrdersParams(BaseModel):
    """Filters for listing orders."""

    market_id: Optional[str] = None

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)


class MarketRef(BaseModel):
    """Reference to one tradable outcome of a market.

    ``asset_id`` is the venue's identifier for the outcome token where the
    venue has one (Polymarket token id, Kalshi ticker).
    """

    market_id: str = Field(..., min_length=1)
    outcome: str = Field(default="yes", min_length=1)
    asset_id: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.market_id}:{self.outcome}"

    @property
    def venue_id(self) -> str:
        """Identifier the venue streams and snapshots use."""
        return self.asset_id or self.market_id

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)
