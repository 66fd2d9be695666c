"""Order data models."""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..core.enums import OrderSide, OrderStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderRequest(BaseModel):
    """Caller intent to place a limit order."""

    market_id: str = Field(..., min_length=1)
    outcome: str = Field(..., min_length=1)
    side: OrderSide
    price: Decimal = Field(..., gt=0, lt=1)
    size: Decimal = Field(..., gt=0)
    token_id: Optional[str] = None

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)


class Order(BaseModel):
    """Snapshot of a locally tracked order.

    ``client_order_id`` is assigned locally at submission; ``id`` is the venue
    identifier and stays None until the venue accepts the order.
    """

    client_order_id: str = Field(..., min_length=1)
    id: Optional[str] = None
    market_id: str = Field(..., min_length=1)
    outcome: str = Field(..., min_length=1)
    side: OrderSide
    price: Decimal = Field(..., ge=0, le=1)
    size: Decimal = Field(..., gt=0)
    filled_size: Decimal = Field(default=Decimal("0"), ge=0)
    status: OrderStatus = OrderStatus.PENDING
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="after")
    def validate_filled_size(self) -> "Order":
        """Validate filled_size <= size."""
        if self.filled_size > self.size:
            raise ValueError("filled_size must be <= size")
        return self

    @property
    def remaining(self) -> Decimal:
        return self.size - self.filled_size

    @property
    def is_active(self) -> bool:
        return self.status in (OrderStatus.OPEN, OrderStatus.PARTIALLY_FILLED)

    @property
    def is_filled(self) -> bool:
        return self.status is OrderStatus.FILLED or self.filled_size >= self.size

    @property
    def fill_percentage(self) -> Decimal:
        return self.filled_size / self.size * 100

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)
