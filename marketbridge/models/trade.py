"""Trade (execution) data model."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..core.enums import OrderSide


class Trade(BaseModel):
    """Immutable execution record.

    ``order_id`` links a fill to a tracked order when the venue reports it.
    """

    id: str = Field(..., min_length=1)
    market_id: str = Field(..., min_length=1)
    outcome: str = Field(..., min_length=1)
    side: OrderSide
    price: Decimal = Field(..., ge=0, le=1)
    size: Decimal = Field(..., gt=0)
    timestamp: datetime
    order_id: Optional[str] = None

    @property
    def notional(self) -> Decimal:
        return self.price * self.size

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)
