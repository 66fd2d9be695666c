"""Price history data model."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class PricePoint(BaseModel):
    """Outcome price sampled at a point in time."""

    timestamp: datetime
    price: Decimal = Field(..., ge=0, le=1)

    model_config = ConfigDict(frozen=True)
