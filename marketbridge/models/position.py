"""Position data model."""

from collections.abc import Iterable
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from ..core.enums import OrderSide
from .trade import Trade


class Position(BaseModel):
    """Net holding in one market outcome.

    Derived from confirmed fills; never authoritative on its own.
    """

    market_id: str = Field(..., min_length=1)
    outcome: str = Field(..., min_length=1)
    size: Decimal = Field(..., ge=0)
    average_price: Decimal = Field(..., ge=0, le=1)
    current_price: Decimal = Field(..., ge=0, le=1)

    @classmethod
    def from_trades(
        cls,
        market_id: str,
        outcome: str,
        trades: Iterable[Trade],
        current_price: Decimal,
    ) -> "Position":
        """Recompute a long position from fills in timestamp order.

        Buys move the average entry price; sells reduce size at the current
        average. Fills for other markets/outcomes are ignored.
        """
        size = Decimal("0")
        cost = Decimal("0")
        relevant = [t for t in trades if t.market_id == market_id and t.outcome == outcome]
        for trade in sorted(relevant, key=lambda t: t.timestamp):
            if trade.side is OrderSide.BUY:
                size += trade.size
                cost += trade.price * trade.size
            else:
                sold = min(trade.size, size)
                if size > 0:
                    cost -= cost / size * sold
                size -= sold
        average = cost / size if size > 0 else Decimal("0")
        return cls(
            market_id=market_id,
            outcome=outcome,
            size=size,
            average_price=average,
            current_price=current_price,
        )

    @property
    def cost_basis(self) -> Decimal:
        return self.size * self.average_price

    @property
    def current_value(self) -> Decimal:
        return self.size * self.current_price

    @property
    def unrealized_pnl(self) -> Decimal:
        return self.current_value - self.cost_basis

    @property
    def unrealized_pnl_percent(self) -> Decimal:
        cost = self.cost_basis
        if cost == 0:
            return Decimal("0")
        return self.unrealized_pnl / cost * 100

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)
