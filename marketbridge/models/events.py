"""Event types for order tracking and stream state."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from ..core.enums import OrderEventKind, OrderStatus, StreamState
from .order import Order


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ObservationSource(Enum):
    """Where an order observation came from."""

    DISPATCHER = "dispatcher"
    STREAM = "stream"
    POLL = "poll"


@dataclass(frozen=True)
class OrderObservation:
    """Venue-reported facts about one order, posted to the OrderTracker.

    Either ``client_order_id`` or ``order_id`` must identify the order.
    ``filled_size`` is cumulative, never incremental.
    """

    source: ObservationSource
    client_order_id: Optional[str] = None
    order_id: Optional[str] = None
    status: Optional[OrderStatus] = None
    filled_size: Optional[Decimal] = None
    expired: bool = False
    reason: Optional[str] = None
    timestamp: datetime = field(default_factory=_now)

    def __post_init__(self):
        if self.client_order_id is None and self.order_id is None:
            raise ValueError("OrderObservation needs client_order_id or order_id")

    @classmethod
    def from_order(cls, order: Order, source: ObservationSource = ObservationSource.POLL) -> OrderObservation:
        """Observation carrying everything a venue-side order snapshot reports."""
        return cls(
            source=source,
            order_id=order.id,
            client_order_id=None if order.id else order.client_order_id,
            status=order.status,
            filled_size=order.filled_size,
        )


@dataclass(frozen=True)
class OrderEvent:
    """Order lifecycle event."""

    kind: OrderEventKind
    order: Order
    previous_status: Optional[OrderStatus] = None
    fill_size: Decimal = Decimal("0")
    timestamp: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class ReconciliationWarning:
    """Conflicting terminal signal for an order; never resolved silently."""

    client_order_id: str
    current_status: OrderStatus
    reported_status: Optional[OrderStatus]
    source: ObservationSource
    message: str
    order_id: Optional[str] = None
    timestamp: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class StreamStateChange:
    """Stream subscription state transition."""

    key: str
    previous: StreamState
    current: StreamState
    timestamp: datetime = field(default_factory=_now)
    metadata: Dict[str, Any] = None

    def __post_init__(self):
        if self.metadata is None:
            object.__setattr__(self, "metadata", {})
