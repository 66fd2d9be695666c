"""Order lifecycle reconciliation across acknowledgements, streams and polls.

Architecture:
    Every mutation is a command on an asyncio.Queue consumed by one merge
    task, so records have a single writer and observations are merged in
    arrival order. Readers get frozen Order snapshots.

        submit()/track()/observe()/observe_trade()/poller
                         |
                   asyncio.Queue
                         |
                    merge task --> on_event / on_warning callbacks

Merge Rules:
    - ``filled_size`` is the maximum reported by any source, never summed
      across sources and never decreased
    - Status moves only forward: Pending < Open < PartiallyFilled <
      terminal
    - A terminal order never changes status again; a different terminal
      report becomes a ReconciliationWarning
    - Fills reported after Cancelled or Rejected are recorded and warned
      about
    - An expiry report cancels the order and emits an EXPIRED event
    - Observations for a venue order id that no order is bound to yet are
      held and replayed, in arrival order, once an acknowledgement binds it

Design Decisions:
    - Terminal orders stay tracked until ``untrack``/``clear`` so late
      conflicting reports can still be detected
    - Callbacks may be sync or async; their failures are logged and never
      reach the merge task
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional, Union

from ..core.enums import OrderEventKind, OrderStatus, Venue
from ..core.exceptions import ExchangeRejected, ValidationError
from ..models.events import ObservationSource, OrderEvent, OrderObservation, ReconciliationWarning
from ..models.order import Order, OrderRequest
from ..models.trade import Trade
from .telemetry import log_order_transition, log_reconciliation_warning

logger = logging.getLogger(__name__)

EventCallback = Union[Callable[[OrderEvent], Awaitable[None]], Callable[[OrderEvent], None]]
WarningCallback = Union[
    Callable[[ReconciliationWarning], Awaitable[None]], Callable[[ReconciliationWarning], None]
]
SendOrder = Callable[[Order], Awaitable[Union[Order, str]]]
FetchOpenOrders = Callable[[], Awaitable[list[Order]]]
FetchOrder = Callable[[str], Awaitable[Order]]

_ZERO = Decimal("0")
# Venue order ids held for a later acknowledgement; oldest evicted first.
_MAX_UNMATCHED = 1024


def _now() -> datetime:
    return datetime.now(timezone.utc)


class OrderTracker:
    """Track orders from submission to a terminal state.

    Args:
        venue: Venue the orders live on (for logs only)
        on_event: Called with every OrderEvent
        on_warning: Called with every ReconciliationWarning
        fetch_open_orders: Polling fallback for venues without a user stream
        fetch_order: Resolves an active order missing from the open-order list
        poll_interval: Seconds between polls
    """

    def __init__(
        self,
        *,
        venue: Optional[Venue] = None,
        on_event: Optional[EventCallback] = None,
        on_warning: Optional[WarningCallback] = None,
        fetch_open_orders: Optional[FetchOpenOrders] = None,
        fetch_order: Optional[FetchOrder] = None,
        poll_interval: float = 5.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        self.venue = venue
        self._event_callbacks: list[EventCallback] = [on_event] if on_event else []
        self._warning_callbacks: list[WarningCallback] = [on_warning] if on_warning else []
        self._fetch_open_orders = fetch_open_orders
        self._fetch_order = fetch_order
        self._poll_interval = poll_interval
        self._sleep = sleep

        self._orders: dict[str, Order] = {}
        self._by_order_id: dict[str, str] = {}
        self._seen_trades: set[str] = set()
        self._trade_fills: dict[str, Decimal] = {}
        self._unmatched: dict[str, list[OrderObservation]] = {}

        self._queue: asyncio.Queue = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._poller: Optional[asyncio.Task] = None

    # ----------------------
    # Lifecycle
    # ----------------------
    async def start(self) -> None:
        """Start the merge task and, if configured, the polling fallback."""
        self._ensure_worker()
        if self._fetch_open_orders is not None and (self._poller is None or self._poller.done()):
            self._poller = asyncio.create_task(self._poll_loop())

    async def stop(self) -> None:
        """Stop polling and the merge task; queued commands are dropped."""
        for task in (self._poller, self._worker):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._poller = None
        self._worker = None

    async def __aenter__(self) -> OrderTracker:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    def on_event(self, callback: EventCallback) -> OrderTracker:
        self._event_callbacks.append(callback)
        return self

    def on_warning(self, callback: WarningCallback) -> OrderTracker:
        self._warning_callbacks.append(callback)
        return self

    # ----------------------
    # Reads
    # ----------------------
    @property
    def tracked_count(self) -> int:
        return len(self._orders)

    def get(self, order_ref: str) -> Optional[Order]:
        """Snapshot by client order id or venue order id."""
        client_id = order_ref if order_ref in self._orders else self._by_order_id.get(order_ref)
        return self._orders.get(client_id) if client_id else None

    def get_tracked_orders(self) -> list[Order]:
        return list(self._orders.values())

    def active_orders(self) -> list[Order]:
        return [o for o in self._orders.values() if not o.status.is_terminal]

    # ----------------------
    # Commands
    # ----------------------
    async def track(self, order: Union[Order, OrderRequest]) -> Order:
        """Start tracking an order; a request becomes a Pending order."""
        if isinstance(order, OrderRequest):
            order = Order(
                client_order_id=uuid.uuid4().hex,
                market_id=order.market_id,
                outcome=order.outcome,
                side=order.side,
                price=order.price,
                size=order.size,
            )
        return await self._call(self._track, order)

    async def submit(self, request: OrderRequest, send: SendOrder) -> Order:
        """Track ``request`` as Pending, send it and record the outcome.

        ``send`` receives the Pending order and returns the venue's Order or
        its order id. Validation errors and venue rejections mark the order
        Rejected; any other error leaves it Pending for the stream or a poll
        to resolve.

        Raises:
            DrmError: whatever ``send`` raised, after it was recorded
        """
        order = await self.track(request)
        try:
            ack = await send(order)
        except (ValidationError, ExchangeRejected) as e:
            await self._call(
                self._merge,
                OrderObservation(
                    source=ObservationSource.DISPATCHER,
                    client_order_id=order.client_order_id,
                    status=OrderStatus.REJECTED,
                    reason=str(e),
                ),
            )
            raise

        if isinstance(ack, Order):
            observation = OrderObservation(
                source=ObservationSource.DISPATCHER,
                client_order_id=order.client_order_id,
                order_id=ack.id,
                status=OrderStatus.OPEN if ack.status is OrderStatus.PENDING else ack.status,
                filled_size=ack.filled_size,
            )
        else:
            observation = OrderObservation(
                source=ObservationSource.DISPATCHER,
                client_order_id=order.client_order_id,
                order_id=str(ack),
                status=OrderStatus.OPEN,
            )
        return await self._call(self._merge, observation)

    def observe(self, observation: OrderObservation) -> None:
        """Queue an observation for merging; does not wait for it."""
        self._enqueue(self._merge, observation)

    def observe_trade(self, trade: Trade) -> None:
        """Queue a fill from the user trade stream.

        Trade ids are de-duplicated; fills are summed per order into a
        cumulative size before merging.
        """
        if trade.order_id is None:
            logger.debug("order_trade_without_order_id", extra={"trade_id": trade.id})
            return
        self._enqueue(self._merge_trade, trade)

    async def untrack(self, order_ref: str) -> Optional[Order]:
        return await self._call(self._untrack, order_ref)

    async def clear(self) -> None:
        await self._call(self._clear)

    async def poll_once(self) -> None:
        """Fetch open orders once and merge them."""
        if self._fetch_open_orders is None:
            return
        orders = await self._fetch_open_orders()
        reported = set()
        for order in orders:
            if order.id:
                reported.add(order.id)
            self.observe(OrderObservation.from_order(order, ObservationSource.POLL))

        if self._fetch_order is None:
            return
        for tracked in self.active_orders():
            if tracked.id and tracked.id not in reported:
                order = await self._fetch_order(tracked.id)
                self.observe(OrderObservation.from_order(order, ObservationSource.POLL))

    async def drain(self) -> None:
        """Wait until every queued command has been merged."""
        self._ensure_worker()
        await self._queue.join()

    # ----------------------
    # Merge task
    # ----------------------
    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._run())

    def _enqueue(self, handler: Callable[..., Awaitable[Any]], *args: Any, future=None) -> None:
        self._ensure_worker()
        self._queue.put_nowait((handler, args, future))

    async def _call(self, handler: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        future = asyncio.get_running_loop().create_future()
        self._enqueue(handler, *args, future=future)
        return await future

    async def _run(self) -> None:
        while True:
            handler, args, future = await self._queue.get()
            try:
                result = await handler(*args)
            except Exception as e:  # noqa: BLE001
                if future is not None and not future.done():
                    future.set_exception(e)
                else:
                    logger.exception("order_merge_failed")
            else:
                if future is not None and not future.done():
                    future.set_result(result)
            finally:
                self._queue.task_done()

    async def _poll_loop(self) -> None:
        while True:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:  # noqa: BLE001
                logger.warning(
                    "order_poll_failed",
                    extra={"venue": getattr(self.venue, "value", None), "error": str(e)},
                )
            await self._sleep(self._poll_interval)

    async def _track(self, order: Order) -> Order:
        existing = self._orders.get(order.client_order_id)
        if existing is not None:
            return existing
        self._orders[order.client_order_id] = order
        if order.id:
            self._by_order_id[order.id] = order.client_order_id
        logger.debug(
            "order_tracked",
            extra={"client_order_id": order.client_order_id, "order_id": order.id},
        )
        if order.id:
            await self._replay(order.id)
        return self._orders[order.client_order_id]

    async def _untrack(self, order_ref: str) -> Optional[Order]:
        order = self.get(order_ref)
        if order is None:
            return None
        del self._orders[order.client_order_id]
        if order.id:
            self._by_order_id.pop(order.id, None)
            self._trade_fills.pop(order.id, None)
        return order

    async def _clear(self) -> None:
        self._orders.clear()
        self._by_order_id.clear()
        self._trade_fills.clear()
        self._seen_trades.clear()
        self._unmatched.clear()

    async def _merge_trade(self, trade: Trade) -> Optional[Order]:
        if trade.id in self._seen_trades:
            return None
        self._seen_trades.add(trade.id)
        total = self._trade_fills.get(trade.order_id, _ZERO) + trade.size
        self._trade_fills[trade.order_id] = total
        return await self._merge(
            OrderObservation(
                source=ObservationSource.STREAM,
                order_id=trade.order_id,
                filled_size=total,
                timestamp=trade.timestamp,
            )
        )

    async def _merge(self, obs: OrderObservation) -> Optional[Order]:
        client_id = obs.client_order_id
        if client_id is None or client_id not in self._orders:
            client_id = self._by_order_id.get(obs.order_id) if obs.order_id else None
        order = self._orders.get(client_id) if client_id else None
        if order is None:
            logger.debug(
                "order_observation_untracked",
                extra={"client_order_id": obs.client_order_id, "order_id": obs.order_id},
            )
            if obs.order_id:
                self._hold(obs)
            return None

        current = order.status
        reported = OrderStatus.CANCELLED if obs.expired else obs.status

        filled = order.filled_size
        if reported is OrderStatus.FILLED and obs.filled_size is None:
            filled = order.size
        elif obs.filled_size is not None and obs.filled_size > filled:
            filled = obs.filled_size
        if filled > order.size:
            logger.warning(
                "order_fill_exceeds_size",
                extra={
                    "client_order_id": order.client_order_id,
                    "reported": str(filled),
                    "size": str(order.size),
                },
            )
            filled = order.size

        status = current
        if current.is_terminal:
            if reported is not None and reported.is_terminal and reported is not current:
                await self._warn(
                    order,
                    reported,
                    obs,
                    f"{obs.source.value} reported {reported.value} for a {current.value} order",
                )
            if filled > order.filled_size and current is not OrderStatus.FILLED:
                await self._warn(
                    order,
                    reported,
                    obs,
                    f"fill of {filled - order.filled_size} reported after {current.value}",
                )
        else:
            if reported is not None and current.can_transition_to(reported):
                status = reported
            if filled >= order.size:
                status = OrderStatus.FILLED
            elif filled > 0 and status.rank < OrderStatus.PARTIALLY_FILLED.rank:
                status = OrderStatus.PARTIALLY_FILLED

        order_id = order.id or obs.order_id
        if status is current and filled == order.filled_size and order_id == order.id:
            return order

        updated = order.model_copy(
            update={
                "id": order_id,
                "status": status,
                "filled_size": filled,
                "updated_at": obs.timestamp,
            }
        )
        self._orders[updated.client_order_id] = updated
        if order_id:
            self._by_order_id[order_id] = updated.client_order_id

        if status is not current or filled != order.filled_size:
            log_order_transition(
                client_order_id=updated.client_order_id,
                order_id=order_id,
                previous=current,
                current=status,
                filled_size=filled,
                source=obs.source,
            )
        for event in self._events_for(order, updated, obs):
            await self._emit(self._event_callbacks, event)
        if order_id != order.id:
            await self._replay(order_id)
            return self._orders[updated.client_order_id]
        return updated

    def _hold(self, obs: OrderObservation) -> None:
        self._unmatched.setdefault(obs.order_id, []).append(obs)
        while len(self._unmatched) > _MAX_UNMATCHED:
            self._unmatched.pop(next(iter(self._unmatched)))

    async def _replay(self, order_id: str) -> None:
        for obs in self._unmatched.pop(order_id, ()):
            await self._merge(obs)

    def _events_for(self, before: Order, after: Order, obs: OrderObservation) -> list[OrderEvent]:
        events = []
        fill = after.filled_size - before.filled_size
        previous = before.status
        if previous.is_terminal:
            return events

        if after.status is not previous:
            if previous is OrderStatus.PENDING and after.status is not OrderStatus.REJECTED:
                events.append(OrderEvent(OrderEventKind.CREATED, after, previous))
            if after.status is OrderStatus.REJECTED:
                events.append(OrderEvent(OrderEventKind.REJECTED, after, previous))
            elif after.status is OrderStatus.CANCELLED:
                kind = OrderEventKind.EXPIRED if obs.expired else OrderEventKind.CANCELLED
                events.append(OrderEvent(kind, after, previous, fill_size=fill))
                return events
            elif after.status is OrderStatus.FILLED:
                events.append(OrderEvent(OrderEventKind.FILLED, after, previous, fill_size=fill))
                return events

        if fill > 0:
            events.append(OrderEvent(OrderEventKind.PARTIAL_FILL, after, previous, fill_size=fill))
        return events

    async def _warn(
        self,
        order: Order,
        reported: Optional[OrderStatus],
        obs: OrderObservation,
        message: str,
    ) -> None:
        warning = ReconciliationWarning(
            client_order_id=order.client_order_id,
            current_status=order.status,
            reported_status=reported,
            source=obs.source,
            message=message,
            order_id=order.id or obs.order_id,
        )
        log_reconciliation_warning(
            client_order_id=order.client_order_id,
            current=order.status,
            reported=reported,
            source=obs.source,
            message=message,
        )
        await self._emit(self._warning_callbacks, warning)

    async def _emit(self, callbacks: list, item: Any) -> None:
        for callback in callbacks:
            try:
                result = callback(item)
                if inspect.isawaitable(result):
                    await result
            except Exception:  # noqa: BLE001
                logger.exception("order_callback_failed", extra={"item_type": type(item).__name__})


def log_fills(event: OrderEvent) -> None:
    """OrderTracker callback that logs fills and cancellations."""
    order = event.order
    side = order.side.value.upper()
    if event.kind is OrderEventKind.FILLED:
        logger.info(
            "FILLED %s %s %s @ %s", order.outcome, side, event.fill_size, order.price
        )
    elif event.kind is OrderEventKind.PARTIAL_FILL:
        logger.info(
            "PARTIAL %s %s +%s (%s/%s) @ %s",
            order.outcome,
            side,
            event.fill_size,
            order.filled_size,
            order.size,
            order.price,
        )
    elif event.kind in (OrderEventKind.CANCELLED, OrderEventKind.EXPIRED):
        logger.info(
            "%s %s %s %s @ %s (filled: %s)",
            event.kind.value.upper(),
            order.outcome,
            side,
            order.size,
            order.price,
            order.filled_size,
        )
