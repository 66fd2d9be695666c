"""Normalized order book streams with reconnect and resynchronization.

Architecture:
    A StreamProtocol adapter knows one venue's wire format: where to
    connect, what to send to subscribe, how to turn a message into
    canonical OrderBook / OrderBookDelta / Trade values and how to fetch a
    REST snapshot. The StreamNormalizer owns everything venue-agnostic:

        DISCONNECTED -> CONNECTING -> SUBSCRIBED <-> RESYNCING
              ^                            |
              +------ drop / error --------+

    Deltas are applied to the locally held book only while SUBSCRIBED and
    only if their sequence follows the last applied one. A gap, a delta
    without a prior snapshot or a crossed result triggers RESYNCING: the
    triggering delta is discarded and a fresh snapshot is fetched through
    the dispatcher. After every reconnect exactly one snapshot is fetched
    once the subscription is re-established.

Design Decisions:
    - ``subscribe`` is an async generator; the websocket is opened with
      ``async with`` inside it, so closing or cancelling the consumer
      closes the socket
    - Venues without sequence numbers accept any delta after a snapshot
    - A snapshot without a sequence lets the next delta set the baseline
    - Venues whose deltas are relative quantity changes resync by reopening
      the subscription and waiting for the pushed snapshot; deltas that
      arrive before it are discarded
    - Reconnect backoff reuses WebSocketTransport._next_delay

See Also:
    - WebSocketTransport: connection settings and backoff
    - RequestDispatcher: snapshot fetches share the venue's rate limits
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field, replace
from decimal import InvalidOperation
from typing import Any, ClassVar, Optional, Union

import websockets.exceptions

from ..core.enums import StreamState, Venue
from ..core.exceptions import DrmError, RateLimitExceeded, StreamDisconnected
from ..io.ws_transport import WebSocketTransport
from ..models.events import StreamStateChange
from ..models.market import MarketRef
from ..models.order_book import OrderBook, OrderBookDelta
from ..models.trade import Trade
from .dispatcher import RequestDispatcher
from .telemetry import log_stream_resync, log_stream_state

logger = logging.getLogger(__name__)

StreamEvent = Union[OrderBook, OrderBookDelta, Trade]
StreamUpdate = Union[OrderBook, Trade]
StateCallback = Callable[[StreamStateChange], None]


class StreamProtocol(ABC):
    """Venue wire format for one market-data stream."""

    venue: ClassVar[Venue]
    # Venue pushes a full book right after subscribing.
    sends_snapshot: ClassVar[bool] = False
    # Deltas are relative, so a REST book cannot be lined up with them.
    # Only honoured together with sends_snapshot.
    resubscribe_to_resync: ClassVar[bool] = False

    url: str

    def connect_headers(self) -> Optional[dict[str, str]]:
        return None

    @abstractmethod
    def subscribe_messages(self, ref: MarketRef) -> list[Any]:
        """Messages to send after connecting; dicts are JSON encoded."""
        raise NotImplementedError

    def is_relevant(self, payload: Any) -> bool:
        return True

    @abstractmethod
    def parse(self, payload: Any, ref: MarketRef) -> list[StreamEvent]:
        """Map one decoded message to canonical values for ``ref``."""
        raise NotImplementedError

    @abstractmethod
    async def fetch_snapshot(self, dispatcher: RequestDispatcher, ref: MarketRef) -> OrderBook:
        raise NotImplementedError


class _Resubscribe(Exception):
    """Reopen the subscription so the venue pushes a fresh snapshot."""


@dataclass
class StreamSubscription:
    """Live state of one subscription, mutated only by its stream task."""

    key: str
    ref: MarketRef
    state: StreamState = StreamState.DISCONNECTED
    book: Optional[OrderBook] = None
    last_sequence: Optional[int] = None
    backoff_attempts: int = 0
    reconnects: int = 0
    resyncs: int = 0
    snapshot_fetches: int = 0
    dropped_deltas: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)


class StreamNormalizer:
    """Turn one venue's market-data stream into consistent canonical books."""

    def __init__(
        self,
        protocol: StreamProtocol,
        dispatcher: RequestDispatcher,
        *,
        transport: Optional[WebSocketTransport] = None,
        on_state_change: Optional[StateCallback] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._protocol = protocol
        self._dispatcher = dispatcher
        self._transport = transport or WebSocketTransport()
        self._on_state_change = on_state_change
        self._sleep = sleep
        self._subscriptions: dict[str, StreamSubscription] = {}

    @property
    def venue(self) -> Venue:
        return self._protocol.venue

    def subscription(self, ref: MarketRef) -> Optional[StreamSubscription]:
        """Copy of the current subscription state, or None if not streaming."""
        sub = self._subscriptions.get(self._key(ref))
        return replace(sub) if sub is not None else None

    def state(self, ref: MarketRef) -> StreamState:
        sub = self._subscriptions.get(self._key(ref))
        return sub.state if sub is not None else StreamState.DISCONNECTED

    async def subscribe(self, ref: MarketRef) -> AsyncIterator[StreamUpdate]:
        """Yield order book snapshots and trades for ``ref``.

        Every yielded OrderBook is a complete, sorted, uncrossed book.
        Reconnects are handled internally.

        Raises:
            StreamDisconnected: once ``max_reconnect_attempts`` consecutive
                reconnects have failed
            ValueError: if ``ref`` is already being streamed
        """
        key = self._key(ref)
        if key in self._subscriptions:
            raise ValueError(f"{key} is already subscribed")
        sub = StreamSubscription(key=key, ref=ref)
        self._subscriptions[key] = sub

        conf = self._transport.config
        reconnect_delay = conf.base_reconnect_delay
        connected_before = False
        try:
            while True:  # reconnect loop
                self._set_state(sub, StreamState.CONNECTING)
                try:
                    async with self._transport.connect(
                        self._protocol.url, self._protocol.connect_headers()
                    ) as websocket:
                        for message in self._protocol.subscribe_messages(ref):
                            await websocket.send(
                                message if isinstance(message, str) else json.dumps(message)
                            )
                        self._set_state(sub, StreamState.SUBSCRIBED)
                        sub.backoff_attempts = 0
                        reconnect_delay = conf.base_reconnect_delay

                        if connected_before:
                            sub.reconnects += 1
                            if self._protocol.sends_snapshot:
                                sub.book = None
                                sub.last_sequence = None
                            else:
                                yield await self._resync(sub, "reconnect")
                        connected_before = True

                        async for raw in websocket:  # message loop
                            for update in await self._handle(sub, raw):
                                yield update
                    raise StreamDisconnected(f"{key} closed by {self.venue.value}")
                except asyncio.CancelledError:
                    raise
                except _Resubscribe:
                    continue
                except (
                    websockets.exceptions.WebSocketException,
                    OSError,
                    asyncio.TimeoutError,
                ) as e:
                    logger.warning(
                        "stream_connection_lost",
                        extra={"subscription": key, "error_type": type(e).__name__, "error": str(e)},
                    )
                except DrmError as e:
                    if not (e.transient or isinstance(e, RateLimitExceeded)):
                        raise
                    logger.warning(
                        "stream_connection_lost",
                        extra={"subscription": key, "error_type": type(e).__name__, "error": str(e)},
                    )

                self._set_state(sub, StreamState.DISCONNECTED)
                sub.backoff_attempts += 1
                limit = conf.max_reconnect_attempts
                if limit is not None and sub.backoff_attempts > limit:
                    raise StreamDisconnected(
                        f"{key} gave up after {limit} reconnect attempts",
                        attempts=limit,
                        venue=self.venue,
                    )
                await self._sleep(reconnect_delay)
                reconnect_delay = self._transport._next_delay(reconnect_delay)
        finally:
            self._set_state(sub, StreamState.DISCONNECTED)
            self._subscriptions.pop(key, None)

    async def _handle(self, sub: StreamSubscription, raw: Any) -> list[StreamUpdate]:
        payload = self._decode(sub, raw)
        if payload is None or not self._protocol.is_relevant(payload):
            return []
        try:
            events = self._protocol.parse(payload, sub.ref)
        except (KeyError, IndexError, TypeError, ValueError, InvalidOperation) as e:
            logger.warning("stream_parse_error", extra={"subscription": sub.key, "error": str(e)})
            return []

        updates: list[StreamUpdate] = []
        for event in events:
            if isinstance(event, OrderBook):
                if event.is_crossed:
                    updates.append(await self._resync(sub, "crossed_snapshot", event.sequence))
                    continue
                sub.book = event
                sub.last_sequence = event.sequence
                updates.append(event)
            elif isinstance(event, OrderBookDelta):
                book = await self._apply_delta(sub, event)
                if book is not None:
                    updates.append(book)
            else:
                updates.append(event)
        return updates

    async def _apply_delta(self, sub: StreamSubscription, delta: OrderBookDelta) -> Optional[OrderBook]:
        seq = delta.sequence
        if sub.book is None:
            sub.dropped_deltas += 1
            if self._resubscribes():
                # Waiting for the pushed snapshot.
                return None
            return await self._resync(sub, "missing_snapshot", seq)

        if seq is not None and sub.last_sequence is not None:
            if seq <= sub.last_sequence:
                # Already covered by the snapshot.
                sub.dropped_deltas += 1
                return None
            if seq != sub.last_sequence + 1:
                sub.dropped_deltas += 1
                return await self._resync(sub, "sequence_gap", seq)

        book = sub.book.apply(delta)
        if book.is_crossed:
            sub.dropped_deltas += 1
            return await self._resync(sub, "crossed_book", seq)
        sub.book = book
        if seq is not None:
            sub.last_sequence = seq
        return book

    async def _resync(
        self, sub: StreamSubscription, reason: str, received: Optional[int] = None
    ) -> OrderBook:
        self._set_state(sub, StreamState.RESYNCING, reason=reason)
        log_stream_resync(
            key=sub.key,
            reason=reason,
            last_sequence=sub.last_sequence,
            received_sequence=received,
            dropped_deltas=sub.dropped_deltas,
        )
        sub.resyncs += 1
        if self._resubscribes():
            sub.book = None
            sub.last_sequence = None
            raise _Resubscribe(reason)
        sub.snapshot_fetches += 1
        snapshot = await self._protocol.fetch_snapshot(self._dispatcher, sub.ref)
        if snapshot.is_crossed:
            raise StreamDisconnected(f"{sub.key} snapshot is crossed", venue=self.venue)
        sub.book = snapshot
        sub.last_sequence = snapshot.sequence
        self._set_state(sub, StreamState.SUBSCRIBED)
        return snapshot

    def _resubscribes(self) -> bool:
        return self._protocol.sends_snapshot and self._protocol.resubscribe_to_resync

    def _decode(self, sub: StreamSubscription, raw: Any) -> Any:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        if not isinstance(raw, str):
            return raw
        try:
            return json.loads(raw)
        except ValueError:
            # Keepalive frames such as "PONG".
            logger.debug("stream_non_json_message", extra={"subscription": sub.key})
            return None

    def _set_state(self, sub: StreamSubscription, state: StreamState, **metadata: Any) -> None:
        previous = sub.state
        if previous is state:
            return
        sub.state = state
        log_stream_state(key=sub.key, previous=previous, current=state, attempt=sub.backoff_attempts)
        if self._on_state_change is None:
            return
        change = StreamStateChange(key=sub.key, previous=previous, current=state, metadata=metadata)
        try:
            self._on_state_change(change)
        except Exception:  # noqa: BLE001
            logger.exception("stream_state_callback_failed", extra={"subscription": sub.key})

    def _key(self, ref: MarketRef) -> str:
        return f"{self.venue.value}:{ref.key}"
