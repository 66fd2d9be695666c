"""Kalshi: RSA-signed REST and the sequenced ``orderbook_delta`` channel.

Kalshi books are two bid ladders, one per side, priced in cents. For the
``yes`` outcome a YES bid at ``p`` is a bid and a NO bid at ``p`` is an ask
at ``1 - p``; the ``no`` outcome mirrors that. Stream deltas carry a
quantity change rather than an absolute size, so the protocol keeps the
cent ladders per ticker to emit absolute level sizes.
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional, Union

from ..core.config import ExchangeConfig, validate_env
from ..core.enums import BookSide, EndpointClass, OrderSide, OrderStatus, SchemeKind, Venue
from ..core.exceptions import DrmError, InsufficientFunds, MarketNotFound
from ..io.http import HTTPClient, RawResponse, error_for_response
from ..models.market import FetchOrdersParams, MarketRef
from ..models.order import Order
from ..models.order_book import LevelChange, OrderBook, OrderBookDelta
from ..models.trade import Trade
from ..runtime.dispatcher import RequestDispatcher
from ..runtime.stream import StreamEvent, StreamProtocol
from ..signing.rsa import RsaSignatureAuth
from .base import VenueInfo, build_dispatcher, from_timestamp

logger = logging.getLogger(__name__)

API_URL = "https://api.elections.kalshi.com/trade-api/v2"
DEMO_API_URL = "https://demo-api.kalshi.co/trade-api/v2"
WS_URL = "wss://api.elections.kalshi.com/trade-api/ws/v2"
DEMO_WS_URL = "wss://demo-api.kalshi.co/trade-api/ws/v2"

API_PATH_PREFIX = "/trade-api/v2"
WS_PATH = "/trade-api/ws/v2"

_CENTS = Decimal("100")
_ONE = Decimal("1")

INFO = VenueInfo(
    venue=Venue.KALSHI,
    name="Kalshi",
    rest_url=API_URL,
    ws_url=WS_URL,
    chain_id=None,
    scheme=SchemeKind.RSA_SIGNATURE,
    has_stream=True,
)

Ladder = dict[int, Decimal]


def build_signer(
    api_key_id: str,
    *,
    private_key_path: Union[str, Path, None] = None,
    private_key_pem: Union[str, bytes, None] = None,
    **kwargs: Any,
) -> RsaSignatureAuth:
    return RsaSignatureAuth(
        api_key_id,
        private_key_path=private_key_path,
        private_key_pem=private_key_pem,
        path_prefix=API_PATH_PREFIX,
        **kwargs,
    )


def signer_from_env(environ: Optional[Mapping[str, str]] = None, **kwargs: Any) -> RsaSignatureAuth:
    env = validate_env(Venue.KALSHI, environ)
    return build_signer(
        env["KALSHI_API_KEY_ID"], private_key_path=env["KALSHI_PRIVATE_KEY_PATH"], **kwargs
    )


def error_mapper(response: RawResponse, venue: Optional[Venue] = None) -> Optional[DrmError]:
    """Status-code mapping, refined by Kalshi's ``{"error": {"code", "message"}}`` body."""
    error = error_for_response(response, venue)
    if error is None:
        return None
    body = response.body
    detail = body.get("error") if isinstance(body, Mapping) else None
    if not isinstance(detail, Mapping):
        return error
    code = str(detail.get("code") or "")
    message = str(detail.get("message") or detail.get("details") or code or error)
    if code == "insufficient_balance":
        return InsufficientFunds(message, venue=venue, status_code=response.status)
    if code in ("market_not_found", "not_found"):
        return MarketNotFound(message, venue=venue, status_code=response.status)
    error.args = (message,)
    return error


def connect(
    config: Optional[ExchangeConfig] = None,
    signer: Optional[RsaSignatureAuth] = None,
    *,
    demo: bool = False,
    http: Optional[HTTPClient] = None,
    **kwargs: Any,
) -> RequestDispatcher:
    return build_dispatcher(
        INFO,
        config,
        signer,
        http=http,
        rest_url=DEMO_API_URL if demo else API_URL,
        error_mapper=error_mapper,
        **kwargs,
    )


def _ladder(levels: Any) -> Ladder:
    ladder: Ladder = {}
    for level in levels or []:
        cents, quantity = int(level[0]), Decimal(str(level[1]))
        if quantity > 0:
            ladder[cents] = quantity
    return ladder


def _price(cents: int) -> Decimal:
    return Decimal(cents) / _CENTS


def book_from_ladders(
    yes: Ladder,
    no: Ladder,
    ref: MarketRef,
    sequence: Optional[int] = None,
    timestamp: Optional[datetime] = None,
) -> OrderBook:
    """Canonical book for ``ref.outcome`` from the two cent ladders."""
    own, other = (no, yes) if ref.outcome.lower() == "no" else (yes, no)
    return OrderBook.from_levels(
        market_id=ref.market_id,
        outcome=ref.outcome,
        bids=[(_price(c), q) for c, q in own.items()],
        asks=[(_ONE - _price(c), q) for c, q in other.items()],
        sequence=sequence,
        timestamp=timestamp,
    )


def parse_orderbook(body: Mapping[str, Any], ref: MarketRef) -> OrderBook:
    """Book from ``GET /markets/{ticker}/orderbook``."""
    book = body["orderbook"]
    return book_from_ladders(_ladder(book.get("yes")), _ladder(book.get("no")), ref)


def parse_order(data: Mapping[str, Any]) -> Order:
    """Order from a ``/portfolio/orders`` entry; counts are contracts."""
    outcome = str(data["side"]).lower()
    cents = data.get("no_price") if outcome == "no" else data.get("yes_price")
    filled = Decimal(str(data.get("fill_count") or 0))
    remaining = Decimal(str(data.get("remaining_count") or 0))
    size = Decimal(str(data.get("initial_count") or filled + remaining))
    status = OrderStatus.from_str(str(data["status"]))
    if status is OrderStatus.OPEN and filled > 0:
        status = OrderStatus.PARTIALLY_FILLED
    created = from_timestamp(data.get("created_time")) or datetime.now(timezone.utc)
    return Order(
        client_order_id=str(data.get("client_order_id") or data["order_id"]),
        id=str(data["order_id"]),
        market_id=str(data["ticker"]),
        outcome=outcome,
        side=OrderSide.from_str(str(data.get("action") or "buy")),
        price=_price(int(cents)),
        size=size,
        filled_size=filled,
        status=status,
        created_at=created,
        updated_at=from_timestamp(data.get("last_update_time")) or created,
    )


async def fetch_open_orders(
    dispatcher: RequestDispatcher,
    params: Optional[FetchOrdersParams] = None,
) -> list[Order]:
    """Resting orders, optionally for one market ticker."""
    query = {"status": "resting"}
    if params is not None and params.market_id:
        query["ticker"] = params.market_id
    return await dispatcher.fetch(
        "GET",
        "/portfolio/orders",
        lambda body: [parse_order(o) for o in body.get("orders") or []],
        endpoint_class=EndpointClass.AUTHENTICATED_READ,
        params=query,
    )


async def fetch_order(dispatcher: RequestDispatcher, order_id: str) -> Order:
    return await dispatcher.fetch(
        "GET",
        f"/portfolio/orders/{order_id}",
        lambda body: parse_order(body["order"]),
        endpoint_class=EndpointClass.AUTHENTICATED_READ,
    )


class KalshiStreamProtocol(StreamProtocol):
    """``orderbook_delta`` and ``trade`` channels for one or more tickers."""

    venue = Venue.KALSHI
    sends_snapshot = True
    resubscribe_to_resync = True

    def __init__(self, signer: Optional[RsaSignatureAuth] = None, url: str = WS_URL) -> None:
        self.url = url
        self._signer = signer
        self._ids = itertools.count(1)
        # Keyed by MarketRef.key; each subscription has its own socket.
        self._ladders: dict[str, tuple[Ladder, Ladder]] = {}
        self._sequences: dict[str, int] = {}

    def connect_headers(self) -> Optional[dict[str, str]]:
        if self._signer is None:
            return None
        return self._signer.sign_request("GET", WS_PATH)

    def subscribe_messages(self, ref: MarketRef) -> list[Any]:
        self._reset(ref.key)
        return [
            {
                "id": next(self._ids),
                "cmd": "subscribe",
                "params": {
                    "channels": ["orderbook_delta", "trade"],
                    "market_tickers": [ref.venue_id],
                },
            }
        ]

    def is_relevant(self, payload: Any) -> bool:
        if not isinstance(payload, dict):
            return False
        if payload.get("type") == "error":
            logger.warning("kalshi_stream_error", extra={"detail": payload.get("msg")})
            return False
        return payload.get("type") in ("orderbook_snapshot", "orderbook_delta", "trade")

    def parse(self, payload: Any, ref: MarketRef) -> list[StreamEvent]:
        msg = payload.get("msg") or {}
        ticker = ref.venue_id
        if msg.get("market_ticker") != ticker:
            return []
        seq = payload.get("seq")
        kind = payload["type"]

        if kind == "orderbook_snapshot":
            yes, no = _ladder(msg.get("yes")), _ladder(msg.get("no"))
            self._reset(ref.key)
            self._ladders[ref.key] = (yes, no)
            if seq is not None:
                self._sequences[ref.key] = seq
            return [book_from_ladders(yes, no, ref, sequence=seq, timestamp=datetime.now(timezone.utc))]

        if kind == "orderbook_delta":
            return [self._parse_delta(msg, ref, seq)]

        return [self._parse_trade(msg, ref)]

    async def fetch_snapshot(self, dispatcher: RequestDispatcher, ref: MarketRef) -> OrderBook:
        ticker = ref.venue_id

        def parse(body: Mapping[str, Any]) -> OrderBook:
            book = body["orderbook"]
            yes, no = _ladder(book.get("yes")), _ladder(book.get("no"))
            self._reset(ref.key)
            self._ladders[ref.key] = (yes, no)
            return book_from_ladders(yes, no, ref)

        return await dispatcher.fetch("GET", f"/markets/{ticker}/orderbook", parse)

    def _parse_delta(self, msg: Mapping[str, Any], ref: MarketRef, seq: Optional[int]) -> OrderBookDelta:
        ladders = self._ladders.get(ref.key)
        last = self._sequences.get(ref.key)
        if ladders is None or (seq is not None and last is not None and seq != last + 1):
            # No snapshot yet, a replay or a gap: the ladders stay as they are
            # and the normalizer decides from the sequence.
            return OrderBookDelta(market_id=ref.market_id, outcome=ref.outcome, sequence=seq)

        side = str(msg["side"]).lower()
        cents = int(msg["price"])
        yes, no = ladders
        ladder = yes if side == "yes" else no
        quantity = ladder.get(cents, Decimal("0")) + Decimal(str(msg["delta"]))
        if quantity > 0:
            ladder[cents] = quantity
        else:
            ladder.pop(cents, None)
            quantity = Decimal("0")
        if seq is not None:
            self._sequences[ref.key] = seq

        if side == ref.outcome.lower():
            change = LevelChange(side=BookSide.BID, price=_price(cents), size=quantity)
        else:
            change = LevelChange(side=BookSide.ASK, price=_ONE - _price(cents), size=quantity)
        return OrderBookDelta(
            market_id=ref.market_id,
            outcome=ref.outcome,
            changes=(change,),
            sequence=seq,
            timestamp=datetime.now(timezone.utc),
        )

    def _reset(self, key: str) -> None:
        self._ladders.pop(key, None)
        self._sequences.pop(key, None)

    def _parse_trade(self, msg: Mapping[str, Any], ref: MarketRef) -> Trade:
        outcome = ref.outcome.lower()
        cents = msg["no_price"] if outcome == "no" else msg["yes_price"]
        taker = str(msg.get("taker_side", "")).lower()
        return Trade(
            id=str(msg["trade_id"]),
            market_id=ref.market_id,
            outcome=ref.outcome,
            side=OrderSide.BUY if taker == outcome else OrderSide.SELL,
            price=_price(int(cents)),
            size=Decimal(str(msg["count"])),
            timestamp=from_timestamp(msg.get("ts")) or datetime.now(timezone.utc),
        )
