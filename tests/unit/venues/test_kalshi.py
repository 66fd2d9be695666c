"""Unit tests for the Kalshi adapter."""

import asyncio
import json
from contextlib import asynccontextmanager
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from marketbridge.core import (
    BookSide,
    EndpointClass,
    InsufficientFunds,
    MarketNotFound,
    OrderSide,
    OrderStatus,
    RateLimitExceeded,
    ValidationError,
    Venue,
)
from marketbridge.io import RawResponse, TransportConfig, WebSocketTransport
from marketbridge.models import FetchOrdersParams, MarketRef, OrderBook, OrderBookDelta, Trade
from marketbridge.runtime import StreamNormalizer
from marketbridge.signing import RsaSignatureAuth
from marketbridge.signing.rsa import HEADER_KEY, HEADER_SIGNATURE
from marketbridge.venues import kalshi
from marketbridge.venues.kalshi import KalshiStreamProtocol

TICKER = "KXBTC-25DEC31-T100000"
YES = MarketRef(market_id=TICKER, outcome="yes")
NO = MarketRef(market_id=TICKER, outcome="no")


def snapshot(seq: int = 1) -> dict:
    return {
        "type": "orderbook_snapshot",
        "sid": 1,
        "seq": seq,
        "msg": {"market_ticker": TICKER, "yes": [[40, 100], [38, 20]], "no": [[55, 50]]},
    }


def delta(side: str, price: int, change: int, seq: int) -> dict:
    return {
        "type": "orderbook_delta",
        "sid": 1,
        "seq": seq,
        "msg": {"market_ticker": TICKER, "price": price, "delta": change, "side": side},
    }


class ScriptedSocket:
    def __init__(self, messages: list, sent: list) -> None:
        self.messages = messages
        self.sent = sent

    async def send(self, message: str) -> None:
        self.sent.append(json.loads(message))

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for message in self.messages:
            await asyncio.sleep(0)
            yield json.dumps(message)
        await asyncio.Event().wait()


class ScriptedTransport(WebSocketTransport):
    """One list of wire messages per connection."""

    def __init__(self, *sessions: list) -> None:
        super().__init__(TransportConfig(jitter=0, max_reconnect_attempts=1))
        self.sessions = list(sessions)
        self.sent: list = []

    @asynccontextmanager
    async def connect(self, url, headers=None):
        yield ScriptedSocket(self.sessions.pop(0), self.sent)


def make_normalizer(transport: ScriptedTransport):
    dispatcher = MagicMock()
    dispatcher.fetch = AsyncMock()
    sleep = AsyncMock()
    normalizer = StreamNormalizer(KalshiStreamProtocol(), dispatcher, transport=transport, sleep=sleep)
    return normalizer, dispatcher, sleep


async def take(agen, n: int) -> list:
    return [await agen.__anext__() for _ in range(n)]


@pytest.fixture(scope="module")
def private_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


class TestLadders:
    def test_yes_book(self):
        book = kalshi.book_from_ladders({40: Decimal(100)}, {55: Decimal(50)}, YES)
        assert book.best_bid == Decimal("0.40")
        assert book.best_ask == Decimal("0.45")
        assert book.asks[0].size == Decimal(50)

    def test_no_book_mirrors(self):
        book = kalshi.book_from_ladders({40: Decimal(100)}, {55: Decimal(50)}, NO)
        assert book.best_bid == Decimal("0.55")
        assert book.best_ask == Decimal("0.60")
        assert book.bids[0].size == Decimal(50)

    def test_parse_orderbook_skips_empty_levels(self):
        body = {"orderbook": {"yes": [[40, 10], [41, 0]], "no": None}}
        book = kalshi.parse_orderbook(body, YES)
        assert [level.price for level in book.bids] == [Decimal("0.40")]
        assert book.asks == ()


class TestStreamProtocol:
    """Test orderbook_delta bookkeeping."""

    def test_subscribe_ids_increment(self):
        protocol = KalshiStreamProtocol()
        first = protocol.subscribe_messages(YES)[0]
        second = protocol.subscribe_messages(YES)[0]
        assert first["cmd"] == "subscribe"
        assert first["params"] == {"channels": ["orderbook_delta", "trade"], "market_tickers": [TICKER]}
        assert second["id"] == first["id"] + 1

    def test_relevance(self, caplog):
        protocol = KalshiStreamProtocol()
        assert protocol.is_relevant(snapshot())
        assert not protocol.is_relevant({"type": "subscribed", "msg": {}})
        assert not protocol.is_relevant({"type": "error", "msg": {"code": 6}})
        assert any(r.getMessage() == "kalshi_stream_error" for r in caplog.records)

    def test_snapshot_then_deltas(self):
        protocol = KalshiStreamProtocol()
        (book,) = protocol.parse(snapshot(seq=3), YES)
        assert isinstance(book, OrderBook)
        assert book.sequence == 3
        assert book.best_bid == Decimal("0.40")

        (bid_change,) = protocol.parse(delta("yes", 40, -30, seq=4), YES)
        assert isinstance(bid_change, OrderBookDelta)
        assert bid_change.sequence == 4
        change = bid_change.changes[0]
        assert (change.side, change.price, change.size) == (BookSide.BID, Decimal("0.40"), Decimal(70))

        (ask_change,) = protocol.parse(delta("no", 55, -50, seq=5), YES)
        change = ask_change.changes[0]
        assert (change.side, change.price, change.size) == (BookSide.ASK, Decimal("0.45"), Decimal(0))

        rebuilt = book.apply(bid_change).apply(ask_change)
        assert rebuilt.asks == ()
        assert rebuilt.bids[0].size == Decimal(70)

    def test_new_level_from_delta(self):
        protocol = KalshiStreamProtocol()
        protocol.parse(snapshot(), NO)
        (event,) = protocol.parse(delta("no", 57, 12, seq=2), NO)
        change = event.changes[0]
        assert (change.side, change.price, change.size) == (BookSide.BID, Decimal("0.57"), Decimal(12))

    def test_delta_before_snapshot_is_empty(self):
        protocol = KalshiStreamProtocol()
        (event,) = protocol.parse(delta("yes", 40, 5, seq=9), YES)
        assert event.changes == ()
        assert event.sequence == 9

    def test_replayed_delta_leaves_ladders(self):
        protocol = KalshiStreamProtocol()
        protocol.parse(snapshot(seq=1), YES)
        (first,) = protocol.parse(delta("yes", 40, 5, seq=2), YES)
        (replay,) = protocol.parse(delta("yes", 40, 5, seq=2), YES)
        (after,) = protocol.parse(delta("yes", 40, 1, seq=3), YES)

        assert first.changes[0].size == Decimal(105)
        assert replay.changes == ()
        assert replay.sequence == 2
        assert after.changes[0].size == Decimal(106)

    def test_gap_leaves_ladders(self):
        protocol = KalshiStreamProtocol()
        protocol.parse(snapshot(seq=1), YES)
        (skipped,) = protocol.parse(delta("yes", 40, 7, seq=3), YES)
        (next_,) = protocol.parse(delta("yes", 40, 1, seq=2), YES)

        assert skipped.changes == ()
        assert next_.changes[0].size == Decimal(101)

    def test_subscribe_clears_ladders(self):
        protocol = KalshiStreamProtocol()
        protocol.parse(snapshot(seq=1), YES)
        protocol.parse(snapshot(seq=1), NO)
        protocol.subscribe_messages(YES)

        (yes_event,) = protocol.parse(delta("yes", 40, 1, seq=2), YES)
        (no_event,) = protocol.parse(delta("yes", 40, 1, seq=2), NO)
        assert yes_event.changes == ()
        assert no_event.changes[0].size == Decimal(101)

    def test_other_ticker_ignored(self):
        protocol = KalshiStreamProtocol()
        payload = snapshot()
        payload["msg"]["market_ticker"] = "OTHER"
        assert protocol.parse(payload, YES) == []

    def test_trade(self):
        protocol = KalshiStreamProtocol()
        payload = {
            "type": "trade",
            "sid": 2,
            "msg": {
                "trade_id": "t-1",
                "market_ticker": TICKER,
                "yes_price": 45,
                "no_price": 55,
                "count": 10,
                "taker_side": "no",
                "ts": 1700000000,
            },
        }
        (yes_trade,) = protocol.parse(payload, YES)
        (no_trade,) = protocol.parse(payload, NO)

        assert isinstance(yes_trade, Trade)
        assert yes_trade.side is OrderSide.SELL
        assert yes_trade.price == Decimal("0.45")
        assert yes_trade.size == Decimal(10)
        assert no_trade.side is OrderSide.BUY
        assert no_trade.price == Decimal("0.55")

    @pytest.mark.asyncio
    async def test_fetch_snapshot_seeds_ladders(self):
        protocol = KalshiStreamProtocol()
        body = {"orderbook": {"yes": [[40, 100]], "no": [[55, 50]]}}
        dispatcher = MagicMock()
        dispatcher.fetch = AsyncMock(side_effect=lambda method, path, parse, **kw: parse(body))

        book = await protocol.fetch_snapshot(dispatcher, YES)

        assert book.best_ask == Decimal("0.45")
        assert dispatcher.fetch.await_args.args[:2] == ("GET", f"/markets/{TICKER}/orderbook")
        (event,) = protocol.parse(delta("yes", 40, 1, seq=2), YES)
        assert event.changes[0].size == Decimal(101)

    def test_connect_headers(self, private_key):
        assert KalshiStreamProtocol().connect_headers() is None
        signer = RsaSignatureAuth("key-id", private_key=private_key)
        headers = KalshiStreamProtocol(signer).connect_headers()
        assert headers[HEADER_KEY] == "key-id"
        assert headers[HEADER_SIGNATURE]


class TestStreamNormalization:
    """Test the protocol driven by StreamNormalizer."""

    @pytest.mark.asyncio
    async def test_replayed_delta_counted_once(self):
        transport = ScriptedTransport(
            [snapshot(1), delta("yes", 40, 5, 2), delta("yes", 40, 5, 2), delta("yes", 40, 1, 3)]
        )
        normalizer, _, _ = make_normalizer(transport)

        agen = normalizer.subscribe(YES)
        books = await take(agen, 3)

        assert [b.bids[0].size for b in books] == [Decimal(100), Decimal(105), Decimal(106)]
        assert normalizer.subscription(YES).dropped_deltas == 1
        await agen.aclose()

    @pytest.mark.asyncio
    async def test_gap_resubscribes_instead_of_rest_snapshot(self):
        transport = ScriptedTransport(
            [snapshot(1), delta("yes", 40, 5, 2), delta("yes", 40, 7, 4), delta("yes", 40, 1, 5)],
            [delta("yes", 40, 3, 6), snapshot(1), delta("yes", 40, 2, 2)],
        )
        normalizer, dispatcher, sleep = make_normalizer(transport)

        agen = normalizer.subscribe(YES)
        books = await take(agen, 4)

        assert [b.bids[0].size for b in books] == [Decimal(100), Decimal(105), Decimal(100), Decimal(102)]
        assert [b.sequence for b in books] == [1, 2, 1, 2]
        dispatcher.fetch.assert_not_awaited()
        sleep.assert_not_awaited()
        assert [m["cmd"] for m in transport.sent] == ["subscribe", "subscribe"]
        sub = normalizer.subscription(YES)
        assert sub.resyncs == 1
        assert sub.snapshot_fetches == 0
        assert sub.dropped_deltas == 2
        await agen.aclose()


class TestErrorMapper:
    def test_success(self):
        assert kalshi.error_mapper(RawResponse(200, {"order": {}})) is None

    def test_insufficient_balance(self):
        response = RawResponse(400, {"error": {"code": "insufficient_balance", "message": "not enough cash"}})
        error = kalshi.error_mapper(response, Venue.KALSHI)
        assert isinstance(error, InsufficientFunds)
        assert str(error) == "not enough cash"
        assert error.status_code == 400
        assert error.venue is Venue.KALSHI

    def test_market_not_found(self):
        response = RawResponse(400, {"error": {"code": "market_not_found", "message": "no such market"}})
        assert isinstance(kalshi.error_mapper(response), MarketNotFound)

    def test_other_code_keeps_status_mapping(self):
        response = RawResponse(400, {"error": {"code": "invalid_parameters", "message": "bad count"}})
        error = kalshi.error_mapper(response)
        assert isinstance(error, ValidationError)
        assert str(error) == "bad count"

    def test_rate_limit_keeps_retry_after(self):
        response = RawResponse(429, {"error": {"code": "too_many_requests"}}, headers={"Retry-After": "3"})
        error = kalshi.error_mapper(response)
        assert isinstance(error, RateLimitExceeded)
        assert error.retry_after == 3.0
        assert error.transient

    def test_text_body(self):
        error = kalshi.error_mapper(RawResponse(400, "bad request"))
        assert isinstance(error, ValidationError)


class TestConnect:
    def test_demo_url(self):
        dispatcher = kalshi.connect(demo=True)
        assert dispatcher.venue is Venue.KALSHI
        assert dispatcher._transport.base_url == kalshi.DEMO_API_URL

    def test_signer_uses_api_prefix(self, private_key):
        signer = kalshi.build_signer("key-id", private_key=private_key)
        assert signer.path_prefix == "/trade-api/v2"


class TestOrders:
    """Test portfolio order parsing."""

    def order(self, **overrides) -> dict:
        data = {
            "order_id": "ord-1",
            "client_order_id": "cli-1",
            "ticker": TICKER,
            "side": "no",
            "action": "buy",
            "yes_price": 62,
            "no_price": 38,
            "initial_count": 10,
            "fill_count": 4,
            "remaining_count": 6,
            "status": "resting",
            "created_time": "2025-01-02T03:04:05Z",
        }
        data.update(overrides)
        return data

    def test_partially_filled(self):
        order = kalshi.parse_order(self.order())
        assert order.id == "ord-1"
        assert order.client_order_id == "cli-1"
        assert order.outcome == "no"
        assert order.side is OrderSide.BUY
        assert order.price == Decimal("0.38")
        assert order.size == Decimal(10)
        assert order.filled_size == Decimal(4)
        assert order.status is OrderStatus.PARTIALLY_FILLED
        assert order.updated_at == order.created_at

    def test_resting_without_fills(self):
        order = kalshi.parse_order(self.order(fill_count=0, remaining_count=10, side="yes", action="sell"))
        assert order.status is OrderStatus.OPEN
        assert order.side is OrderSide.SELL
        assert order.price == Decimal("0.62")

    def test_terminal_statuses(self):
        assert kalshi.parse_order(self.order(status="canceled")).status is OrderStatus.CANCELLED
        executed = kalshi.parse_order(self.order(status="executed", fill_count=10, remaining_count=0))
        assert executed.status is OrderStatus.FILLED
        assert executed.is_filled

    def test_size_without_initial_count(self):
        order = kalshi.parse_order(self.order(initial_count=None))
        assert order.size == Decimal(10)

    @pytest.mark.asyncio
    async def test_fetch_open_orders(self):
        body = {"orders": [self.order(), self.order(order_id="ord-2", client_order_id=None)], "cursor": ""}
        dispatcher = MagicMock()
        dispatcher.fetch = AsyncMock(side_effect=lambda method, path, parse, **kw: parse(body))

        orders = await kalshi.fetch_open_orders(dispatcher, FetchOrdersParams(market_id=TICKER))

        assert [o.id for o in orders] == ["ord-1", "ord-2"]
        assert orders[1].client_order_id == "ord-2"
        kwargs = dispatcher.fetch.await_args.kwargs
        assert kwargs["params"] == {"status": "resting", "ticker": TICKER}
        assert kwargs["endpoint_class"] is EndpointClass.AUTHENTICATED_READ

    @pytest.mark.asyncio
    async def test_fetch_order(self):
        dispatcher = MagicMock()
        dispatcher.fetch = AsyncMock(
            side_effect=lambda method, path, parse, **kw: parse({"order": self.order(status="executed")})
        )
        order = await kalshi.fetch_order(dispatcher, "ord-1")
        assert order.status is OrderStatus.FILLED
        assert dispatcher.fetch.await_args.args[1] == "/portfolio/orders/ord-1"
