"""Polymarket: Gamma market data, CLOB books and CTF exchange order signing.

The market websocket has no sequence numbers; it pushes a full ``book``
after subscribing and ``price_change`` deltas with absolute level sizes.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from ..core.config import ExchangeConfig, validate_env
from ..core.enums import BookSide, MarketStatus, OrderSide, PriceHistoryInterval, SchemeKind, Venue
from ..io.http import HTTPClient
from ..io.ws_transport import TransportConfig
from ..models.market import FetchMarketsParams, Market, MarketRef
from ..models.order_book import LevelChange, OrderBook, OrderBookDelta
from ..models.price_history import PricePoint
from ..models.trade import Trade
from ..runtime.dispatcher import RequestDispatcher
from ..runtime.stream import StreamEvent, StreamProtocol
from ..signing.typed_data import TypedDataDomain, TypedDataOrderSigning
from .base import VenueInfo, build_dispatcher, from_timestamp, to_decimal

logger = logging.getLogger(__name__)

GAMMA_URL = "https://gamma-api.polymarket.com"
CLOB_URL = "https://clob.polymarket.com"
WS_MARKET_URL = "wss://ws-subscriptions-clob.polymarket.com/ws/market"

CHAIN_ID = 137
CTF_EXCHANGE = "0x4bFb41d5B3570DeFd03C39a9A4D8dE6Bd8B8982E"
NEG_RISK_CTF_EXCHANGE = "0xC5d563A36AE78145C45a50134d48A1215220f80a"

SIGNATURE_TYPE_EOA = 0
SIGNATURE_TYPE_GNOSIS_SAFE = 2

DOMAIN = TypedDataDomain("Polymarket CTF Exchange", "1", CHAIN_ID, CTF_EXCHANGE)
NEG_RISK_DOMAIN = TypedDataDomain("Polymarket CTF Exchange", "1", CHAIN_ID, NEG_RISK_CTF_EXCHANGE)

# 3s, x1.5 per attempt, capped at 60s, 10 attempts
STREAM_CONFIG = TransportConfig(
    ping_interval=20,
    base_reconnect_delay=3.0,
    max_reconnect_delay=60.0,
    backoff_multiplier=1.5,
    max_reconnect_attempts=10,
)

INFO = VenueInfo(
    venue=Venue.POLYMARKET,
    name="Polymarket",
    rest_url=CLOB_URL,
    ws_url=WS_MARKET_URL,
    chain_id=CHAIN_ID,
    scheme=SchemeKind.TYPED_DATA,
    has_stream=True,
)


def build_signer(
    private_key: str,
    funder: Optional[str] = None,
    *,
    neg_risk: bool = False,
) -> TypedDataOrderSigning:
    """Order signer; a funder (proxy wallet) implies Gnosis-safe signatures."""
    return TypedDataOrderSigning(
        private_key,
        NEG_RISK_DOMAIN if neg_risk else DOMAIN,
        funder=funder,
        signature_type=SIGNATURE_TYPE_GNOSIS_SAFE if funder else SIGNATURE_TYPE_EOA,
    )


def signer_from_env(environ: Optional[Mapping[str, str]] = None, **kwargs: Any) -> TypedDataOrderSigning:
    env = validate_env(Venue.POLYMARKET, environ)
    return build_signer(env["POLYMARKET_PRIVATE_KEY"], env["POLYMARKET_FUNDER"], **kwargs)


def connect(
    config: Optional[ExchangeConfig] = None,
    signer: Optional[TypedDataOrderSigning] = None,
    *,
    http: Optional[HTTPClient] = None,
    **kwargs: Any,
) -> RequestDispatcher:
    """Dispatcher for the CLOB API."""
    return build_dispatcher(INFO, config, signer, http=http, **kwargs)


def connect_gamma(
    config: Optional[ExchangeConfig] = None,
    *,
    http: Optional[HTTPClient] = None,
    **kwargs: Any,
) -> RequestDispatcher:
    """Dispatcher for the public Gamma market-data API."""
    return build_dispatcher(INFO, config, http=http, rest_url=GAMMA_URL, **kwargs)


def _levels(entries: Any) -> list[tuple[Decimal, Decimal]]:
    return [(to_decimal(e["price"]), to_decimal(e["size"])) for e in entries or []]


def parse_book(body: Mapping[str, Any], ref: MarketRef) -> OrderBook:
    """Book from a ``book`` stream event or the REST ``/book`` response."""
    return OrderBook.from_levels(
        market_id=ref.market_id,
        outcome=ref.outcome,
        bids=_levels(body.get("bids")),
        asks=_levels(body.get("asks")),
        timestamp=from_timestamp(body.get("timestamp")),
    )


def _json_list(value: Any) -> list[Any]:
    # Gamma encodes some list fields as JSON strings.
    if isinstance(value, str):
        value = json.loads(value) if value else []
    return list(value or [])


def parse_gamma_market(data: Mapping[str, Any]) -> Market:
    """Market from a Gamma ``/markets`` entry."""
    outcomes = tuple(str(o) for o in _json_list(data.get("outcomes")))
    raw_prices = _json_list(data.get("outcomePrices"))
    prices = {o: to_decimal(p) for o, p in zip(outcomes, raw_prices)}
    if data.get("closed"):
        status = MarketStatus.CLOSED
    else:
        status = MarketStatus.OPEN
    metadata = dict(data)
    metadata["clobTokenIds"] = _json_list(data.get("clobTokenIds"))
    metadata["closed"] = bool(data.get("closed", False))
    return Market(
        id=str(data.get("conditionId") or data["id"]),
        question=data["question"],
        outcomes=outcomes,
        prices=prices,
        volume=to_decimal(data.get("volumeNum") or data.get("volume") or 0),
        liquidity=to_decimal(data.get("liquidityNum") or data.get("liquidity") or 0),
        status=status,
        tick_size=to_decimal(data.get("orderPriceMinTickSize") or "0.01"),
        close_time=from_timestamp(data.get("endDate")),
        description=data.get("description") or "",
        metadata=metadata,
    )


def _parse_markets(body: Any) -> list[Market]:
    markets = []
    for entry in body:
        try:
            markets.append(parse_gamma_market(entry))
        except (KeyError, ValueError) as e:
            logger.debug("polymarket_market_skipped", extra={"market": entry.get("id"), "error": str(e)})
    return markets


async def fetch_markets(
    dispatcher: RequestDispatcher,
    params: Optional[FetchMarketsParams] = None,
) -> list[Market]:
    """Markets from Gamma ``/markets``, busiest first; malformed entries are skipped."""
    params = params or FetchMarketsParams()
    query: dict[str, Any] = {"order": "volumeNum", "ascending": "false"}
    if params.active_only:
        query.update(active="true", closed="false")
    if params.limit:
        query["limit"] = params.limit
    return await dispatcher.fetch("GET", "/markets", _parse_markets, params=query)


def parse_price_history(body: Mapping[str, Any]) -> list[PricePoint]:
    """Points from ``/prices-history``; entries without ``t`` or ``p`` are dropped."""
    points = []
    for item in body.get("history") or []:
        t, p = item.get("t"), item.get("p")
        if t is None or p is None:
            continue
        points.append(PricePoint(timestamp=from_timestamp(t), price=to_decimal(p)))
    return points


async def fetch_price_history(
    dispatcher: RequestDispatcher,
    token_id: str,
    interval: PriceHistoryInterval = PriceHistoryInterval.D1,
    fidelity: int = 10,
) -> list[PricePoint]:
    """Price history of one outcome token from the CLOB API."""
    return await dispatcher.fetch(
        "GET",
        "/prices-history",
        parse_price_history,
        params={"market": token_id, "interval": interval.value, "fidelity": fidelity},
    )


class PolymarketStreamProtocol(StreamProtocol):
    """Market channel: ``book``, ``price_change`` and ``last_trade_price``."""

    venue = Venue.POLYMARKET
    sends_snapshot = True

    def __init__(self, url: str = WS_MARKET_URL) -> None:
        self.url = url

    def subscribe_messages(self, ref: MarketRef) -> list[Any]:
        return [{"auth": {}, "markets": [], "assets_ids": [ref.venue_id], "type": "market"}]

    def is_relevant(self, payload: Any) -> bool:
        if isinstance(payload, list):
            return any(isinstance(item, dict) and "event_type" in item for item in payload)
        return isinstance(payload, dict) and "event_type" in payload

    def parse(self, payload: Any, ref: MarketRef) -> list[StreamEvent]:
        items = payload if isinstance(payload, list) else [payload]
        out: list[StreamEvent] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            kind = item.get("event_type")
            if kind == "book":
                if item.get("asset_id") == ref.venue_id:
                    out.append(parse_book(item, ref))
            elif kind == "price_change":
                delta = self._parse_price_change(item, ref)
                if delta is not None:
                    out.append(delta)
            elif kind == "last_trade_price":
                if item.get("asset_id") == ref.venue_id:
                    out.append(self._parse_trade(item, ref))
        return out

    async def fetch_snapshot(self, dispatcher: RequestDispatcher, ref: MarketRef) -> OrderBook:
        return await dispatcher.fetch(
            "GET", "/book", lambda body: parse_book(body, ref), params={"token_id": ref.venue_id}
        )

    def _parse_price_change(self, item: Mapping[str, Any], ref: MarketRef) -> Optional[OrderBookDelta]:
        entries = item.get("price_changes")
        if entries is None:
            # Older format: one asset per message, entries under "changes".
            entries = [dict(c, asset_id=item.get("asset_id")) for c in item.get("changes") or []]
        changes = tuple(
            LevelChange(
                side=BookSide.BID if OrderSide.from_str(e["side"]) is OrderSide.BUY else BookSide.ASK,
                price=to_decimal(e["price"]),
                size=to_decimal(e["size"]),
            )
            for e in entries
            if e.get("asset_id") == ref.venue_id
        )
        if not changes:
            return None
        return OrderBookDelta(
            market_id=ref.market_id,
            outcome=ref.outcome,
            changes=changes,
            timestamp=from_timestamp(item.get("timestamp")),
        )

    def _parse_trade(self, item: Mapping[str, Any], ref: MarketRef) -> Trade:
        timestamp = from_timestamp(item.get("timestamp")) or datetime.now(timezone.utc)
        trade_id = item.get("transaction_hash") or (
            f"{ref.venue_id}-{item.get('timestamp')}-{item['price']}-{item['size']}"
        )
        return Trade(
            id=str(trade_id),
            market_id=ref.market_id,
            outcome=ref.outcome,
            side=OrderSide.from_str(item["side"]),
            price=to_decimal(item["price"]),
            size=to_decimal(item["size"]),
            timestamp=timestamp,
        )
