#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import logging

from marketbridge.io import WebSocketTransport
from marketbridge.models import FetchMarketsParams, MarketRef, OrderBook, StreamStateChange
from marketbridge.runtime import StreamNormalizer
from marketbridge.venues import polymarket

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Stream a normalized Polymarket order book")
    p.add_argument("token_id", nargs="?", help="CLOB token id; defaults to the busiest open market")
    p.add_argument("duration", nargs="?", type=int, default=60, help="Seconds to run")
    return p.parse_args()


async def busiest_ref() -> MarketRef:
    async with polymarket.connect_gamma() as gamma:
        markets = await polymarket.fetch_markets(gamma, FetchMarketsParams(limit=10))
    market = next(m for m in markets if m.is_open and m.token_ids)
    print(f"Market: {market.question}")
    return MarketRef(market_id=market.id, outcome=market.outcomes[0], asset_id=market.token_ids[0])


def on_state(change: StreamStateChange) -> None:
    print(f"STATE {change.previous.value} -> {change.current.value} ({change.key})")


async def watch(normalizer: StreamNormalizer, ref: MarketRef) -> None:
    async for update in normalizer.subscribe(ref):
        if isinstance(update, OrderBook):
            print(
                f"BOOK {update.outcome} bid={update.best_bid} ask={update.best_ask} "
                f"spread={update.spread} levels={len(update.bids)}/{len(update.asks)}"
            )
        else:
            print(f"TRADE {update.side.value} {update.size} @ {update.price}")


async def main() -> None:
    args = parse_args()
    if args.token_id:
        ref = MarketRef(market_id=args.token_id, outcome="yes", asset_id=args.token_id)
    else:
        ref = await busiest_ref()

    async with polymarket.connect() as dispatcher:
        normalizer = StreamNormalizer(
            polymarket.PolymarketStreamProtocol(),
            dispatcher,
            transport=WebSocketTransport(polymarket.STREAM_CONFIG),
            on_state_change=on_state,
        )
        try:
            await asyncio.wait_for(watch(normalizer, ref), timeout=args.duration)
        except asyncio.TimeoutError:
            logger.info("Done after %ss", args.duration)


if __name__ == "__main__":
    asyncio.run(main())
