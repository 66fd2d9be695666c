#!/usr/bin/env python3
"""Stream a normalized Kalshi order book.

The websocket requires KALSHI_API_KEY_ID and KALSHI_PRIVATE_KEY_PATH.
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from marketbridge.io import WebSocketTransport
from marketbridge.models import MarketRef, OrderBook
from marketbridge.runtime import StreamNormalizer
from marketbridge.venues import kalshi

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Stream a Kalshi order book via WebSocket")
    p.add_argument("ticker")
    p.add_argument("outcome", nargs="?", default="yes", choices=["yes", "no"])
    p.add_argument("--demo", action="store_true", help="Use the demo environment")
    return p.parse_args()


async def main() -> None:
    args = parse_args()
    signer = kalshi.signer_from_env()
    protocol = kalshi.KalshiStreamProtocol(signer, url=kalshi.DEMO_WS_URL if args.demo else kalshi.WS_URL)
    ref = MarketRef(market_id=args.ticker, outcome=args.outcome)

    async with kalshi.connect(signer=signer, demo=args.demo) as dispatcher:
        normalizer = StreamNormalizer(protocol, dispatcher, transport=WebSocketTransport())
        print("=" * 60)
        print(f"Streaming {args.ticker} ({args.outcome})")
        print("=" * 60)
        async for update in normalizer.subscribe(ref):
            if isinstance(update, OrderBook):
                print(f"seq={update.sequence} bid={update.best_bid} ask={update.best_ask} mid={update.mid_price}")
            else:
                print(f"TRADE {update.side.value} {update.size} @ {update.price}")


if __name__ == "__main__":
    asyncio.run(main())
