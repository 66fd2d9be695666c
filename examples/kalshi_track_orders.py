#!/usr/bin/env python3
"""Follow resting Kalshi orders until they fill or are cancelled.

Needs KALSHI_API_KEY_ID and KALSHI_PRIVATE_KEY_PATH.
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from marketbridge.models import FetchOrdersParams, OrderEvent, ReconciliationWarning
from marketbridge.runtime import OrderTracker, log_fills
from marketbridge.venues import kalshi

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Track resting Kalshi orders with polling")
    p.add_argument("--ticker", help="Only orders on this market")
    p.add_argument("--interval", type=float, default=5.0, help="Seconds between polls")
    p.add_argument("--duration", type=int, default=300, help="Seconds to run")
    p.add_argument("--demo", action="store_true", help="Use the demo environment")
    return p.parse_args()


def on_warning(warning: ReconciliationWarning) -> None:
    logger.warning("Conflicting reports for %s: %s", warning.order_id or warning.client_order_id, warning.message)


def on_event(event: OrderEvent) -> None:
    log_fills(event)
    order = event.order
    print(f"{event.kind.value:<14} {order.market_id} {order.filled_size}/{order.size} {order.status.value}")


async def main() -> None:
    args = parse_args()
    dispatcher = kalshi.connect(signer=kalshi.signer_from_env(), demo=args.demo)
    params = FetchOrdersParams(market_id=args.ticker)

    tracker = OrderTracker(
        venue=dispatcher.venue,
        on_event=on_event,
        on_warning=on_warning,
        fetch_open_orders=lambda: kalshi.fetch_open_orders(dispatcher, params),
        fetch_order=lambda order_id: kalshi.fetch_order(dispatcher, order_id),
        poll_interval=args.interval,
    )
    try:
        for order in await kalshi.fetch_open_orders(dispatcher, params):
            await tracker.track(order)
        print(f"Tracking {tracker.tracked_count} resting orders")

        async with tracker:
            await asyncio.sleep(args.duration)
    finally:
        await dispatcher.close()


if __name__ == "__main__":
    asyncio.run(main())
