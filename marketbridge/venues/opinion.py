"""Opinion: static API key, multi-sig wallet and the errno envelope.

Every response is ``{"errno", "errmsg", "result": {"data" | "list"}}`` and
business failures arrive with HTTP 200 and a non-zero ``errno``.
"""

from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal
from typing import Any, Optional

from ..core.config import ExchangeConfig, validate_env
from ..core.enums import SchemeKind, Venue
from ..core.exceptions import DrmError, ExchangeRejected, SerializationError
from ..io.http import HTTPClient, RawResponse, error_for_response
from ..models.market import MarketRef
from ..models.order_book import OrderBook
from ..runtime.dispatcher import RequestDispatcher
from ..signing.api_key import ApiKeyMultiSig
from .base import VenueInfo, build_dispatcher, to_decimal

API_URL = "https://proxy.opinion.trade:8443"
CHAIN_ID = 56

INFO = VenueInfo(
    venue=Venue.OPINION,
    name="Opinion",
    rest_url=API_URL,
    ws_url=None,
    chain_id=CHAIN_ID,
    scheme=SchemeKind.API_KEY_MULTISIG,
)


def build_signer(api_key: str, multi_sig_address: str) -> ApiKeyMultiSig:
    return ApiKeyMultiSig(api_key, multi_sig_address)


def signer_from_env(environ: Optional[Mapping[str, str]] = None) -> ApiKeyMultiSig:
    env = validate_env(Venue.OPINION, environ)
    return build_signer(env["OPINION_API_KEY"], env["OPINION_MULTI_SIG_ADDR"])


def error_mapper(response: RawResponse, venue: Optional[Venue] = None) -> Optional[DrmError]:
    """HTTP status first, then a non-zero ``errno`` as a venue rejection."""
    error = error_for_response(response, venue)
    if error is not None:
        return error
    body = response.body
    if not isinstance(body, Mapping) or "errno" not in body:
        return None
    errno = body.get("errno")
    if errno in (0, "0"):
        return None
    message = body.get("errmsg") or f"errno {errno}"
    return ExchangeRejected(f"{message} (errno {errno})", venue=venue, status_code=response.status)


def unwrap(body: Any) -> Any:
    """``result.data`` or ``result.list`` of a successful envelope."""
    if not isinstance(body, Mapping) or not isinstance(body.get("result"), Mapping):
        raise SerializationError("Opinion response has no result", venue=Venue.OPINION)
    result = body["result"]
    if result.get("data") is not None:
        return result["data"]
    return result.get("list") or []


def _levels(entries: Any) -> list[tuple[Decimal, Decimal]]:
    levels = []
    for e in entries or []:
        price, size = to_decimal(e["price"]), to_decimal(e["size"])
        if price > 0:
            levels.append((price, size))
    return levels


def parse_orderbook(body: Any, ref: MarketRef) -> OrderBook:
    """Book from ``GET /api/v1/orderbook?token_id=...``."""
    data = unwrap(body)
    return OrderBook.from_levels(
        market_id=ref.market_id,
        outcome=ref.outcome,
        bids=_levels(data.get("bids")),
        asks=_levels(data.get("asks")),
    )


async def fetch_orderbook(dispatcher: RequestDispatcher, ref: MarketRef) -> OrderBook:
    return await dispatcher.fetch(
        "GET",
        "/api/v1/orderbook",
        lambda body: parse_orderbook(body, ref),
        params={"token_id": ref.venue_id},
    )


def connect(
    config: Optional[ExchangeConfig] = None,
    signer: Optional[ApiKeyMultiSig] = None,
    *,
    http: Optional[HTTPClient] = None,
    **kwargs: Any,
) -> RequestDispatcher:
    return build_dispatcher(INFO, config, signer, http=http, error_mapper=error_mapper, **kwargs)
