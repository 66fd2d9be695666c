"""Limitless: message-signature session login and per-market CTF domains.

Login signs the text returned by ``GET /auth/signing-message`` and posts it
to ``/auth/login`` as hex headers; the session comes back as a cookie.
Every market names its own exchange contract, so typed-data domains are
built per market.
"""

from __future__ import annotations

from collections.abc import Mapping
from http.cookies import SimpleCookie
from typing import Any, Optional

from ..core.config import ExchangeConfig, validate_env
from ..core.enums import SchemeKind, Venue
from ..core.exceptions import AuthError
from ..io.http import HTTPClient
from ..runtime.dispatcher import RequestDispatcher
from ..signing.message import MessageSignatureAuth
from ..signing.typed_data import TypedDataDomain, TypedDataOrderSigning
from .base import VenueInfo, build_dispatcher

API_URL = "https://api.limitless.exchange"
WS_URL = "wss://ws.limitless.exchange"
CHAIN_ID = 8453
DOMAIN_NAME = "Limitless CTF Exchange"
SESSION_COOKIE = "limitless_session"
# Sessions last about a day; refreshed early by the signing scheme.
SESSION_TTL = 24 * 3600.0

INFO = VenueInfo(
    venue=Venue.LIMITLESS,
    name="Limitless",
    rest_url=API_URL,
    ws_url=WS_URL,
    chain_id=CHAIN_ID,
    scheme=SchemeKind.MESSAGE_SIGNATURE,
)


def domain(exchange_address: str) -> TypedDataDomain:
    """Typed-data domain for a market's exchange contract."""
    return TypedDataDomain(DOMAIN_NAME, "1", CHAIN_ID, exchange_address)


def order_signer(private_key: str, exchange_address: str) -> TypedDataOrderSigning:
    return TypedDataOrderSigning(private_key, domain(exchange_address))


def session_headers(token: str) -> dict[str, str]:
    return {"Cookie": f"{SESSION_COOKIE}={token}"}


def _session_token(headers: Mapping[str, str]) -> Optional[str]:
    raw = headers.get("Set-Cookie") or headers.get("set-cookie")
    if not raw:
        return None
    cookie = SimpleCookie()
    cookie.load(raw)
    morsel = cookie.get(SESSION_COOKIE)
    return morsel.value if morsel is not None else None


def build_signer(dispatcher: RequestDispatcher, private_key: str, **kwargs: Any) -> MessageSignatureAuth:
    """Session login through ``dispatcher``'s public endpoints."""

    async def fetch_challenge() -> str:
        response = await dispatcher.dispatch("GET", "/auth/signing-message")
        return str(response.body).strip()

    async def exchange_signature(address: str, message: str, signature: str) -> dict[str, Any]:
        response = await dispatcher.dispatch(
            "POST",
            "/auth/login",
            {"client": "eoa"},
            headers={
                "x-account": address,
                "x-signing-message": "0x" + message.encode("utf-8").hex(),
                "x-signature": signature,
            },
        )
        token = _session_token(response.headers)
        if token is None:
            raise AuthError("Login response carried no session cookie", venue=Venue.LIMITLESS)
        body = response.body if isinstance(response.body, Mapping) else {}
        user = body.get("user") or {}
        return {"token": token, "owner_id": user.get("id") or body.get("id")}

    kwargs.setdefault("token_ttl", SESSION_TTL)
    return MessageSignatureAuth(
        private_key,
        fetch_challenge=fetch_challenge,
        exchange_signature=exchange_signature,
        token_headers=session_headers,
        **kwargs,
    )


def connect(
    config: Optional[ExchangeConfig] = None,
    private_key: Optional[str] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
    http: Optional[HTTPClient] = None,
    **kwargs: Any,
) -> RequestDispatcher:
    """Dispatcher with session login wired in.

    The private key falls back to ``LIMITLESS_PRIVATE_KEY``.
    """
    dispatcher = build_dispatcher(INFO, config, http=http, **kwargs)
    if private_key is None:
        private_key = validate_env(Venue.LIMITLESS, environ)["LIMITLESS_PRIVATE_KEY"]
    dispatcher.signer = build_signer(dispatcher, private_key)
    return dispatcher
