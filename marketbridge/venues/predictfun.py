"""predict.fun: API key plus JWT from a signed message, BNB chain CTF domains."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Optional

from ..core.config import ExchangeConfig, validate_env
from ..core.enums import SchemeKind, Venue
from ..io.http import HTTPClient
from ..runtime.dispatcher import RequestDispatcher
from ..signing.message import MessageSignatureAuth
from ..signing.typed_data import TypedDataDomain, TypedDataOrderSigning
from .base import VenueInfo, build_dispatcher

API_URL = "https://api.predict.fun"
TESTNET_API_URL = "https://api-testnet.predict.fun"

CHAIN_ID = 56
TESTNET_CHAIN_ID = 97

PROTOCOL_NAME = "predict.fun CTF Exchange"
PROTOCOL_VERSION = "1"

CTF_EXCHANGE = {
    CHAIN_ID: "0x8BC070BEdAB741406F4B1Eb65A72bee27894B689",
    TESTNET_CHAIN_ID: "0x2A6413639BD3d73a20ed8C95F634Ce198ABbd2d7",
}
NEG_RISK_CTF_EXCHANGE = {
    CHAIN_ID: "0x365fb81bd4A24D6303cd2F19c349dE6894D8d58A",
    TESTNET_CHAIN_ID: "0xd690b2bd441bE36431F6F6639D7Ad351e7B29680",
}
YIELD_BEARING_CTF_EXCHANGE = {
    CHAIN_ID: "0x6bEb5a40C032AFc305961162d8204CDA16DECFa5",
    TESTNET_CHAIN_ID: "0x8a6B4Fa700A1e310b106E7a48bAFa29111f66e89",
}
YIELD_BEARING_NEG_RISK_CTF_EXCHANGE = {
    CHAIN_ID: "0x8A289d458f5a134bA40015085A8F50Ffb681B41d",
    TESTNET_CHAIN_ID: "0x95D5113bc50eD201e319101bbca3e0E250662fCC",
}

INFO = VenueInfo(
    venue=Venue.PREDICTFUN,
    name="predict.fun",
    rest_url=API_URL,
    ws_url=None,
    chain_id=CHAIN_ID,
    scheme=SchemeKind.MESSAGE_SIGNATURE,
)


def exchange_address(*, testnet: bool = False, neg_risk: bool = False, yield_bearing: bool = False) -> str:
    chain_id = TESTNET_CHAIN_ID if testnet else CHAIN_ID
    if yield_bearing:
        table = YIELD_BEARING_NEG_RISK_CTF_EXCHANGE if neg_risk else YIELD_BEARING_CTF_EXCHANGE
    else:
        table = NEG_RISK_CTF_EXCHANGE if neg_risk else CTF_EXCHANGE
    return table[chain_id]


def domain(*, testnet: bool = False, neg_risk: bool = False, yield_bearing: bool = False) -> TypedDataDomain:
    """Typed-data domain for one of the four exchange contracts."""
    return TypedDataDomain(
        PROTOCOL_NAME,
        PROTOCOL_VERSION,
        TESTNET_CHAIN_ID if testnet else CHAIN_ID,
        exchange_address(testnet=testnet, neg_risk=neg_risk, yield_bearing=yield_bearing),
    )


def order_signer(private_key: str, **domain_kwargs: Any) -> TypedDataOrderSigning:
    return TypedDataOrderSigning(private_key, domain(**domain_kwargs))


def build_signer(
    dispatcher: RequestDispatcher,
    private_key: str,
    api_key: str,
    **kwargs: Any,
) -> MessageSignatureAuth:
    """JWT login: sign ``GET /v1/auth/message`` and post it to ``/v1/auth``."""
    key_header = {"x-api-key": api_key}

    async def fetch_challenge() -> Any:
        response = await dispatcher.dispatch("GET", "/v1/auth/message", headers=key_header)
        return response.body

    async def exchange_signature(address: str, message: str, signature: str) -> Any:
        response = await dispatcher.dispatch(
            "POST",
            "/v1/auth",
            {"signer": address, "message": message, "signature": signature},
            headers=key_header,
        )
        return response.body

    return MessageSignatureAuth(
        private_key,
        fetch_challenge=fetch_challenge,
        exchange_signature=exchange_signature,
        api_key=api_key,
        **kwargs,
    )


def connect(
    config: Optional[ExchangeConfig] = None,
    private_key: Optional[str] = None,
    api_key: Optional[str] = None,
    *,
    testnet: bool = False,
    environ: Optional[Mapping[str, str]] = None,
    http: Optional[HTTPClient] = None,
    **kwargs: Any,
) -> RequestDispatcher:
    """Dispatcher with JWT login wired in; credentials fall back to the environment."""
    dispatcher = build_dispatcher(
        INFO, config, http=http, rest_url=TESTNET_API_URL if testnet else API_URL, **kwargs
    )
    if private_key is None or api_key is None:
        env = validate_env(Venue.PREDICTFUN, environ)
        private_key = private_key or env["PREDICTFUN_PRIVATE_KEY"]
        api_key = api_key or env["PREDICTFUN_API_KEY"]
    dispatcher.signer = build_signer(dispatcher, private_key, api_key)
    return dispatcher
