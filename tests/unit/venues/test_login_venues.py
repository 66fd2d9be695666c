"""Unit tests for the Opinion, Limitless and predict.fun adapters."""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct

from marketbridge.core import (
    AuthError,
    ConfigError,
    ExchangeRejected,
    SchemeKind,
    SerializationError,
    ValidationError,
    Venue,
)
from marketbridge.io import RawResponse
from marketbridge.models import MarketRef
from marketbridge.signing import ApiKeyMultiSig
from marketbridge.venues import limitless, opinion, predictfun

PRIVATE_KEY = "4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
MULTI_SIG = "0x" + "ab" * 20
REF = MarketRef(market_id="1274", outcome="YES", asset_id="987654321")


def scripted_dispatcher(*responses: RawResponse) -> MagicMock:
    dispatcher = MagicMock()
    dispatcher.dispatch = AsyncMock(side_effect=list(responses))
    return dispatcher


class TestOpinion:
    """Test the errno envelope."""

    def test_errno_zero_is_success(self):
        assert opinion.error_mapper(RawResponse(200, {"errno": 0, "result": {"data": {}}})) is None

    def test_non_zero_errno(self):
        error = opinion.error_mapper(RawResponse(200, {"errno": 10203, "errmsg": "price out of range"}), Venue.OPINION)
        assert isinstance(error, ExchangeRejected)
        assert "price out of range" in str(error)
        assert "10203" in str(error)
        assert error.venue is Venue.OPINION

    def test_http_status_takes_precedence(self):
        error = opinion.error_mapper(RawResponse(400, {"errno": 1, "errmsg": "bad"}))
        assert isinstance(error, ValidationError)

    def test_body_without_errno(self):
        assert opinion.error_mapper(RawResponse(200, ["not", "an", "envelope"])) is None

    def test_unwrap(self):
        assert opinion.unwrap({"errno": 0, "result": {"data": {"id": 1}}}) == {"id": 1}
        assert opinion.unwrap({"errno": 0, "result": {"list": [1, 2]}}) == [1, 2]
        assert opinion.unwrap({"errno": 0, "result": {}}) == []
        with pytest.raises(SerializationError):
            opinion.unwrap({"errno": 0})

    def test_parse_orderbook(self):
        body = {
            "errno": 0,
            "result": {
                "data": {
                    "bids": [{"price": "0.45", "size": "100"}, {"price": "0", "size": "5"}],
                    "asks": [{"price": "0.48", "size": "60"}],
                }
            },
        }
        book = opinion.parse_orderbook(body, REF)
        assert book.market_id == "1274"
        assert len(book.bids) == 1
        assert book.best_bid == Decimal("0.45")
        assert book.best_ask == Decimal("0.48")

    @pytest.mark.asyncio
    async def test_fetch_orderbook(self):
        body = {"errno": 0, "result": {"data": {"bids": [], "asks": [{"price": "0.5", "size": "1"}]}}}
        dispatcher = MagicMock()
        dispatcher.fetch = AsyncMock(side_effect=lambda method, path, parse, **kw: parse(body))

        book = await opinion.fetch_orderbook(dispatcher, REF)

        assert book.best_ask == Decimal("0.5")
        assert dispatcher.fetch.await_args.kwargs["params"] == {"token_id": "987654321"}

    def test_signer_from_env(self):
        signer = opinion.signer_from_env(
            {"OPINION_API_KEY": "k", "OPINION_PRIVATE_KEY": PRIVATE_KEY, "OPINION_MULTI_SIG_ADDR": MULTI_SIG}
        )
        assert isinstance(signer, ApiKeyMultiSig)

    def test_signer_from_env_missing(self):
        with pytest.raises(ConfigError) as exc_info:
            opinion.signer_from_env({"OPINION_API_KEY": "k"})
        assert "OPINION_MULTI_SIG_ADDR" in str(exc_info.value)
        assert exc_info.value.venue is Venue.OPINION


class TestLimitless:
    """Test the cookie session login."""

    def test_session_token(self):
        headers = {"Set-Cookie": "limitless_session=tok123; Path=/; HttpOnly; Secure"}
        assert limitless._session_token(headers) == "tok123"
        assert limitless._session_token({"set-cookie": "other=1"}) is None
        assert limitless._session_token({}) is None

    def test_session_headers(self):
        assert limitless.session_headers("abc") == {"Cookie": "limitless_session=abc"}

    def test_domain(self):
        exchange = "0x" + "cd" * 20
        domain = limitless.domain(exchange)
        assert domain.chain_id == 8453
        assert domain.verifying_contract == exchange
        assert limitless.order_signer(PRIVATE_KEY, exchange).domain == domain

    @pytest.mark.asyncio
    async def test_login(self):
        dispatcher = scripted_dispatcher(
            RawResponse(200, "Welcome to Limitless! Nonce: 42\n"),
            RawResponse(
                200,
                {"user": {"id": 7}},
                headers={"Set-Cookie": "limitless_session=tok123; Path=/; HttpOnly"},
            ),
        )
        signer = limitless.build_signer(dispatcher, PRIVATE_KEY)

        credential = await signer.authenticate()

        assert credential.headers == {"Cookie": "limitless_session=tok123"}
        assert credential.token == "tok123"
        assert credential.scheme is SchemeKind.MESSAGE_SIGNATURE

        login = dispatcher.dispatch.await_args_list[1]
        assert login.args[:3] == ("POST", "/auth/login", {"client": "eoa"})
        headers = login.kwargs["headers"]
        message = bytes.fromhex(headers["x-signing-message"][2:]).decode()
        assert message == "Welcome to Limitless! Nonce: 42"
        recovered = Account.recover_message(encode_defunct(text=message), signature=headers["x-signature"])
        assert recovered == headers["x-account"] == signer.address

    @pytest.mark.asyncio
    async def test_login_without_cookie(self):
        dispatcher = scripted_dispatcher(RawResponse(200, "nonce"), RawResponse(200, {"user": {"id": 7}}))
        signer = limitless.build_signer(dispatcher, PRIVATE_KEY)
        with pytest.raises(AuthError):
            await signer.authenticate()

    def test_connect_needs_key(self):
        with pytest.raises(ConfigError):
            limitless.connect(environ={})

    def test_connect_wires_signer(self):
        dispatcher = limitless.connect(private_key=PRIVATE_KEY)
        assert dispatcher.venue is Venue.LIMITLESS
        assert dispatcher.signer is not None


class TestPredictFun:
    def test_exchange_addresses(self):
        assert predictfun.exchange_address() == predictfun.CTF_EXCHANGE[56]
        assert predictfun.exchange_address(testnet=True, neg_risk=True) == predictfun.NEG_RISK_CTF_EXCHANGE[97]
        assert predictfun.exchange_address(yield_bearing=True) == predictfun.YIELD_BEARING_CTF_EXCHANGE[56]
        assert (
            predictfun.exchange_address(neg_risk=True, yield_bearing=True)
            == predictfun.YIELD_BEARING_NEG_RISK_CTF_EXCHANGE[56]
        )

    def test_domains_differ_per_contract(self):
        mainnet = predictfun.domain()
        testnet = predictfun.domain(testnet=True)
        assert mainnet.chain_id == 56
        assert testnet.chain_id == 97
        assert mainnet.separator() != testnet.separator()
        assert mainnet.separator() != predictfun.domain(neg_risk=True).separator()

    @pytest.mark.asyncio
    async def test_jwt_login(self):
        dispatcher = scripted_dispatcher(
            RawResponse(200, {"success": True, "data": {"message": "predict.fun login 99"}}),
            RawResponse(200, {"success": True, "data": {"token": "jwt-abc"}}),
        )
        signer = predictfun.build_signer(dispatcher, PRIVATE_KEY, "api-key")

        credential = await signer.authenticate()

        assert credential.headers == {"Authorization": "Bearer jwt-abc", "x-api-key": "api-key"}
        challenge, login = dispatcher.dispatch.await_args_list
        assert challenge.kwargs["headers"] == {"x-api-key": "api-key"}
        body = login.args[2]
        assert body["message"] == "predict.fun login 99"
        assert body["signer"] == signer.address

    def test_connect_from_env(self):
        dispatcher = predictfun.connect(
            testnet=True, environ={"PREDICTFUN_API_KEY": "k", "PREDICTFUN_PRIVATE_KEY": PRIVATE_KEY}
        )
        assert dispatcher.venue is Venue.PREDICTFUN
        assert dispatcher._transport.base_url == predictfun.TESTNET_API_URL
