"""Unit tests for message-signature auth, API key auth and credential caching."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct

from marketbridge.core import AuthError, ConfigError, ExchangeRejected, NetworkError, NotSupported
from marketbridge.core.enums import Capability
from marketbridge.signing import ApiKeyMultiSig, MessageSignatureAuth, normalize_private_key, validate_address

PRIVATE_KEY = "4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeNow:
    """Mutable clock for credential expiry."""

    def __init__(self, start: datetime = T0) -> None:
        self.value = start

    def __call__(self) -> datetime:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += timedelta(seconds=seconds)


def make_auth(exchange_result=None, **kwargs):
    fetch_challenge = AsyncMock(return_value="Sign in to venue: nonce 123")
    exchange_signature = AsyncMock(return_value=exchange_result or {"token": "jwt-1", "expires_in": 600})
    auth = MessageSignatureAuth(
        PRIVATE_KEY,
        fetch_challenge=fetch_challenge,
        exchange_signature=exchange_signature,
        **kwargs,
    )
    return auth, fetch_challenge, exchange_signature


class TestKeyHelpers:
    def test_normalize_private_key(self):
        assert normalize_private_key(PRIVATE_KEY) == "0x" + PRIVATE_KEY
        assert normalize_private_key("0x" + PRIVATE_KEY) == "0x" + PRIVATE_KEY

    @pytest.mark.parametrize("key", ["", "0x1234", "zz" * 32])
    def test_bad_private_key(self, key):
        with pytest.raises(ConfigError):
            normalize_private_key(key)

    def test_validate_address(self):
        address = "0x" + "ab" * 20
        assert validate_address(f" {address} ") == address
        with pytest.raises(ConfigError):
            validate_address("ab" * 20)


class TestMessageSignatureAuth:
    """Test the challenge/response login."""

    @pytest.mark.asyncio
    async def test_login_signs_challenge(self):
        auth, fetch_challenge, exchange_signature = make_auth(now=FakeNow())
        credential = await auth.authenticate()

        fetch_challenge.assert_awaited_once()
        address, message, signature = exchange_signature.await_args.args
        assert address == auth.address
        assert message == "Sign in to venue: nonce 123"
        recovered = Account.recover_message(encode_defunct(text=message), signature=signature)
        assert recovered == auth.address

        assert credential.headers == {"Authorization": "Bearer jwt-1"}
        assert credential.token == "jwt-1"
        assert credential.expires_at == T0 + timedelta(seconds=600)

    @pytest.mark.asyncio
    async def test_challenge_mapping_and_api_key(self):
        auth, fetch_challenge, _ = make_auth(api_key="k-1")
        fetch_challenge.return_value = {"data": {"message": "hello"}}
        credential = await auth.authenticate()
        assert credential.headers["x-api-key"] == "k-1"

    @pytest.mark.asyncio
    async def test_custom_token_headers(self):
        auth, _, _ = make_auth(token_headers=lambda token: {"Cookie": f"session={token}"})
        credential = await auth.authenticate()
        assert credential.headers == {"Cookie": "session=jwt-1"}

    @pytest.mark.asyncio
    async def test_expiry_from_response(self):
        auth, _, _ = make_auth({"data": {"token": "t", "expiresAt": "2024-01-01T02:00:00Z"}}, now=FakeNow())
        credential = await auth.authenticate()
        assert credential.expires_at == T0 + timedelta(hours=2)

    @pytest.mark.asyncio
    async def test_missing_token(self):
        auth, _, _ = make_auth({"ok": True})
        with pytest.raises(AuthError):
            await auth.authenticate()

    @pytest.mark.asyncio
    async def test_empty_challenge(self):
        auth, fetch_challenge, _ = make_auth()
        fetch_challenge.return_value = {"message": ""}
        with pytest.raises(AuthError):
            await auth.authenticate()

    @pytest.mark.asyncio
    async def test_rejection_becomes_auth_error(self):
        auth, _, exchange_signature = make_auth()
        exchange_signature.side_effect = ExchangeRejected("bad signature", status_code=400)
        with pytest.raises(AuthError) as exc_info:
            await auth.authenticate()
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_transient_failure_propagates(self):
        auth, _, exchange_signature = make_auth()
        exchange_signature.side_effect = NetworkError("down")
        with pytest.raises(NetworkError):
            await auth.authenticate()

    def test_sign_payload(self):
        auth, _, _ = make_auth()
        signed = auth.sign({"message": "hi"})
        assert signed.signer == auth.address
        assert Account.recover_message(encode_defunct(text="hi"), signature=signed.signature) == auth.address
        with pytest.raises(AuthError):
            auth.sign({})


class TestCredentialCaching:
    """Test lazy re-authentication in SigningScheme."""

    @pytest.mark.asyncio
    async def test_cached_until_refresh_margin(self):
        now = FakeNow()
        auth, fetch_challenge, _ = make_auth(now=now, refresh_margin=30)

        first = await auth.ensure_credential()
        now.advance(500)
        assert await auth.ensure_credential() is first
        assert fetch_challenge.await_count == 1

        now.advance(80)  # 20s left, inside the margin
        await auth.ensure_credential()
        assert fetch_challenge.await_count == 2

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_login(self):
        auth, fetch_challenge, _ = make_auth()
        credentials = await asyncio.gather(*(auth.ensure_credential() for _ in range(5)))
        assert fetch_challenge.await_count == 1
        assert all(c is credentials[0] for c in credentials)

    @pytest.mark.asyncio
    async def test_invalidate_forces_login(self):
        auth, fetch_challenge, _ = make_auth()
        await auth.ensure_credential()
        auth.invalidate()
        assert auth.credential is None
        await auth.ensure_credential()
        assert fetch_challenge.await_count == 2

    @pytest.mark.asyncio
    async def test_already_expired_credential_rejected(self):
        auth, _, _ = make_auth({"token": "t", "expires_in": -5}, now=FakeNow())
        with pytest.raises(AuthError):
            await auth.authenticate()

    @pytest.mark.asyncio
    async def test_expired_credential_headers(self):
        now = FakeNow()
        auth, _, _ = make_auth(now=now)
        credential = await auth.authenticate()
        now.advance(601)
        with pytest.raises(AuthError):
            auth.request_headers(credential, "GET", "/orders")


class TestApiKeyMultiSig:
    @pytest.mark.asyncio
    async def test_headers(self):
        auth = ApiKeyMultiSig(" key ", "0x" + "cd" * 20)
        credential = await auth.ensure_credential()
        assert credential.headers == {"Authorization": "Bearer key", "X-API-Key": "key"}
        assert auth.address_params() == {"walletAddress": "0x" + "cd" * 20}
        assert auth.supports(Capability.STATIC_KEY)

    def test_validation(self):
        with pytest.raises(ConfigError):
            ApiKeyMultiSig("", "0x" + "cd" * 20)
        with pytest.raises(ConfigError):
            ApiKeyMultiSig("key", "not-an-address")

    def test_cannot_sign(self):
        with pytest.raises(NotSupported):
            ApiKeyMultiSig("key", "0x" + "cd" * 20).sign({"a": 1})
