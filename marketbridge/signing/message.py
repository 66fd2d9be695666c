"""EIP-191 message-signature authentication (challenge/response bearer token)."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from datetime import datetime, timedelta, timezone
from typing import Any

from eth_account import Account
from eth_account.messages import encode_defunct

from ..core.enums import Capability, SchemeKind
from ..core.exceptions import AuthError, DrmError
from ..models.credential import Credential, SignedPayload
from .base import SigningScheme, normalize_private_key

ChallengeFetcher = Callable[[], Awaitable[Any]]
SignatureExchanger = Callable[[str, str, str], Awaitable[Mapping[str, Any]]]
HeaderBuilder = Callable[[str], dict[str, str]]

DEFAULT_TOKEN_TTL = 3600.0


def _lookup(data: Any, *keys: str) -> Any:
    """Find the first key present at the top level or under ``data``."""
    if not isinstance(data, Mapping):
        return None
    for scope in (data, data.get("data")):
        if isinstance(scope, Mapping):
            for key in keys:
                if scope.get(key) is not None:
                    return scope[key]
    return None


class MessageSignatureAuth(SigningScheme):
    """Sign a venue challenge and trade the signature for a bearer token.

    The two network legs are injected: ``fetch_challenge`` returns the
    challenge (a string, or a response mapping carrying ``message``) and
    ``exchange_signature(address, message, signature)`` returns the token
    response. Expiry comes from ``expires_at``/``expires_in`` in that
    response, falling back to ``token_ttl`` from the issuance time.
    ``token_headers`` maps the token to request headers; the default is
    ``Authorization: Bearer <token>``.
    """

    kind = SchemeKind.MESSAGE_SIGNATURE
    capabilities = frozenset({Capability.SIGN_MESSAGE})

    def __init__(
        self,
        private_key: str,
        *,
        fetch_challenge: ChallengeFetcher,
        exchange_signature: SignatureExchanger,
        api_key: str | None = None,
        token_ttl: float = DEFAULT_TOKEN_TTL,
        token_headers: HeaderBuilder | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self._account = Account.from_key(normalize_private_key(private_key))
        self._fetch_challenge = fetch_challenge
        self._exchange_signature = exchange_signature
        self._api_key = api_key
        self._token_ttl = token_ttl
        self._token_headers = token_headers

    @property
    def address(self) -> str:
        return self._account.address

    def sign_message(self, message: str) -> str:
        """EIP-191 personal-sign ``message``; returns a 0x-prefixed signature."""
        signed = self._account.sign_message(encode_defunct(text=message))
        return "0x" + bytes(signed.signature).hex()

    def sign(self, payload: Mapping[str, Any]) -> SignedPayload:
        message = payload.get("message")
        if not isinstance(message, str):
            raise AuthError("message signing needs a 'message' string")
        return SignedPayload(
            scheme=self.kind,
            payload=dict(payload),
            signature=self.sign_message(message),
            signer=self.address,
        )

    async def _issue(self) -> Credential:
        try:
            challenge = await self._fetch_challenge()
            message = challenge if isinstance(challenge, str) else _lookup(challenge, "message")
            if not isinstance(message, str) or not message.strip():
                raise AuthError("Malformed challenge response: no signing message")

            signature = self.sign_message(message)
            response = await self._exchange_signature(self.address, message, signature)
        except DrmError as e:
            if isinstance(e, AuthError) or e.transient:
                raise
            raise AuthError(f"Signature exchange rejected: {e}", status_code=e.status_code) from e

        token = _lookup(response, "token", "access_token", "jwt")
        if not isinstance(token, str) or not token:
            raise AuthError("Malformed token response: no bearer token")

        issued_at = self._now()
        if self._token_headers is not None:
            headers = dict(self._token_headers(token))
        else:
            headers = {"Authorization": f"Bearer {token}"}
        if self._api_key:
            headers["x-api-key"] = self._api_key
        return Credential(
            scheme=self.kind,
            headers=headers,
            token=token,
            issued_at=issued_at,
            expires_at=self._expiry(response, issued_at),
        )

    def _expiry(self, response: Mapping[str, Any], issued_at: datetime) -> datetime:
        expires_at = _lookup(response, "expires_at", "expiresAt")
        if isinstance(expires_at, (int, float)):
            # Epoch seconds or milliseconds
            seconds = expires_at / 1000 if expires_at > 1e12 else expires_at
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        if isinstance(expires_at, str):
            try:
                parsed = datetime.fromisoformat(expires_at.replace("Z", "+00:00"))
            except ValueError as e:
                raise AuthError(f"Malformed token expiry: {expires_at!r}") from e
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
        expires_in = _lookup(response, "expires_in", "expiresIn")
        ttl = float(expires_in) if isinstance(expires_in, (int, float)) else self._token_ttl
        return issued_at + timedelta(seconds=ttl)
