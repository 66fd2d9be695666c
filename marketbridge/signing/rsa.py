"""RSA-PKCS1v15 request signing (Kalshi-style access keys)."""

from __future__ import annotations

import base64
import time
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from ..core.enums import Capability, SchemeKind
from ..core.exceptions import AuthError, ClockSkewError, ConfigError
from ..models.credential import Credential, SignedPayload
from .base import SigningScheme

DEFAULT_SKEW_TOLERANCE = 30.0

HEADER_KEY = "KALSHI-ACCESS-KEY"
HEADER_SIGNATURE = "KALSHI-ACCESS-SIGNATURE"
HEADER_TIMESTAMP = "KALSHI-ACCESS-TIMESTAMP"


def load_private_key(pem: str | bytes | None = None, path: str | Path | None = None) -> rsa.RSAPrivateKey:
    """Load an unencrypted RSA private key from PEM text or a PEM file."""
    if pem is None and path is None:
        raise ConfigError("RSA signing needs a PEM string or key file path")
    try:
        data = Path(path).read_bytes() if pem is None else (pem.encode() if isinstance(pem, str) else pem)
    except OSError as e:
        raise ConfigError(f"Cannot read RSA key file {path}: {e}") from e
    try:
        key = serialization.load_pem_private_key(data, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise ConfigError(f"Invalid RSA private key: {e}") from e
    if not isinstance(key, rsa.RSAPrivateKey):
        raise ConfigError("Private key is not an RSA key")
    return key


class RsaSignatureAuth(SigningScheme):
    """Signs ``timestamp_ms + METHOD + path`` for every request.

    The credential is a key reference (the access key id) with no expiry;
    per-request signing happens in ``request_headers``. Requests whose
    timestamp differs from the venue clock by more than ``skew_tolerance``
    seconds are rejected locally, since the venue would reject them anyway.
    """

    kind = SchemeKind.RSA_SIGNATURE
    capabilities = frozenset({Capability.SIGN_MESSAGE})

    def __init__(
        self,
        api_key_id: str,
        *,
        private_key_pem: str | bytes | None = None,
        private_key_path: str | Path | None = None,
        private_key: rsa.RSAPrivateKey | None = None,
        skew_tolerance: float = DEFAULT_SKEW_TOLERANCE,
        path_prefix: str = "",
        clock: Callable[[], float] = time.time,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        if not api_key_id:
            raise ConfigError("RSA signing needs an API key id")
        self.api_key_id = api_key_id
        self._key = private_key or load_private_key(private_key_pem, private_key_path)
        self.skew_tolerance = skew_tolerance
        self.path_prefix = path_prefix
        self._clock = clock
        # Venue clock minus local clock, learned from a server timestamp.
        self.clock_offset = 0.0

    def sync_clock(self, server_time: float) -> float:
        """Record the venue clock (epoch seconds); returns the offset."""
        self.clock_offset = server_time - self._clock()
        return self.clock_offset

    def local_time_ms(self) -> int:
        return int(self._clock() * 1000)

    async def _issue(self) -> Credential:
        return Credential(scheme=self.kind, headers={HEADER_KEY: self.api_key_id})

    def signing_string(self, timestamp_ms: int, method: str, path: str) -> str:
        """Literal concatenation; the path is used byte-for-byte."""
        return f"{timestamp_ms}{method.upper()}{path}"

    def sign_string(self, message: str) -> str:
        signature = self._key.sign(message.encode("utf-8"), padding.PKCS1v15(), hashes.SHA256())
        return base64.b64encode(signature).decode("ascii")

    def check_skew(self, timestamp_ms: int) -> None:
        skew = timestamp_ms / 1000 - (self._clock() + self.clock_offset)
        if abs(skew) > self.skew_tolerance:
            raise ClockSkewError(
                f"Request timestamp is {skew:+.1f}s from venue time (tolerance {self.skew_tolerance:.0f}s)",
                skew_seconds=skew,
            )

    def sign_request(self, method: str, path: str, timestamp_ms: int | None = None) -> dict[str, str]:
        """Signed headers for one request.

        Raises:
            ClockSkewError: if ``timestamp_ms`` is outside the tolerance
        """
        ts = self.local_time_ms() if timestamp_ms is None else timestamp_ms
        self.check_skew(ts)
        return {
            HEADER_KEY: self.api_key_id,
            HEADER_SIGNATURE: self.sign_string(self.signing_string(ts, method, path)),
            HEADER_TIMESTAMP: str(ts),
        }

    def request_headers(self, credential: Credential, method: str, path: str) -> dict[str, str]:
        if credential.headers.get(HEADER_KEY) != self.api_key_id:
            raise AuthError("RSA credential does not match the configured key")
        # Venue signs the path from the API root, without the query string.
        return self.sign_request(method, self.path_prefix + path.split("?", 1)[0])

    def sign(self, payload: Mapping[str, Any]) -> SignedPayload:
        """Sign ``{"method", "path"[, "timestamp"]}``."""
        try:
            method, path = payload["method"], payload["path"]
        except KeyError as e:
            raise AuthError(f"RSA signing payload is missing {e}") from e
        headers = self.sign_request(method, path, payload.get("timestamp"))
        return SignedPayload(
            scheme=self.kind,
            payload=dict(payload),
            signature=headers[HEADER_SIGNATURE],
            signer=self.api_key_id,
            headers=headers,
        )
