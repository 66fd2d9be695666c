"""Signing scheme contract and key helpers.

Architecture:
    Every venue authenticates with exactly one of a closed set of schemes
    (message signature, typed-data order signing, RSA request signing,
    static API key + multi-sig address). Each scheme implements ``_issue``
    to produce a fresh Credential; the base class owns caching, lazy
    re-authentication and invalidation after a venue rejection.

Design Decisions:
    - Closed variant set: the scheme is chosen once when an adapter is built
    - Credential cache is per instance, never module-level state
    - An asyncio.Lock makes concurrent callers share one re-authentication
    - ``request_headers`` lets schemes that sign every request (RSA) derive
      per-request headers from a long-lived key reference credential

See Also:
    - RequestDispatcher: calls ensure_credential/request_headers/invalidate
"""

from __future__ import annotations

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from typing import Any, ClassVar

from ..core.enums import Capability, SchemeKind
from ..core.exceptions import AuthError, ConfigError, NotSupported
from ..models.credential import Credential, SignedPayload

logger = logging.getLogger(__name__)

_PRIVATE_KEY_RE = re.compile(r"^(0x)?[0-9a-fA-F]{64}$")
_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def normalize_private_key(key: str) -> str:
    """Validate a hex private key and return it with a ``0x`` prefix.

    Raises:
        ConfigError: if the key is not 64 hex characters
    """
    key = (key or "").strip()
    if not _PRIVATE_KEY_RE.match(key):
        raise ConfigError("Private key must be 64 hex characters (optional 0x prefix)")
    return key if key.startswith("0x") else f"0x{key}"


def validate_address(address: str) -> str:
    """Validate an EVM address (``0x`` + 40 hex characters)."""
    address = (address or "").strip()
    if not _ADDRESS_RE.match(address):
        raise ConfigError(f"Invalid address: {address!r}")
    return address


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SigningScheme(ABC):
    """Base class for venue authentication schemes."""

    kind: ClassVar[SchemeKind]
    capabilities: ClassVar[frozenset[Capability]] = frozenset()

    def __init__(
        self,
        *,
        refresh_margin: float = 30.0,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self._refresh_margin = refresh_margin
        self._now = now
        self._credential: Credential | None = None
        self._lock = asyncio.Lock()

    @property
    def credential(self) -> Credential | None:
        """Currently cached credential, if any."""
        return self._credential

    @property
    def is_authenticated(self) -> bool:
        cred = self._credential
        return cred is not None and not cred.is_expired(self._now())

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    async def authenticate(self) -> Credential:
        """Produce and cache a fresh credential."""
        credential = await self._issue()
        if credential.is_expired(self._now()):
            raise AuthError(f"{self.kind.value} issued an already expired credential")
        self._credential = credential
        logger.debug("credential_issued", extra={"scheme": self.kind.value, "expires_at": credential.expires_at})
        return credential

    async def ensure_credential(self) -> Credential:
        """Return a credential that is valid beyond the refresh margin.

        Re-authenticates lazily when nothing is cached or the cached
        credential is expired or about to expire.
        """
        async with self._lock:
            cred = self._credential
            if cred is None or cred.is_expired(self._now(), margin=self._refresh_margin):
                cred = await self.authenticate()
            return cred

    def invalidate(self) -> None:
        """Drop the cached credential (after a venue auth rejection)."""
        self._credential = None

    def request_headers(
        self,
        credential: Credential,
        method: str,
        path: str,
    ) -> dict[str, str]:
        """Headers to attach to one outbound request."""
        if credential.is_expired(self._now()):
            raise AuthError(f"{self.kind.value} credential expired")
        return dict(credential.headers)

    def sign(self, payload: Mapping[str, Any]) -> SignedPayload:
        """Sign a payload; only schemes with a signing capability support this."""
        raise NotSupported(f"{self.kind.value} does not sign payloads")

    @abstractmethod
    async def _issue(self) -> Credential:
        """Produce a new credential."""
        raise NotImplementedError
