"""Static API key + multi-sig address authentication."""

from __future__ import annotations

from typing import Any

from ..core.enums import Capability, SchemeKind
from ..core.exceptions import ConfigError
from ..models.credential import Credential
from .base import SigningScheme, validate_address


class ApiKeyMultiSig(SigningScheme):
    """API key headers plus the account's on-chain multi-sig address.

    No per-request signing; the address is validated once at construction
    and passed to adapters as a request parameter.
    """

    kind = SchemeKind.API_KEY_MULTISIG
    capabilities = frozenset({Capability.STATIC_KEY})

    def __init__(self, api_key: str, multi_sig_address: str, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        if not api_key or not api_key.strip():
            raise ConfigError("API key is required")
        self._api_key = api_key.strip()
        self.multi_sig_address = validate_address(multi_sig_address)

    async def _issue(self) -> Credential:
        return Credential(
            scheme=self.kind,
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "X-API-Key": self._api_key,
            },
            token=self._api_key,
        )

    def address_params(self) -> dict[str, str]:
        """Query/body parameter identifying the multi-sig wallet."""
        return {"walletAddress": self.multi_sig_address}
