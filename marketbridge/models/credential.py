"""Credential and signed payload models."""

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..core.enums import SchemeKind


class Credential(BaseModel):
    """Opaque authorization artifact produced by a signing scheme.

    ``headers`` are attached verbatim to outbound requests. Expiry is tracked
    locally from the issuance response; tokens are never parsed.
    """

    scheme: SchemeKind
    headers: dict[str, str] = Field(default_factory=dict)
    token: Optional[str] = Field(default=None, repr=False)
    issued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    expires_at: Optional[datetime] = None

    @classmethod
    def empty(cls, scheme: SchemeKind) -> "Credential":
        """Credential for public-only access."""
        return cls(scheme=scheme)

    @property
    def is_empty(self) -> bool:
        return not self.headers and self.token is None

    def is_expired(self, now: Optional[datetime] = None, margin: float = 0.0) -> bool:
        """True if the credential expires within ``margin`` seconds of ``now``."""
        if self.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        return now + timedelta(seconds=margin) >= self.expires_at

    model_config = ConfigDict(frozen=True)


class SignedPayload(BaseModel):
    """Payload with the signature a venue requires to accept it."""

    scheme: SchemeKind
    payload: dict[str, Any]
    signature: str = Field(..., min_length=1)
    signer: Optional[str] = None
    headers: dict[str, str] = Field(default_factory=dict)

    def as_body(self) -> dict[str, Any]:
        """Payload with the signature appended, ready to submit."""
        return {**self.payload, "signature": self.signature}

    model_config = ConfigDict(frozen=True)
