"""Canonical exception hierarchy.

Every failure that leaves the core is one of these; venue adapters translate
their own error payloads into this hierarchy before anything reaches a caller.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .enums import Venue


class DrmError(Exception):
    """Base exception for all library errors."""

    def __init__(
        self,
        message: str,
        *,
        venue: Venue | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.venue = venue
        self.status_code = status_code

    @property
    def transient(self) -> bool:
        """Whether the dispatcher may retry the failed request."""
        return False


class AuthError(DrmError):
    """Credential rejected, expired, or could not be produced."""

    pass


class ClockSkewError(AuthError):
    """Local clock drifted beyond the signing tolerance."""

    def __init__(self, message: str, skew_seconds: float, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.skew_seconds = skew_seconds


class RateLimitExceeded(DrmError):
    """Rate limit hit, either locally or reported by the venue (HTTP 429)."""

    def __init__(self, message: str, retry_after: float | None = None, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.retry_after = retry_after

    @property
    def transient(self) -> bool:
        # Local bucket exhaustion already waited its full budget.
        return self.status_code == 429


class NetworkError(DrmError):
    """Transport-level failure (connection error or 5xx)."""

    @property
    def transient(self) -> bool:
        return True


class Timeout(DrmError):
    """Request exceeded its deadline."""

    @property
    def transient(self) -> bool:
        return True


class ValidationError(DrmError):
    """Malformed request parameters."""

    pass


class InvalidOrder(ValidationError):
    """Order parameters rejected before or by the venue."""

    pass


class ExchangeRejected(DrmError):
    """Venue-side business rejection."""

    pass


class MarketNotFound(ExchangeRejected):
    """Market or outcome does not exist on the venue."""

    pass


class InsufficientFunds(ExchangeRejected):
    """Balance or allowance too low for the order."""

    pass


class SerializationError(DrmError):
    """Response did not match the expected schema."""

    pass


class StreamDisconnected(DrmError):
    """Stream connection lost; terminal only once reconnects are exhausted."""

    def __init__(self, message: str, attempts: int = 0, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.attempts = attempts

    @property
    def transient(self) -> bool:
        return True


class NotSupported(DrmError):
    """Operation is not available for this venue or signing scheme."""

    pass


class ConfigError(DrmError):
    """Missing or malformed configuration (env vars, keys, addresses)."""

    pass
