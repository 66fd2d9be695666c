"""Shared venue plumbing: static venue facts and dispatcher wiring."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from ..core.config import VENUE_ENV, ExchangeConfig
from ..core.enums import SchemeKind, Venue
from ..io.http import HTTPClient
from ..runtime.dispatcher import ErrorMapper, RequestDispatcher
from ..signing.base import SigningScheme


@dataclass(frozen=True)
class VenueInfo:
    """What a venue is and how to reach it."""

    venue: Venue
    name: str
    rest_url: str
    ws_url: Optional[str]
    chain_id: Optional[int]
    scheme: SchemeKind
    has_stream: bool = False

    @property
    def required_env(self) -> tuple[str, ...]:
        return VENUE_ENV[self.venue]

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.venue.value,
            "name": self.name,
            "rest_url": self.rest_url,
            "ws_url": self.ws_url,
            "chain_id": self.chain_id,
            "scheme": self.scheme.value,
            "has_stream": self.has_stream,
            "required_env": list(self.required_env),
        }


def build_dispatcher(
    info: VenueInfo,
    config: Optional[ExchangeConfig] = None,
    signer: Optional[SigningScheme] = None,
    *,
    http: Optional[HTTPClient] = None,
    rest_url: Optional[str] = None,
    error_mapper: Optional[ErrorMapper] = None,
    **kwargs: Any,
) -> RequestDispatcher:
    """RequestDispatcher for ``info`` backed by an HTTPClient on its REST root."""
    config = config or ExchangeConfig()
    http = http or HTTPClient(base_url=rest_url or info.rest_url, timeout=config.timeout)
    return RequestDispatcher.from_config(
        info.venue, http, config, signer, error_mapper=error_mapper, **kwargs
    )


def to_decimal(value: Any) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def from_timestamp(value: Any) -> Optional[datetime]:
    """Parse epoch seconds/milliseconds (number or numeric string) or ISO text."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    seconds = value / 1000 if value > 1e12 else value
    return datetime.fromtimestamp(seconds, tz=timezone.utc)
