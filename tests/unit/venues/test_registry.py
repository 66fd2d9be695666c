"""Unit tests for the venue registry and shared adapter helpers."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from marketbridge.core import ExchangeConfig, SchemeKind, Venue
from marketbridge.venues import VENUES, describe, list_venues
from marketbridge.venues.base import build_dispatcher, from_timestamp, to_decimal


class TestRegistry:
    def test_every_venue_registered(self):
        assert set(VENUES) == set(Venue)
        assert [info.venue for info in list_venues()] == [
            Venue.POLYMARKET,
            Venue.KALSHI,
            Venue.LIMITLESS,
            Venue.OPINION,
            Venue.PREDICTFUN,
        ]

    def test_describe_by_name(self):
        info = describe("predict.fun")
        assert info.venue is Venue.PREDICTFUN
        assert info.chain_id == 56
        assert describe(Venue.KALSHI).scheme is SchemeKind.RSA_SIGNATURE

    def test_describe_unknown(self):
        with pytest.raises(ValueError):
            describe("nasdaq")

    def test_as_dict(self):
        data = describe(Venue.OPINION).as_dict()
        assert data["id"] == "opinion"
        assert data["scheme"] == "api_key_multisig"
        assert data["has_stream"] is False
        assert data["ws_url"] is None
        assert data["required_env"] == ["OPINION_API_KEY", "OPINION_PRIVATE_KEY", "OPINION_MULTI_SIG_ADDR"]

    def test_streaming_venues(self):
        assert {info.venue for info in list_venues() if info.has_stream} == {Venue.POLYMARKET, Venue.KALSHI}


class TestHelpers:
    def test_to_decimal(self):
        assert to_decimal(0.1) == Decimal("0.1")
        assert to_decimal("0.55") == Decimal("0.55")
        value = Decimal("1.5")
        assert to_decimal(value) is value

    @pytest.mark.parametrize(
        "value",
        [1700000000, 1700000000000, "1700000000", "1700000000000", 1700000000.0],
    )
    def test_from_timestamp_epoch(self, value):
        assert from_timestamp(value) == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)

    def test_from_timestamp_iso(self):
        assert from_timestamp("2030-01-01T00:00:00Z") == datetime(2030, 1, 1, tzinfo=timezone.utc)
        assert from_timestamp("2030-01-01T00:00:00") == datetime(2030, 1, 1, tzinfo=timezone.utc)

    def test_from_timestamp_empty(self):
        assert from_timestamp(None) is None
        assert from_timestamp("") is None

    def test_build_dispatcher_uses_config(self):
        config = ExchangeConfig().with_timeout(5).with_rate_limit(3)
        dispatcher = build_dispatcher(describe(Venue.POLYMARKET), config)
        assert dispatcher.venue is Venue.POLYMARKET
        assert dispatcher._transport.timeout.total == 5
        assert dispatcher.limiter is not None
