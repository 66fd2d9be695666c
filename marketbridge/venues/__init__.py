"""Venue adapters: URLs, signing variants, stream protocols and parsers.

Each venue module exposes ``INFO`` plus a ``connect`` factory returning a
RequestDispatcher with the venue's signing scheme and error mapping.
"""

from __future__ import annotations

from typing import Union

from ..core.enums import Venue
from . import kalshi, limitless, opinion, polymarket, predictfun
from .base import VenueInfo, build_dispatcher
from .kalshi import KalshiStreamProtocol
from .polymarket import PolymarketStreamProtocol

VENUES: dict[Venue, VenueInfo] = {
    module.INFO.venue: module.INFO
    for module in (polymarket, kalshi, limitless, opinion, predictfun)
}


def describe(venue: Union[Venue, str]) -> VenueInfo:
    """Static facts about a venue.

    Raises:
        ValueError: if ``venue`` names no known venue
    """
    if isinstance(venue, str) and not isinstance(venue, Venue):
        venue = Venue.from_str(venue)
    return VENUES[venue]


def list_venues() -> list[VenueInfo]:
    return list(VENUES.values())


__all__ = [
    "VenueInfo",
    "VENUES",
    "describe",
    "list_venues",
    "build_dispatcher",
    "PolymarketStreamProtocol",
    "KalshiStreamProtocol",
    "polymarket",
    "kalshi",
    "limitless",
    "opinion",
    "predictfun",
]
