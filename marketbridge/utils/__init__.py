"""Utility functions."""

from .price import clamp_price, is_valid_price, mid_price, round_to_tick_size, spread_bps

__all__ = ["round_to_tick_size", "is_valid_price", "clamp_price", "mid_price", "spread_bps"]
