"""Price helpers for tick rounding and spread math.

Prices are Decimal probabilities; tick rounding is half-up so 0.55 on a
0.1 tick becomes 0.6.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

from ..core.exceptions import ValidationError

Number = Union[Decimal, int, str, float]

_BPS = Decimal("10000")


def _dec(value: Number) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _tick(tick_size: Number) -> Decimal:
    tick = _dec(tick_size)
    if tick <= 0:
        raise ValidationError(f"tick_size must be positive, got {tick_size}")
    return tick


def round_to_tick_size(price: Number, tick_size: Number) -> Decimal:
    """Round ``price`` to the nearest multiple of ``tick_size``.

    Raises:
        ValidationError: if ``tick_size`` is not positive
    """
    tick = _tick(tick_size)
    steps = (_dec(price) / tick).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return steps * tick


def is_valid_price(price: Number, tick_size: Number) -> bool:
    """True if ``price`` sits on the tick grid."""
    tick = _tick(tick_size)
    price = _dec(price)
    return abs(price - round_to_tick_size(price, tick)) < tick / 10


def clamp_price(
    price: Number,
    min_price: Number = Decimal("0"),
    max_price: Number = Decimal("1"),
    tick_size: Number = Decimal("0.01"),
) -> Decimal:
    """Clamp into ``[min_price, max_price]`` and round to the tick."""
    clamped = min(max(_dec(price), _dec(min_price)), _dec(max_price))
    return round_to_tick_size(clamped, tick_size)


def mid_price(best_bid: Optional[Number], best_ask: Optional[Number]) -> Optional[Decimal]:
    if best_bid is None or best_ask is None:
        return None
    return (_dec(best_bid) + _dec(best_ask)) / 2


def spread_bps(best_bid: Optional[Number], best_ask: Optional[Number]) -> Optional[Decimal]:
    """Spread relative to the mid price, in basis points."""
    if best_bid is None or best_ask is None:
        return None
    bid, ask = _dec(best_bid), _dec(best_ask)
    if bid <= 0:
        return None
    return (ask - bid) / ((bid + ask) / 2) * _BPS
