"""
Unrealized P&L for paired positions.

A pair position profits when the long/short price ratio moves up from its
entry ratio:

    current_ratio  = long_price / short_price
    ratio_change   = (current_ratio - entry_ratio) / entry_ratio
    unrealized_pnl = capital * leverage * ratio_change
    pnl_percent    = unrealized_pnl / capital * 100

Money values (pnl, percent, leg prices) are rounded to 2 decimals and the
ratio to 6, halves away from zero on the exact binary value. Anything
non-numeric, non-finite or non-positive in the inputs yields None instead of
an exception.
"""

from decimal import Context, Decimal, ROUND_HALF_UP
from typing import Any, Optional
import math

from pairstream.pnl.models import Position, PnLUpdate

MONEY_DECIMALS = 2
RATIO_DECIMALS = 6

# Wide enough for any finite float at either precision
_DECIMAL_CONTEXT = Context(prec=400)


def _positive(value: Any) -> Optional[float]:
    """Return value as a float if it is a finite number > 0, else None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number <= 0:
        return None
    return number


def round_half_up(value: float, places: int) -> float:
    """Round to `places` decimals, halves away from zero (round() would go to even)."""
    exponent = Decimal(1).scaleb(-places)
    return float(Decimal(value).quantize(exponent, rounding=ROUND_HALF_UP, context=_DECIMAL_CONTEXT))


def compute_pnl(
    position: Position,
    current_long_price: Optional[float],
    current_short_price: Optional[float],
) -> Optional[PnLUpdate]:
    """
    Compute unrealized P&L for a position at the given leg prices.

    Args:
        position: Position with entry ratio, capital and leverage
        current_long_price: Latest price of the long leg (None if unknown)
        current_short_price: Latest price of the short leg (None if unknown)

    Returns:
        PnLUpdate, or None when a price is unavailable or the position data
        is malformed
    """
    long_price = _positive(current_long_price)
    short_price = _positive(current_short_price)
    if long_price is None or short_price is None:
        return None

    entry_ratio = _positive(getattr(position, "entry_ratio", None))
    capital = _positive(getattr(position, "capital", None))
    leverage = _positive(getattr(position, "leverage", None))
    if entry_ratio is None or capital is None or leverage is None:
        return None

    current_ratio = long_price / short_price
    ratio_change = (current_ratio - entry_ratio) / entry_ratio
    unrealized_pnl = capital * leverage * ratio_change
    unrealized_pnl_percent = unrealized_pnl / capital * 100

    if not (math.isfinite(current_ratio) and math.isfinite(unrealized_pnl)):
        return None

    return PnLUpdate(
        position_id=position.id,
        unrealized_pnl=round_half_up(unrealized_pnl, MONEY_DECIMALS),
        unrealized_pnl_percent=round_half_up(unrealized_pnl_percent, MONEY_DECIMALS),
        current_ratio=round_half_up(current_ratio, RATIO_DECIMALS),
        current_long_price=round_half_up(long_price, MONEY_DECIMALS),
        current_short_price=round_half_up(short_price, MONEY_DECIMALS),
    )
