"""Position and P&L value types shared by the store, the engine and the hub."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class PositionStatus(Enum):
    """Lifecycle status of a paired position."""
    OPEN = "OPEN"
    PARTIAL = "PARTIAL"    # partially closed
    CLOSED = "CLOSED"


@dataclass(frozen=True)
class Position:
    """
    A paired long/short position as read from the position store.

    entry_ratio is entry_long_price / entry_short_price at open; capital is
    USD-denominated margin.
    """
    id: str
    owner: str
    long_market_index: int
    short_market_index: int
    entry_ratio: float
    capital: float
    leverage: float
    long_weight: float = 0.5
    short_weight: float = 0.5
    status: PositionStatus = PositionStatus.OPEN
    long_symbol: Optional[str] = None
    short_symbol: Optional[str] = None

    def references(self, market_index: int) -> bool:
        """True if either leg trades the given market."""
        return market_index in (self.long_market_index, self.short_market_index)


@dataclass(frozen=True)
class PnLUpdate:
    """Unrealized P&L for one position at current prices."""
    position_id: str
    unrealized_pnl: float
    unrealized_pnl_percent: float
    current_ratio: float
    current_long_price: float
    current_short_price: float

    def to_dict(self) -> Dict[str, Any]:
        """Wire representation used in position_update frames."""
        return {
            "id": self.position_id,
            "unrealizedPnl": self.unrealized_pnl,
            "unrealizedPnlPercent": self.unrealized_pnl_percent,
            "currentRatio": self.current_ratio,
            "currentLongPrice": self.current_long_price,
            "currentShortPrice": self.current_short_price,
        }
