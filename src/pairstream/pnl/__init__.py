"""
P&L package.

- Position / PositionStatus: read-only position snapshot from the store
- PnLUpdate: unrealized P&L at current prices
- compute_pnl: pure P&L calculation
"""

from pairstream.pnl.models import Position, PositionStatus, PnLUpdate
from pairstream.pnl.engine import compute_pnl

__all__ = ["Position", "PositionStatus", "PnLUpdate", "compute_pnl"]
