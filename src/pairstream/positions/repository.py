"""
Position Repository Layer

Data access for users and paired positions. Writes exist for the trading
API and for seeding tests; the relay itself only calls list_open_positions.
"""

from typing import Optional, List
from datetime import datetime
from sqlalchemy.orm import Session
from sqlalchemy import or_

from pairstream.pnl.models import Position, PositionStatus
from pairstream.positions.models import User, PositionRecord


class PositionRepository:
    """
    Position Store Repository
    Handles all database operations for users and positions.
    """

    # ==================
    # User Operations
    # ==================

    @staticmethod
    def get_or_create_user(db: Session, wallet_address: str) -> User:
        """Return the user for a wallet, creating it on first use."""
        user = db.query(User).filter(User.wallet_address == wallet_address).first()
        if user is None:
            user = User(wallet_address=wallet_address)
            db.add(user)
            db.flush()
        return user

    # ==================
    # Position Operations
    # ==================

    @staticmethod
    def open_position(
        db: Session,
        *,
        wallet_address: str,
        long_market_index: int,
        short_market_index: int,
        entry_long_price: float,
        entry_short_price: float,
        capital_usdc: float,
        leverage: float = 1.0,
        long_weight: float = 0.5,
        short_weight: float = 0.5,
        long_market_symbol: Optional[str] = None,
        short_market_symbol: Optional[str] = None,
    ) -> PositionRecord:
        """Open a new paired position."""
        if long_market_index == short_market_index:
            raise ValueError("Long and short legs must be different markets")
        if entry_long_price <= 0 or entry_short_price <= 0:
            raise ValueError("Entry prices must be positive")
        if capital_usdc <= 0 or leverage <= 0:
            raise ValueError("Capital and leverage must be positive")

        user = PositionRepository.get_or_create_user(db, wallet_address)
        record = PositionRecord(
            user_id=user.id,
            long_market_index=long_market_index,
            long_market_symbol=long_market_symbol,
            short_market_index=short_market_index,
            short_market_symbol=short_market_symbol,
            entry_long_price=entry_long_price,
            entry_short_price=entry_short_price,
            entry_ratio=entry_long_price / entry_short_price,
            capital_usdc=capital_usdc,
            leverage=leverage,
            long_weight=long_weight,
            short_weight=short_weight,
            status=PositionStatus.OPEN.value,
        )
        db.add(record)
        db.flush()
        return record

    @staticmethod
    def close_position(
        db: Session,
        position_id: str,
        *,
        fraction: float = 1.0,
        realized_pnl: Optional[float] = None,
    ) -> PositionRecord:
        """Close a position entirely, or partially when fraction < 1."""
        record = db.get(PositionRecord, position_id)
        if not record:
            raise ValueError(f"Position {position_id} not found")
        if record.status == PositionStatus.CLOSED.value:
            raise ValueError(f"Position {position_id} is already closed")
        if not 0 < fraction <= 1:
            raise ValueError("fraction must be in (0, 1]")

        if realized_pnl is not None:
            record.realized_pnl = (record.realized_pnl or 0.0) + realized_pnl

        if fraction < 1:
            record.status = PositionStatus.PARTIAL.value
            record.capital_usdc = record.capital_usdc * (1 - fraction)
        else:
            record.status = PositionStatus.CLOSED.value
            record.closed_at = datetime.utcnow()

        db.flush()
        return record

    @staticmethod
    def list_open_positions(
        db: Session,
        wallet_address: str,
        market_index: Optional[int] = None,
    ) -> List[PositionRecord]:
        """OPEN positions of a wallet, optionally only those trading a market."""
        query = (
            db.query(PositionRecord)
            .join(User, PositionRecord.user_id == User.id)
            .filter(User.wallet_address == wallet_address)
            .filter(PositionRecord.status == PositionStatus.OPEN.value)
        )
        if market_index is not None:
            query = query.filter(or_(
                PositionRecord.long_market_index == market_index,
                PositionRecord.short_market_index == market_index,
            ))
        return query.order_by(PositionRecord.opened_at.asc()).all()

    @staticmethod
    def to_position(record: PositionRecord) -> Position:
        """Convert a row to the read-only value used by the relay."""
        return Position(
            id=str(record.id),
            owner=record.user.wallet_address,
            long_market_index=record.long_market_index,
            short_market_index=record.short_market_index,
            entry_ratio=record.entry_ratio,
            capital=record.capital_usdc,
            leverage=record.leverage,
            long_weight=record.long_weight,
            short_weight=record.short_weight,
            status=PositionStatus(record.status),
            long_symbol=record.long_market_symbol,
            short_symbol=record.short_market_symbol,
        )
