"""
Position Store Data Models

Mirrors the tables the trading API writes:
1. users - one row per wallet
2. positions - paired long/short positions owned by a user

The relay reads OPEN positions only and converts rows to pnl.Position.
"""

from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid

from .db import Base


class User(Base):
    """A trader, identified by wallet address."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    wallet_address = Column(String, nullable=False, unique=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    positions = relationship("PositionRecord", back_populates="user")


class PositionRecord(Base):
    """
    A paired position: long one perp market, short another.
    entry_ratio = entry_long_price / entry_short_price.
    """
    __tablename__ = "positions"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Legs
    long_market_index = Column(Integer, nullable=False, index=True)
    long_market_symbol = Column(String, nullable=True)
    short_market_index = Column(Integer, nullable=False, index=True)
    short_market_symbol = Column(String, nullable=True)

    # Entry
    entry_long_price = Column(Float, nullable=False)
    entry_short_price = Column(Float, nullable=False)
    entry_ratio = Column(Float, nullable=False)

    # Sizing
    capital_usdc = Column(Float, nullable=False)
    leverage = Column(Float, nullable=False, default=1.0)
    long_weight = Column(Float, nullable=False, default=0.5)
    short_weight = Column(Float, nullable=False, default=0.5)

    status = Column(String, nullable=False, default="OPEN")  # OPEN, PARTIAL, CLOSED
    realized_pnl = Column(Float, nullable=True)

    opened_at = Column(DateTime, default=datetime.utcnow)
    closed_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="positions")
