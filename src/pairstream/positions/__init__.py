"""
Positions Package

Read-side collaborator for the relay:
- PositionStore interface and its in-memory / SQLAlchemy implementations
- SQLAlchemy models and repository for the users/positions tables
"""

from pairstream.positions.store import (
    PositionStore,
    InMemoryPositionStore,
    SqlPositionStore,
    owner_identity,
)
from pairstream.positions.repository import PositionRepository

__all__ = [
    "PositionStore",
    "InMemoryPositionStore",
    "SqlPositionStore",
    "owner_identity",
    "PositionRepository",
]
