"""
Position store collaborators used by the broadcast hub.

The hub only needs one query: the OPEN positions of one subscriber that
reference a given market. Two implementations:

- InMemoryPositionStore: dict-backed, for tests and local runs
- SqlPositionStore: reads the users/positions tables through SQLAlchemy,
  running the synchronous query in a worker thread so the event loop never
  blocks on the database
"""

from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional
import asyncio
import logging

from sqlalchemy.orm import sessionmaker

from pairstream.errors import PositionLookupError
from pairstream.pnl.models import Position, PositionStatus
from pairstream.positions.repository import PositionRepository

logger = logging.getLogger(__name__)

IdentityResolver = Callable[[Position], str]


def owner_identity(position: Position) -> str:
    """Default identity resolution: positions are owned by wallet address."""
    return position.owner


class PositionStore(ABC):
    """Read-only access to open positions, keyed by owning identity."""

    @abstractmethod
    async def find_open_positions(
        self,
        identity: str,
        market_index: Optional[int] = None,
    ) -> List[Position]:
        """
        OPEN positions owned by `identity`, restricted to those with a leg in
        `market_index` when given.

        Raises:
            PositionLookupError: the backing store failed
        """


class InMemoryPositionStore(PositionStore):
    """Dict-backed store."""

    def __init__(self, positions: Optional[List[Position]] = None):
        self._positions: Dict[str, Position] = {}
        for position in positions or []:
            self.put(position)

    def put(self, position: Position) -> None:
        self._positions[position.id] = position

    def discard(self, position_id: str) -> None:
        self._positions.pop(position_id, None)

    async def find_open_positions(
        self,
        identity: str,
        market_index: Optional[int] = None,
    ) -> List[Position]:
        return [
            p for p in self._positions.values()
            if p.owner == identity
            and p.status is PositionStatus.OPEN
            and (market_index is None or p.references(market_index))
        ]


class SqlPositionStore(PositionStore):
    """SQLAlchemy-backed store over the trading API's tables."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def _query(self, identity: str, market_index: Optional[int]) -> List[Position]:
        db = self.session_factory()
        try:
            records = PositionRepository.list_open_positions(db, identity, market_index)
            return [PositionRepository.to_position(r) for r in records]
        finally:
            db.close()

    async def find_open_positions(
        self,
        identity: str,
        market_index: Optional[int] = None,
    ) -> List[Position]:
        try:
            return await asyncio.to_thread(self._query, identity, market_index)
        except Exception as e:
            raise PositionLookupError(identity, e) from e
