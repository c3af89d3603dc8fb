"""
Broadcast hub: turns an accepted price change into per-subscriber P&L deltas.

For a price change on market I, one pass:
1. Snapshots the registry (connections added/removed during the pass do not
   affect which subscribers are visited).
2. For each subscriber, fetches its OPEN positions with a leg in I.
3. Computes P&L from the cached leg prices and queues one position_update per
   position to the owner's connection, if that connection is still the
   registered, open one at send time.

Subscribers are processed sequentially. Queuing never waits on a transport, so
a slow subscriber does not hold up the pass. An error for one subscriber is
logged and counted; the pass continues with the next.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional
import logging

from pairstream.api import metrics
from pairstream.api.schemas import PositionUpdateFrame, frame
from pairstream.feed.price_cache import InstrumentPriceCache
from pairstream.hub.registry import SubscriberRegistry
from pairstream.pnl.engine import compute_pnl
from pairstream.pnl.models import PositionStatus
from pairstream.positions.store import IdentityResolver, PositionStore, owner_identity

logger = logging.getLogger(__name__)


@dataclass
class BroadcastResult:
    """Outcome of one broadcast pass. `sent` counts frames queued for delivery."""
    market_index: int
    subscribers: int = 0
    sent: int = 0
    skipped: int = 0
    errors: int = 0
    finished_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "market_index": self.market_index,
            "subscribers": self.subscribers,
            "sent": self.sent,
            "skipped": self.skipped,
            "errors": self.errors,
            "finished_at": self.finished_at.isoformat(),
        }


class BroadcastHub:
    """Fans P&L updates out to the subscribers owning affected positions."""

    def __init__(
        self,
        cache: InstrumentPriceCache,
        registry: SubscriberRegistry,
        store: PositionStore,
        resolve_identity: IdentityResolver = owner_identity,
    ):
        self.cache = cache
        self.registry = registry
        self.store = store
        self.resolve_identity = resolve_identity
        self.last_result: Optional[BroadcastResult] = None

    async def on_price_change(self, market_index: int) -> BroadcastResult:
        """Run one broadcast pass for a changed market."""
        result = BroadcastResult(market_index=market_index)
        snapshot = self.registry.snapshot()
        result.subscribers = len(snapshot)

        for identity, _connection in snapshot:
            try:
                await self._update_subscriber(identity, market_index, result)
            except Exception as e:
                result.errors += 1
                metrics.broadcast_errors_total.inc()
                logger.error(
                    f"Broadcast to {identity[:8]} failed: {e}",
                    extra={"event": "broadcast_subscriber_error", "market_index": market_index},
                )

        result.finished_at = datetime.utcnow()
        self.last_result = result
        if result.sent or result.errors:
            logger.debug(
                f"Broadcast pass for market {market_index}: "
                f"sent={result.sent} skipped={result.skipped} errors={result.errors}"
            )
        return result

    async def _update_subscriber(self, identity: str, market_index: int, result: BroadcastResult) -> None:
        positions = await self.store.find_open_positions(identity, market_index)

        for position in positions:
            if position.status is not PositionStatus.OPEN or not position.references(market_index):
                result.skipped += 1
                continue

            owner = self.resolve_identity(position)
            if owner != identity:
                logger.debug(f"Position {position.id} resolves to another owner, skipping")
                result.skipped += 1
                continue

            # Re-read after the lookup await: the subscriber may have left
            connection = self.registry.get(owner)
            if connection is None or not connection.is_open:
                result.skipped += 1
                continue

            update = compute_pnl(
                position,
                self.cache.get_price(position.long_market_index),
                self.cache.get_price(position.short_market_index),
            )
            if update is None:
                result.skipped += 1
                continue

            if connection.send(frame(PositionUpdateFrame.from_update(update))):
                result.sent += 1
            else:
                result.skipped += 1
