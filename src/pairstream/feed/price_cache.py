"""
Instrument price cache with change detection.

Holds the latest observed price per market index and decides whether an
observation is worth broadcasting:

- First observation of a market is always broadcast.
- Moves smaller than the threshold (0.1% by default) relative to the last
  broadcast price are not broadcast.
- A market is broadcast at most once per throttle window (500ms by default).

The stored price is overwritten on every observation, so get_price() is never
more than one feed tick stale even while broadcasts are throttled.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Any
import logging
import time

logger = logging.getLogger(__name__)


@dataclass
class PriceSample:
    """Latest observation for one instrument plus broadcast bookkeeping."""
    market_index: int
    price: float
    observed_at: float
    reference_price: float      # price at the last broadcast
    last_broadcast_at: float


class InstrumentPriceCache:
    """
    In-memory last-price cache keyed by market index.

    Times are seconds on a monotonic clock; callers may pass their own `now`
    (tests do) or let the cache read time.monotonic().
    """

    STALE_AFTER_SECONDS = 60.0

    def __init__(self, threshold: float = 0.001, throttle_ms: float = 500.0):
        if threshold < 0:
            raise ValueError("threshold must be non-negative")
        if throttle_ms < 0:
            raise ValueError("throttle_ms must be non-negative")
        self.threshold = threshold
        self.throttle_seconds = throttle_ms / 1000.0
        self._samples: Dict[int, PriceSample] = {}

    def observe(self, market_index: int, price: float, now: Optional[float] = None) -> bool:
        """
        Store a price observation and return True if it should be broadcast.

        Args:
            market_index: Instrument the price belongs to
            price: Observed price (must be positive)
            now: Observation time in seconds, defaults to time.monotonic()

        Returns:
            True when the observation is broadcast-eligible
        """
        if not price > 0:
            raise ValueError(f"Invalid price for market {market_index}: {price!r}")
        if now is None:
            now = time.monotonic()

        sample = self._samples.get(market_index)
        if sample is None:
            self._samples[market_index] = PriceSample(
                market_index=market_index,
                price=price,
                observed_at=now,
                reference_price=price,
                last_broadcast_at=now,
            )
            return True

        sample.price = price
        sample.observed_at = now

        change = abs(price - sample.reference_price) / sample.reference_price
        if change < self.threshold:
            return False

        if now - sample.last_broadcast_at < self.throttle_seconds:
            logger.debug(f"Market {market_index} throttled ({change:.4%} move)")
            return False

        sample.reference_price = price
        sample.last_broadcast_at = now
        return True

    def get_price(self, market_index: int) -> Optional[float]:
        """Latest stored price, or None if the market has never been observed."""
        sample = self._samples.get(market_index)
        return sample.price if sample else None

    def all_prices(self) -> Dict[int, float]:
        """Copy of all stored prices."""
        return {idx: s.price for idx, s in self._samples.items()}

    def clear(self, market_index: int) -> None:
        self._samples.pop(market_index, None)

    def clear_all(self) -> None:
        self._samples.clear()
        logger.info("Price cache cleared")

    def stats(self, now: Optional[float] = None) -> Dict[str, Any]:
        """Cache statistics for the health endpoint."""
        if now is None:
            now = time.monotonic()
        stale = sum(
            1 for s in self._samples.values()
            if now - s.observed_at > self.STALE_AFTER_SECONDS
        )
        return {
            "total_markets": len(self._samples),
            "active_markets": len(self._samples) - stale,
            "stale_markets": stale,
            "threshold_percent": self.threshold * 100,
            "throttle_ms": self.throttle_seconds * 1000,
        }

    def __len__(self) -> int:
        return len(self._samples)
