"""
Feed package.

Upstream exchange connection and the change-detection price cache:
- UpstreamFeedClient: supervised websocket client for the trade feed
- InstrumentPriceCache: latest price per market + broadcast eligibility
- InstrumentTable: market index <-> symbol mapping
"""

from pairstream.feed.markets import Instrument, InstrumentTable
from pairstream.feed.price_cache import InstrumentPriceCache, PriceSample
from pairstream.feed.upstream import (
    FeedState,
    TradeObservation,
    UpstreamFeedClient,
    parse_feed_message,
)

__all__ = [
    "Instrument",
    "InstrumentTable",
    "InstrumentPriceCache",
    "PriceSample",
    "FeedState",
    "TradeObservation",
    "UpstreamFeedClient",
    "parse_feed_message",
]
