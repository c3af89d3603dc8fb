"""
Hub package.

Subscriber connections and P&L fan-out:
- SubscriberConnection / ConnectionState: per-client transport and lifecycle
- SubscriberRegistry: one live connection per wallet identity
- BroadcastHub: per-price-change P&L recomputation and delivery
"""

from pairstream.hub.registry import ConnectionState, SubscriberConnection, SubscriberRegistry
from pairstream.hub.broadcast import BroadcastHub, BroadcastResult

__all__ = [
    "ConnectionState",
    "SubscriberConnection",
    "SubscriberRegistry",
    "BroadcastHub",
    "BroadcastResult",
]
