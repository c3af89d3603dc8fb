"""
Prometheus Observability Module

Provides Prometheus metrics for the upstream feed, change detection and
subscriber fan-out.
"""

from prometheus_client import Counter, Gauge, Info, CONTENT_TYPE_LATEST, generate_latest
import logging

logger = logging.getLogger(__name__)


# =========================================================================
# Upstream Feed Metrics
# =========================================================================

feed_messages_total = Counter(
    "pairstream_feed_messages_total",
    "Upstream messages received",
    ["kind"]  # trade, heartbeat, ack, ignored, malformed
)

feed_reconnects_total = Counter(
    "pairstream_feed_reconnects_total",
    "Upstream reconnect attempts"
)

feed_connected = Gauge(
    "pairstream_feed_connected",
    "1 while the upstream feed is connected"
)


# =========================================================================
# Price Metrics
# =========================================================================

price_updates_total = Counter(
    "pairstream_price_updates_total",
    "Price observations fed into the cache",
    ["symbol"]
)

price_broadcasts_total = Counter(
    "pairstream_price_broadcasts_total",
    "Price observations accepted for broadcast",
    ["symbol"]
)


# =========================================================================
# Subscriber Metrics
# =========================================================================

subscribers_active = Gauge(
    "pairstream_subscribers_active",
    "Currently registered subscriber connections"
)

subscriber_connections_total = Counter(
    "pairstream_subscriber_connections_total",
    "Subscriber connection attempts",
    ["outcome"]  # accepted, rejected
)

frames_sent_total = Counter(
    "pairstream_frames_sent_total",
    "Frames sent to subscribers",
    ["type"]
)

send_failures_total = Counter(
    "pairstream_send_failures_total",
    "Frames that could not be delivered to a subscriber"
)

broadcast_errors_total = Counter(
    "pairstream_broadcast_errors_total",
    "Per-subscriber failures during a broadcast pass"
)

messages_dropped_total = Counter(
    "pairstream_messages_dropped_total",
    "Frames dropped because a subscriber's outbound queue was full"
)


# =========================================================================
# System Metrics
# =========================================================================

app_info = Info(
    "pairstream_app",
    "pairstream application information"
)


def render_latest() -> tuple:
    """Return (body, content_type) for the /metrics endpoint."""
    return generate_latest(), CONTENT_TYPE_LATEST
