"""
PriceRelayServer - owns every moving part of the relay.

One instance is built per application: it constructs the instrument table,
price cache, subscriber registry, position store, broadcast hub and upstream
feed client, and wires feed -> cache -> hub. Nothing here is a module-level
singleton, so tests can build as many isolated servers as they need.
"""

from typing import Any, Callable, Dict, Optional
import json
import logging
import os
import time

from pairstream import __version__
from pairstream.api import metrics
from pairstream.api.schemas import ErrorFrame, PongFrame, SubscribedFrame, frame
from pairstream.config import Settings, settings as default_settings
from pairstream.feed.markets import InstrumentTable
from pairstream.feed.price_cache import InstrumentPriceCache
from pairstream.feed.upstream import UpstreamFeedClient
from pairstream.hub.broadcast import BroadcastHub, BroadcastResult
from pairstream.hub.registry import SubscriberConnection, SubscriberRegistry
from pairstream.positions.db import build_session_factory, init_db
from pairstream.positions.store import IdentityResolver, PositionStore, SqlPositionStore, owner_identity

logger = logging.getLogger(__name__)

MISSING_IDENTITY_MESSAGE = "Wallet address required"
CLOSE_POLICY_VIOLATION = 1008
CLOSE_GOING_AWAY = 1001


class PriceRelayServer:
    """
    Top-level relay object.

    Usage:
        relay = PriceRelayServer(settings, store=InMemoryPositionStore())
        await relay.start()
        connection = await relay.connect_subscriber(websocket, "ABC123")
        ...
        await relay.shutdown()
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        *,
        store: Optional[PositionStore] = None,
        resolve_identity: IdentityResolver = owner_identity,
        feed_connect: Optional[Callable[[str], Any]] = None,
    ):
        self.settings = config or default_settings
        self.server_id = self.settings.server_id or f"ws-{os.getpid()}"
        self.instruments = InstrumentTable.from_mapping(self.settings.tracked_markets)
        self.cache = InstrumentPriceCache(
            threshold=self.settings.price_change_threshold,
            throttle_ms=self.settings.broadcast_throttle_ms,
        )
        self.registry = SubscriberRegistry()

        self._engine = None
        if store is None:
            self._engine, session_factory = build_session_factory(self.settings.database_url)
            store = SqlPositionStore(session_factory)
        self.store = store

        self.hub = BroadcastHub(self.cache, self.registry, self.store, resolve_identity)
        self.feed = UpstreamFeedClient(
            self.settings.feed_url,
            self.instruments,
            on_price=self.handle_price,
            reconnect_delay=self.settings.reconnect_delay_seconds,
            heartbeat_interval=self.settings.heartbeat_interval_seconds,
            idle_timeout=self.settings.feed_idle_timeout_seconds,
            connect=feed_connect,
        )

        self.started_at = time.time()
        self.price_updates = 0
        self.broadcasts = 0
        self._running = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Prepare the position store and start the upstream feed."""
        if self._running:
            return
        self._running = True
        self.started_at = time.time()
        metrics.app_info.info({"version": __version__, "server_id": self.server_id})

        if self._engine is not None:
            try:
                init_db(self._engine)
            except Exception as e:
                logger.warning(f"Position store schema check failed: {e}")

        if self.settings.feed_enabled:
            self.feed.start()
        else:
            logger.info("Upstream feed disabled by configuration")

        logger.info(
            f"Relay {self.server_id} ready, tracking {len(self.instruments)} markets",
            extra={"event": "server_ready"},
        )

    async def shutdown(self) -> None:
        """Stop the feed and close every subscriber connection."""
        logger.info("Relay shutting down", extra={"event": "server_shutting_down"})
        await self.feed.stop()

        for identity, connection in self.registry.snapshot():
            await connection.close(code=CLOSE_GOING_AWAY, reason="Server shutting down")
            self.registry.remove(identity, connection)

        if self._engine is not None:
            self._engine.dispose()
        self._running = False
        logger.info("Relay stopped", extra={"event": "server_stopped"})

    # ------------------------------------------------------------------
    # Feed -> cache -> hub
    # ------------------------------------------------------------------

    async def handle_price(
        self,
        market_index: int,
        price: float,
        now: Optional[float] = None,
    ) -> Optional[BroadcastResult]:
        """
        Feed one price observation into the cache and, if it is accepted,
        run a broadcast pass.

        Observations for markets outside the instrument table are counted
        under the "untracked" label and dropped before they reach the cache.

        Returns:
            The BroadcastResult, or None when the observation was not broadcast
        """
        self.price_updates += 1
        instrument = self.instruments.get(market_index)
        if instrument is None:
            metrics.price_updates_total.labels(symbol="untracked").inc()
            logger.debug(f"Dropping price for untracked market {market_index}")
            return None

        symbol = instrument.symbol
        metrics.price_updates_total.labels(symbol=symbol).inc()

        if not self.cache.observe(market_index, price, now):
            return None

        self.broadcasts += 1
        metrics.price_broadcasts_total.labels(symbol=symbol).inc()
        logger.info(
            f"Price update {symbol} {price}",
            extra={"event": "price_update", "market_index": market_index},
        )
        return await self.hub.on_price_change(market_index)

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------

    async def connect_subscriber(self, transport: Any, identity: Optional[str]) -> Optional[SubscriberConnection]:
        """
        Admit an accepted transport.

        Without an identity the client gets one error frame and the transport
        is closed; None is returned. Otherwise the connection is opened,
        registered (closing any connection it replaces) and confirmed with a
        subscribed frame.
        """
        identity = (identity or "").strip()
        connection = SubscriberConnection(
            transport, identity or None, max_pending=self.settings.subscriber_queue_size
        )

        if not identity:
            metrics.subscriber_connections_total.labels(outcome="rejected").inc()
            await connection.reject(
                frame(ErrorFrame(message=MISSING_IDENTITY_MESSAGE)),
                code=CLOSE_POLICY_VIOLATION,
                reason="Missing wallet parameter",
            )
            logger.info("Rejected subscriber without wallet", extra={"event": "client_rejected"})
            return None

        connection.mark_open()
        replaced = self.registry.add(identity, connection)
        if replaced is not None:
            await replaced.close(code=1000, reason="Replaced by a newer connection")

        metrics.subscriber_connections_total.labels(outcome="accepted").inc()
        connection.send(frame(SubscribedFrame()))
        logger.info(
            f"Client connected: {connection.short_identity}",
            extra={"event": "client_connected", "total": len(self.registry)},
        )
        return connection

    def disconnect_subscriber(self, connection: SubscriberConnection) -> None:
        """Mark a connection closed and drop it from the registry if still current."""
        connection.mark_closed()
        if connection.identity and self.registry.remove(connection.identity, connection):
            logger.info(
                f"Client disconnected: {connection.short_identity}",
                extra={"event": "client_disconnected", "total": len(self.registry)},
            )

    async def handle_client_frame(self, connection: SubscriberConnection, raw: Optional[str]) -> None:
        """Answer pings; ignore unknown or unparseable frames."""
        try:
            message = json.loads(raw) if raw else None
        except ValueError:
            logger.debug(f"Ignoring unparseable frame from {connection.short_identity}")
            return

        if isinstance(message, dict) and message.get("type") == "ping":
            connection.send(frame(PongFrame()))

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def health(self) -> Dict[str, Any]:
        last = self.hub.last_result
        return {
            "status": "healthy",
            "server_id": self.server_id,
            "version": __version__,
            "connections": len(self.registry),
            "uptime_seconds": round(time.time() - self.started_at, 3),
            "feed": self.feed.state.value,
            "feed_reconnect_attempts": self.feed.reconnect_attempts,
            "cache": self.cache.stats(),
            "last_broadcast": last.to_dict() if last else None,
        }
