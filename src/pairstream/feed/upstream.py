"""
Upstream exchange feed client.

Keeps one websocket connection to the exchange trade feed open:

- On connect, sends one subscribe request per tracked instrument.
- Parses inbound trade messages into (market_index, price) observations and
  hands them to the price handler; everything else is ignored.
- Sends a {"type": "ping"} heartbeat on a fixed interval while connected.
- On close, transport error or read inactivity, waits a fixed delay and
  reconnects, re-sending all subscriptions.

A single supervisor task (run) owns the connection and is the only writer of
`state`, so there is never more than one connection attempt in flight.
"""

from contextlib import suppress
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional
import asyncio
import json
import logging
import math

import websockets

from pairstream.api import metrics
from pairstream.errors import FeedMessageError
from pairstream.feed.markets import InstrumentTable

logger = logging.getLogger(__name__)

PriceHandler = Callable[[int, float], Awaitable[Any]]


class FeedState(Enum):
    """Connection state of the upstream feed."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True)
class TradeObservation:
    """A price observed on an upstream trade message."""
    market_index: int
    price: float


def _coerce_price(value: Any) -> float:
    if isinstance(value, bool):
        raise FeedMessageError(f"Invalid price {value!r}")
    try:
        price = float(value)
    except (TypeError, ValueError):
        raise FeedMessageError(f"Invalid price {value!r}")
    if not math.isfinite(price) or price <= 0:
        raise FeedMessageError(f"Invalid price {value!r}")
    return price


def parse_feed_message(raw: Any) -> Optional[TradeObservation]:
    """
    Parse one upstream frame.

    Accepts `{"channel": "trades", "data": {"marketIndex", "price"}}` as well as
    per-market channels (`trades_perp_0`) whose data is a nested JSON string
    carrying `oraclePrice`.

    Returns:
        TradeObservation for trade messages, None for anything else
        (heartbeats, subscribe acks, other channels)

    Raises:
        FeedMessageError: the frame is not valid JSON or a trade message is
        missing its market index or price
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise FeedMessageError(f"Undecodable frame: {e}")

    try:
        message = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise FeedMessageError(f"Invalid JSON: {e}", raw=str(raw)[:200])

    if not isinstance(message, dict):
        return None

    channel = message.get("channel")
    if not isinstance(channel, str) or not (channel == "trades" or channel.startswith("trades_")):
        return None

    data = message.get("data")
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except ValueError as e:
            raise FeedMessageError(f"Invalid nested trade payload: {e}", raw=data[:200])
    if not isinstance(data, dict):
        raise FeedMessageError(f"Trade message on {channel} without data object")

    market_index = data.get("marketIndex")
    raw_price = data.get("price")
    if raw_price is None or raw_price == "":
        raw_price = data.get("oraclePrice")

    if market_index is None or isinstance(market_index, bool) or raw_price is None:
        raise FeedMessageError(f"Trade message on {channel} missing marketIndex or price")

    try:
        index_value = float(market_index)
    except (TypeError, ValueError):
        raise FeedMessageError(f"Invalid marketIndex {market_index!r}")
    # Also rejects nan and inf
    if not index_value.is_integer():
        raise FeedMessageError(f"Non-integral marketIndex {market_index!r}")
    market_index = int(index_value)

    return TradeObservation(market_index=market_index, price=_coerce_price(raw_price))


class UpstreamFeedClient:
    """
    Supervised websocket client for the exchange trade feed.

    Usage:
        client = UpstreamFeedClient(url, instruments, on_price=relay.handle_price)
        client.start()
        ...
        await client.stop()
    """

    def __init__(
        self,
        url: str,
        instruments: InstrumentTable,
        on_price: PriceHandler,
        *,
        reconnect_delay: float = 5.0,
        heartbeat_interval: float = 30.0,
        idle_timeout: Optional[float] = 90.0,
        connect: Optional[Callable[[str], Any]] = None,
    ):
        self.url = url
        self.instruments = instruments
        self._on_price = on_price
        self.reconnect_delay = reconnect_delay
        self.heartbeat_interval = heartbeat_interval
        self.idle_timeout = idle_timeout if idle_timeout and idle_timeout > 0 else None
        self._connect = connect or websockets.connect

        self.state = FeedState.DISCONNECTED
        self.reconnect_attempts = 0
        self.messages_received = 0
        self.trades_received = 0
        self._task: Optional[asyncio.Task] = None
        self._stopping: Optional[asyncio.Event] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> asyncio.Task:
        """Start the supervisor task on the running loop (idempotent)."""
        if self._task is None or self._task.done():
            self._stopping = asyncio.Event()
            self._task = asyncio.create_task(self.run(), name="upstream-feed")
        return self._task

    async def stop(self) -> None:
        """Stop reconnecting and close the current connection."""
        if self._stopping is not None:
            self._stopping.set()
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        self._set_state(FeedState.DISCONNECTED)
        logger.info("Upstream feed stopped", extra={"event": "feed_stopped"})

    @property
    def connected(self) -> bool:
        return self.state is FeedState.CONNECTED

    async def run(self) -> None:
        """Connect, read until the connection ends, wait, repeat."""
        if self._stopping is None:
            self._stopping = asyncio.Event()

        while not self._stopping.is_set():
            try:
                await self._session()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    f"Upstream feed error: {e}",
                    extra={"event": "feed_error", "error": str(e)},
                )
            finally:
                self._set_state(FeedState.DISCONNECTED)

            if self._stopping.is_set():
                break

            self.reconnect_attempts += 1
            metrics.feed_reconnects_total.inc()
            logger.warning(
                f"Upstream feed disconnected, reconnecting in {self.reconnect_delay}s",
                extra={"event": "feed_disconnected", "attempt": self.reconnect_attempts},
            )
            with suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._stopping.wait(), timeout=self.reconnect_delay)

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    def _set_state(self, state: FeedState) -> None:
        self.state = state
        metrics.feed_connected.set(1 if state is FeedState.CONNECTED else 0)

    async def _session(self) -> None:
        self._set_state(FeedState.CONNECTING)
        logger.info(f"Connecting to upstream feed {self.url}", extra={"event": "feed_connecting"})

        async with self._connect(self.url) as ws:
            self._set_state(FeedState.CONNECTED)
            logger.info("Upstream feed connected", extra={"event": "feed_connected"})
            await self._subscribe(ws)

            heartbeat = asyncio.create_task(self._heartbeat(ws))
            try:
                await self._read_loop(ws)
            finally:
                heartbeat.cancel()
                with suppress(asyncio.CancelledError):
                    await heartbeat

    async def _subscribe(self, ws) -> None:
        for instrument in self.instruments:
            await ws.send(json.dumps({
                "type": "subscribe",
                "marketType": "perp",
                "channel": "trades",
                "market": instrument.channel_market,
            }))
            logger.info(
                f"Subscribed to {instrument.channel_market}",
                extra={"event": "market_subscribe_sent", "market_index": instrument.index},
            )

    async def _heartbeat(self, ws) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                await ws.send(json.dumps({"type": "ping"}))
            except websockets.ConnectionClosed:
                return
            logger.debug("Upstream heartbeat sent")

    async def _read_loop(self, ws) -> None:
        while True:
            try:
                if self.idle_timeout:
                    raw = await asyncio.wait_for(ws.recv(), timeout=self.idle_timeout)
                else:
                    raw = await ws.recv()
            except asyncio.TimeoutError:
                logger.warning(
                    f"No upstream message for {self.idle_timeout}s, forcing reconnect",
                    extra={"event": "feed_idle_timeout"},
                )
                return
            except websockets.ConnectionClosed as e:
                logger.warning(f"Upstream feed closed: {e}", extra={"event": "feed_closed"})
                return

            await self.handle_message(raw)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def handle_message(self, raw: Any) -> Optional[TradeObservation]:
        """Parse one frame and forward trade observations. Never raises."""
        self.messages_received += 1
        try:
            observation = parse_feed_message(raw)
        except FeedMessageError as e:
            metrics.feed_messages_total.labels(kind="malformed").inc()
            logger.warning(
                f"Discarding malformed upstream message: {e}",
                extra={"event": "feed_message_parse_error"},
            )
            return None

        if observation is None:
            metrics.feed_messages_total.labels(kind="ignored").inc()
            return None

        metrics.feed_messages_total.labels(kind="trade").inc()
        self.trades_received += 1
        try:
            await self._on_price(observation.market_index, observation.price)
        except Exception:
            logger.exception(
                f"Price handler failed for market {observation.market_index}",
                extra={"event": "price_handler_error"},
            )
        return observation
