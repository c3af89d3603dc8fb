"""
Tests for the upstream exchange feed client.

The websocket is replaced by the feed_connector fixture; each connect() hands out
the next scripted socket so reconnect behavior can be observed.
"""

import asyncio
import json
import pytest

from websockets.exceptions import ConnectionClosedOK

from pairstream.errors import FeedMessageError
from pairstream.feed.markets import InstrumentTable
from pairstream.feed.upstream import (
    FeedState,
    TradeObservation,
    UpstreamFeedClient,
    parse_feed_message,
)


def trade(market_index, price):
    return json.dumps({"channel": "trades", "data": {"marketIndex": market_index, "price": price}})


class PriceRecorder:
    def __init__(self, fail_first=False):
        self.prices = []
        self.fail_first = fail_first

    async def __call__(self, market_index, price):
        if self.fail_first:
            self.fail_first = False
            raise RuntimeError("handler blew up")
        self.prices.append((market_index, price))


def closed():
    return ConnectionClosedOK(None, None)


async def run_until(client, predicate, timeout=2.0):
    """Start the client, wait for predicate(), then stop it."""
    client.start()
    try:
        async def wait():
            while not predicate():
                await asyncio.sleep(0.005)
        await asyncio.wait_for(wait(), timeout)
    finally:
        await client.stop()


def make_client(connector, on_price, **kwargs):
    kwargs.setdefault("reconnect_delay", 0.01)
    kwargs.setdefault("heartbeat_interval", 30.0)
    kwargs.setdefault("idle_timeout", 5.0)
    return UpstreamFeedClient(
        "wss://feed.test/ws",
        InstrumentTable.from_mapping({"SOL": 0, "BTC": 1}),
        on_price,
        connect=connector,
        **kwargs,
    )


class TestParseFeedMessage:
    """Upstream frame parsing."""

    def test_trade_message(self):
        assert parse_feed_message(trade(0, 101.25)) == TradeObservation(0, 101.25)

    def test_price_as_string(self):
        assert parse_feed_message(trade(1, "64000.5")) == TradeObservation(1, 64000.5)

    def test_bytes_frame(self):
        assert parse_feed_message(trade(2, 3500.0).encode()) == TradeObservation(2, 3500.0)

    @pytest.mark.parametrize("market_index", [1, 1.0, "1", "1.0"])
    def test_integral_market_index_forms(self, market_index):
        assert parse_feed_message(trade(market_index, 50.0)) == TradeObservation(1, 50.0)

    def test_per_market_channel_with_nested_data(self):
        """Test trades_perp_N frames with a JSON string payload and oraclePrice."""
        raw = json.dumps({
            "channel": "trades_perp_0",
            "data": json.dumps({"marketIndex": 0, "oraclePrice": "99.5"}),
        })
        assert parse_feed_message(raw) == TradeObservation(0, 99.5)

    @pytest.mark.parametrize("raw", [
        json.dumps({"channel": "heartbeat"}),
        json.dumps({"channel": "orderbook", "data": {"marketIndex": 0, "price": 100.0}}),
        json.dumps({"message": "subscribed"}),
        json.dumps([1, 2, 3]),
        json.dumps("pong"),
    ])
    def test_non_trade_messages_ignored(self, raw):
        """Test heartbeats, acks and other channels yield None."""
        assert parse_feed_message(raw) is None

    @pytest.mark.parametrize("raw", [
        "not json",
        json.dumps({"channel": "trades"}),
        json.dumps({"channel": "trades", "data": {"price": 100.0}}),
        json.dumps({"channel": "trades", "data": {"marketIndex": 0}}),
        json.dumps({"channel": "trades", "data": {"marketIndex": 0, "price": -5}}),
        json.dumps({"channel": "trades", "data": {"marketIndex": 0, "price": 0}}),
        json.dumps({"channel": "trades", "data": {"marketIndex": 0, "price": "abc"}}),
        json.dumps({"channel": "trades", "data": {"marketIndex": 0, "price": True}}),
        json.dumps({"channel": "trades", "data": {"marketIndex": "x", "price": 1.0}}),
        json.dumps({"channel": "trades", "data": {"marketIndex": 1.7, "price": 1.0}}),
        json.dumps({"channel": "trades", "data": {"marketIndex": "1.5", "price": 1.0}}),
        json.dumps({"channel": "trades", "data": {"marketIndex": "nan", "price": 1.0}}),
        json.dumps({"channel": "trades", "data": {"marketIndex": "inf", "price": 1.0}}),
        json.dumps({"channel": "trades_perp_0", "data": "{broken"}),
    ])
    def test_malformed_trade_raises(self, raw):
        """Test malformed trade frames raise FeedMessageError."""
        with pytest.raises(FeedMessageError):
            parse_feed_message(raw)


class TestHandleMessage:
    """Message handling never raises and keeps counters."""

    def test_counts_and_forwards(self, feed_connector):
        recorder = PriceRecorder()
        client = make_client(feed_connector(), recorder)

        async def scenario():
            await client.handle_message(trade(0, 100.0))
            await client.handle_message("garbage")
            await client.handle_message(json.dumps({"channel": "heartbeat"}))

        asyncio.run(scenario())
        assert recorder.prices == [(0, 100.0)]
        assert client.messages_received == 3
        assert client.trades_received == 1

    def test_handler_exception_swallowed(self, feed_connector):
        """Test a failing price handler does not propagate."""
        recorder = PriceRecorder(fail_first=True)
        client = make_client(feed_connector(), recorder)

        result = asyncio.run(client.handle_message(trade(0, 100.0)))
        assert result == TradeObservation(0, 100.0)


class TestUpstreamSession:
    """Connection, subscription and reconnect behavior."""

    @pytest.mark.timeout(10)
    def test_subscribes_to_every_instrument(self, feed_connector):
        """Test one subscribe request per tracked instrument on connect."""
        recorder = PriceRecorder()
        connector = feed_connector([trade(0, 100.0)])
        client = make_client(connector, recorder)

        asyncio.run(run_until(client, lambda: recorder.prices))

        subscribes = connector.sockets[0].sent_of_type("subscribe")
        assert sorted(m["market"] for m in subscribes) == ["BTC-PERP", "SOL-PERP"]
        assert all(m["marketType"] == "perp" and m["channel"] == "trades" for m in subscribes)
        assert connector.urls == ["wss://feed.test/ws"]

    @pytest.mark.timeout(10)
    def test_connected_state(self, feed_connector):
        """Test state is CONNECTED while the socket is open and DISCONNECTED after stop."""
        states = []

        async def on_price(market_index, price):
            states.append(client.state)

        client = make_client(feed_connector([trade(0, 100.0)]), on_price)

        asyncio.run(run_until(client, lambda: states))
        assert states[0] is FeedState.CONNECTED
        assert client.state is FeedState.DISCONNECTED
        assert not client.connected

    @pytest.mark.timeout(10)
    def test_malformed_message_keeps_connection(self, feed_connector):
        """Test a bad frame is dropped and later trades still arrive."""
        recorder = PriceRecorder()
        connector = feed_connector(["{not json", trade(1, 50.0)])
        client = make_client(connector, recorder)

        asyncio.run(run_until(client, lambda: recorder.prices))

        assert recorder.prices == [(1, 50.0)]
        assert len(connector.sockets) == 1
        assert client.reconnect_attempts == 0

    @pytest.mark.timeout(10)
    def test_handler_exception_keeps_connection(self, feed_connector):
        """Test the read loop survives a failing price handler."""
        recorder = PriceRecorder(fail_first=True)
        connector = feed_connector([trade(0, 100.0), trade(0, 101.0)])
        client = make_client(connector, recorder)

        asyncio.run(run_until(client, lambda: recorder.prices))

        assert recorder.prices == [(0, 101.0)]
        assert len(connector.sockets) == 1

    @pytest.mark.timeout(10)
    def test_reconnect_resubscribes(self, feed_connector):
        """Test a closed feed reconnects and sends subscriptions again."""
        recorder = PriceRecorder()
        connector = feed_connector([closed()], [trade(0, 100.0)])
        client = make_client(connector, recorder)

        asyncio.run(run_until(client, lambda: recorder.prices))

        assert len(connector.sockets) == 2
        assert client.reconnect_attempts == 1
        for socket in connector.sockets:
            assert len(socket.sent_of_type("subscribe")) == 2

    @pytest.mark.timeout(10)
    def test_connect_failure_retried(self, feed_connector):
        """Test a failing connect attempt is followed by another after the delay."""
        recorder = PriceRecorder()
        connector = feed_connector(OSError("connection refused"), [trade(0, 100.0)])
        client = make_client(connector, recorder)

        asyncio.run(run_until(client, lambda: recorder.prices))

        assert len(connector.urls) == 2
        assert client.reconnect_attempts == 1

    @pytest.mark.timeout(10)
    def test_idle_timeout_forces_reconnect(self, feed_connector):
        """Test a silent connection is dropped after the idle timeout."""
        recorder = PriceRecorder()
        connector = feed_connector([], [trade(0, 100.0)])
        client = make_client(connector, recorder, idle_timeout=0.05)

        asyncio.run(run_until(client, lambda: recorder.prices))

        assert len(connector.sockets) == 2
        assert client.reconnect_attempts >= 1

    @pytest.mark.timeout(10)
    def test_heartbeat_ping(self, feed_connector):
        """Test ping frames are sent on the heartbeat interval."""
        connector = feed_connector([])
        client = make_client(connector, PriceRecorder(), heartbeat_interval=0.02)

        asyncio.run(run_until(
            client,
            lambda: connector.sockets and len(connector.sockets[0].sent_of_type("ping")) >= 2,
        ))

        assert connector.sockets[0].sent_of_type("ping")[0] == {"type": "ping"}

    @pytest.mark.timeout(10)
    def test_stop_during_reconnect_wait(self, feed_connector):
        """Test stop() returns promptly while waiting to reconnect."""
        connector = feed_connector([closed()])
        client = make_client(connector, PriceRecorder(), reconnect_delay=30.0)

        async def scenario():
            client.start()
            while client.reconnect_attempts == 0:
                await asyncio.sleep(0.005)
            await asyncio.wait_for(client.stop(), timeout=1.0)

        asyncio.run(scenario())
        assert client.state is FeedState.DISCONNECTED
        assert len(connector.sockets) == 1

    @pytest.mark.timeout(10)
    def test_start_is_idempotent(self, feed_connector):
        """Test a second start() does not open a second connection."""
        connector = feed_connector([])
        client = make_client(connector, PriceRecorder())

        async def scenario():
            first = client.start()
            second = client.start()
            assert first is second
            while not connector.sockets:
                await asyncio.sleep(0.005)
            await client.stop()

        asyncio.run(scenario())
        assert len(connector.sockets) == 1
