"""Pytest configuration and fixtures."""

import asyncio
import json
import pytest

from pairstream.config import Settings
from pairstream.pnl.models import Position, PositionStatus
from pairstream.positions.store import InMemoryPositionStore
from pairstream.server import PriceRelayServer


def pytest_configure(config):
    """Configure pytest plugins and settings."""
    config.addinivalue_line(
        "markers",
        "timeout(seconds): set timeout for test (overrides global timeout)"
    )


class FakeTransport:
    """Stand-in for a Starlette WebSocket: records frames and close calls."""

    def __init__(self, fail_on_send: bool = False):
        self.sent = []
        self.closed = False
        self.close_code = None
        self.close_reason = None
        self.fail_on_send = fail_on_send

    async def send_json(self, data):
        if self.closed:
            raise RuntimeError("send after close")
        if self.fail_on_send:
            raise ConnectionResetError("peer went away")
        self.sent.append(data)

    async def close(self, code=1000, reason=None):
        self.closed = True
        self.close_code = code
        self.close_reason = reason

    def frames(self, frame_type):
        return [f for f in self.sent if f.get("type") == frame_type]


class StalledTransport:
    """Transport whose peer stopped reading: send_json never completes."""

    def __init__(self):
        self.closed = False
        self.close_code = None

    async def send_json(self, data):
        await asyncio.Event().wait()

    async def close(self, code=1000, reason=None):
        self.closed = True
        self.close_code = code


class FakeFeedSocket:
    """Scripted upstream websocket: recv() pops queued frames, exceptions are raised."""

    def __init__(self, inbound=()):
        self.inbound = asyncio.Queue()
        for item in inbound:
            self.inbound.put_nowait(item)
        self.sent = []

    async def recv(self):
        item = await self.inbound.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def send(self, data):
        self.sent.append(json.loads(data))

    def sent_of_type(self, message_type):
        return [m for m in self.sent if m.get("type") == message_type]

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False


class FakeFeedConnector:
    """websockets.connect replacement handing out one scripted socket per call.

    A script is a list of frames, or an exception to raise from connect itself.
    Once the scripts run out every connection stays idle.
    """

    def __init__(self, *scripts):
        self.scripts = list(scripts)
        self.sockets = []
        self.urls = []

    def __call__(self, url):
        self.urls.append(url)
        script = self.scripts.pop(0) if self.scripts else ()
        if isinstance(script, BaseException):
            raise script
        socket = FakeFeedSocket(script)
        self.sockets.append(socket)
        return socket


@pytest.fixture
def test_settings():
    """Settings with the feed disabled and default change detection."""
    return Settings(
        feed_enabled=False,
        tracked_markets={"SOL": 0, "BTC": 1, "ETH": 2},
        server_id="ws-test",
        database_url="sqlite://",
    )


@pytest.fixture
def position_store():
    return InMemoryPositionStore()


@pytest.fixture
def relay(test_settings, position_store):
    """Relay wired to an in-memory position store."""
    return PriceRelayServer(test_settings, store=position_store)


@pytest.fixture
def make_transport():
    return FakeTransport


@pytest.fixture
def stalled_transport():
    return StalledTransport


@pytest.fixture
def feed_connector():
    return FakeFeedConnector


@pytest.fixture
def sol_btc_position():
    """Long SOL / short BTC, entered at ratio 2.0 with $1000 at 5x."""
    return Position(
        id="pos-1",
        owner="ABC123",
        long_market_index=0,
        short_market_index=1,
        entry_ratio=2.0,
        capital=1000.0,
        leverage=5.0,
        status=PositionStatus.OPEN,
        long_symbol="SOL",
        short_symbol="BTC",
    )

