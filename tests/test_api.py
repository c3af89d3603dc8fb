"""Tests for the FastAPI application: websocket endpoint, /health and /metrics."""
import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from pairstream.api.main import create_app

SOL, BTC = 0, 1


@pytest.fixture
def client(relay):
    """Test client with the relay lifespan running (feed disabled)."""
    with TestClient(create_app(relay)) as test_client:
        yield test_client


class TestPositionsWebSocket:
    """Subscriber websocket endpoint."""

    def test_missing_wallet_rejected(self, client):
        """Test an error frame followed by close code 1008."""
        with client.websocket_connect("/ws/positions") as ws:
            assert ws.receive_json() == {"type": "error", "message": "Wallet address required"}
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_json()
        assert exc_info.value.code == 1008

    def test_subscribed(self, client, relay):
        """Test a wallet connection is confirmed and registered."""
        with client.websocket_connect("/ws/positions?wallet=ABC123") as ws:
            assert ws.receive_json() == {"type": "subscribed", "message": "Subscribed to position updates"}
            assert "ABC123" in relay.registry

    def test_legacy_path(self, client):
        """Test /positions behaves like /ws/positions."""
        with client.websocket_connect("/positions?wallet=ABC123") as ws:
            assert ws.receive_json()["type"] == "subscribed"

    def test_ping_pong(self, client):
        with client.websocket_connect("/ws/positions?wallet=ABC123") as ws:
            ws.receive_json()
            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}

    def test_unknown_frames_ignored(self, client):
        """Test garbage and unknown frames get no reply and do not close the socket."""
        with client.websocket_connect("/ws/positions?wallet=ABC123") as ws:
            ws.receive_json()
            ws.send_text("not json")
            ws.send_json({"type": "subscribe", "market": "SOL"})
            ws.send_bytes(b'{"type": "ping"}')
            assert ws.receive_json() == {"type": "pong"}

    def test_disconnect_unregisters(self, client, relay):
        """Test the registry is cleaned up once the client goes away."""
        with client.websocket_connect("/ws/positions?wallet=ABC123") as ws:
            ws.receive_json()
            assert len(relay.registry) == 1
        assert len(relay.registry) == 0

    def test_position_update_pushed(self, client, relay, position_store, sol_btc_position):
        """Test a price change is pushed to the owner's socket."""
        position_store.put(sol_btc_position)
        relay.cache.observe(BTC, 50.0, now=0.0)
        relay.cache.observe(SOL, 100.0, now=0.0)

        with client.websocket_connect("/ws/positions?wallet=ABC123") as ws:
            ws.receive_json()
            client.portal.call(relay.handle_price, SOL, 100.5, 1.0)
            message = ws.receive_json()

        assert message["type"] == "position_update"
        assert message["data"]["id"] == "pos-1"
        assert message["data"]["unrealizedPnl"] == 25.0
        assert message["data"]["currentRatio"] == 2.01


class TestHealth:
    """Health endpoint."""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["server_id"] == "ws-test"
        assert data["connections"] == 0
        assert data["feed"] == "disconnected"
        assert "total_markets" in data["cache"]

    def test_health_counts_connections(self, client):
        with client.websocket_connect("/ws/positions?wallet=ABC123") as ws:
            ws.receive_json()
            assert client.get("/health").json()["connections"] == 1


class TestMetrics:
    """Prometheus endpoint."""

    def test_metrics_exposition(self, client):
        with client.websocket_connect("/ws/positions?wallet=ABC123") as ws:
            ws.receive_json()

        response = client.get("/metrics")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "pairstream_subscriber_connections_total" in response.text
        assert "pairstream_frames_sent_total" in response.text
