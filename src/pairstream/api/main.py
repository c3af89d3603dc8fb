from contextlib import asynccontextmanager
from typing import Optional
import logging

from fastapi import APIRouter, FastAPI, Request, WebSocket
from fastapi.responses import Response

from pairstream import __version__
from pairstream.api import metrics
from pairstream.api.logging_config import bind_connection, unbind_connection
from pairstream.api.schemas import HealthResponse
from pairstream.server import PriceRelayServer

logger = logging.getLogger(__name__)

router = APIRouter()


# ========================
# WEBSOCKET POSITION UPDATES
# ========================

@router.websocket("/ws/positions")
@router.websocket("/positions")
async def positions_websocket(websocket: WebSocket):
    """
    Live P&L stream for one wallet.

    Connect with ?wallet=<address>. The server answers with a `subscribed`
    frame, then pushes `position_update` frames whenever a price change moves
    one of the wallet's open positions. Clients may send {"type": "ping"} and
    receive {"type": "pong"}; other frames are ignored.
    """
    relay: PriceRelayServer = websocket.app.state.relay
    await websocket.accept()

    connection = await relay.connect_subscriber(websocket, websocket.query_params.get("wallet"))
    if connection is None:
        return

    bind_connection(connection.connection_id, connection.identity)
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None and message.get("bytes") is not None:
                raw = message["bytes"].decode("utf-8", errors="replace")
            await relay.handle_client_frame(connection, raw)
    except Exception as e:
        # Transport error: treat as a disconnect
        logger.warning(f"Client error for {connection.short_identity}: {e}", extra={"event": "client_error"})
    finally:
        relay.disconnect_subscriber(connection)
        unbind_connection()


# ========================
# HEALTH & METRICS
# ========================

@router.get("/health", response_model=HealthResponse)
async def health(request: Request):
    """Relay status: connections, uptime, feed state, cache statistics."""
    relay: PriceRelayServer = request.app.state.relay
    return relay.health()


@router.get("/metrics")
async def prometheus_metrics():
    """Prometheus text exposition."""
    body, content_type = metrics.render_latest()
    return Response(content=body, media_type=content_type)


def create_app(relay: Optional[PriceRelayServer] = None) -> FastAPI:
    """
    Build the FastAPI application around a relay.

    The relay is attached to app.state immediately; the feed is started and
    all connections are closed by the application lifespan.
    """
    relay = relay or PriceRelayServer()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await relay.start()
        try:
            yield
        finally:
            await relay.shutdown()

    app = FastAPI(
        title="pairstream - live position P&L relay",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.relay = relay
    app.include_router(router)
    return app
