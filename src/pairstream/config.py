"""
Configuration management for the pairstream price relay.

Uses pydantic-settings to load configuration from environment variables and .env files.

Environment variables will override .env file settings.
For local development, use .env file.
For production/cloud, set environment variables directly.
"""

from pydantic_settings import BaseSettings
from pydantic import Field
from typing import Dict, Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables and .env files.

    Attributes:
        feed_url: Upstream exchange websocket endpoint
        tracked_markets: Instruments to subscribe to, symbol -> market index
        reconnect_delay_seconds: Fixed delay before reconnecting the upstream feed
        heartbeat_interval_seconds: Interval between upstream ping frames
        feed_idle_timeout_seconds: Force a reconnect when nothing is read for this long
        price_change_threshold: Minimum relative move that counts as a price change
        broadcast_throttle_ms: Minimum time between two broadcasts for one instrument
        database_url: Position store connection URL
        subscriber_queue_size: Outbound frame buffer per subscriber (back-pressure limit)
    """

    # Upstream exchange feed
    feed_url: str = Field(
        default="wss://master.dlob.drift.trade/ws",
        description="Websocket endpoint of the exchange trade feed"
    )
    feed_enabled: bool = Field(
        default=True,
        description="Connect to the upstream feed on startup. Disable for local testing."
    )
    tracked_markets: Dict[str, int] = Field(
        default={"SOL": 0, "BTC": 1, "ETH": 2},
        description="Perp markets to subscribe to, as symbol -> market index (JSON in env)"
    )
    reconnect_delay_seconds: float = Field(
        default=5.0,
        description="Fixed delay before reconnecting after a feed error or close. Default: 5s"
    )
    heartbeat_interval_seconds: float = Field(
        default=30.0,
        description="Interval between ping frames sent upstream while connected. Default: 30s"
    )
    feed_idle_timeout_seconds: float = Field(
        default=90.0,
        description="Reconnect if no upstream message arrives within this window. 0 disables."
    )

    # Change detection
    price_change_threshold: float = Field(
        default=0.001,
        description="Relative price change required to broadcast (0.001 = 0.1%)"
    )
    broadcast_throttle_ms: float = Field(
        default=500.0,
        description="Minimum milliseconds between broadcasts for the same instrument"
    )

    # Position store
    database_url: Optional[str] = Field(
        default=None,
        description="Position store URL. Defaults to SQLite in the working directory if not set."
    )

    # Subscriber server
    ws_host: str = Field(default="0.0.0.0", description="Bind address for the subscriber server")
    ws_port: int = Field(default=3001, description="Port for the subscriber server")
    subscriber_queue_size: int = Field(
        default=256,
        ge=1,
        description="Frames buffered per subscriber before new frames are dropped"
    )
    server_id: Optional[str] = Field(
        default=None,
        description="Identifier reported by /health. Defaults to ws-<pid>."
    )

    # Logging
    log_level: str = Field(default="INFO", description="DEBUG, INFO, WARNING or ERROR")
    log_format: str = Field(default="console", description="console or json")

    class Config:
        """Pydantic settings configuration."""
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"  # Ignore extra environment variables


# Global settings instance
settings = Settings()
