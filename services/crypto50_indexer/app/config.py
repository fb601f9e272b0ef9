"""
Crypto50 Indexer Configuration

Pydantic Settings for the Crypto50 Indexer service.
Loads from environment variables with sensible defaults.
"""

from datetime import datetime
from typing import Literal
from pydantic_settings import BaseSettings
from pydantic import Field

from ..core.constants import (
    BINANCE_TICKER_24H_URL,
    BINANCE_WS_ENDPOINT,
    SNAPSHOT_TIMEOUT_SECONDS,
)


class Settings(BaseSettings):
    """Crypto50 Indexer service configuration."""

    # Service identity
    service_name: str = Field(default="crypto50-indexer", description="Service name for logging/metrics")
    environment: Literal["local", "staging", "production"] = Field(default="local")
    service_version: str = Field(default="0.1.0")
    log_level: str = Field(default="INFO")

    # Index definition (frozen contract)
    base_index_value: float = Field(default=1000.0, description="Index value on the base date")
    base_date: datetime = Field(default=datetime(2025, 2, 5, 12, 0, 0), description="Reference instant of the base value")
    basket_size: int = Field(default=50, ge=1, description="Constituents per rebalance")
    quote_asset: str = Field(default="USDT", description="Eligible quote currency suffix")
    excluded_patterns: str = Field(
        default="UP,DOWN,BULL,BEAR,USDC,FDUSD",
        description="Comma-separated substrings that make a pair ineligible",
    )

    # Feeds
    snapshot_url: str = Field(default=BINANCE_TICKER_24H_URL)
    ws_endpoint: str = Field(default=BINANCE_WS_ENDPOINT)
    snapshot_timeout_seconds: float = Field(default=SNAPSHOT_TIMEOUT_SECONDS)

    # Cadence
    tick_interval_ms: int = Field(default=1_000, ge=100, description="Index recomputation period")
    candle_interval_ms: int = Field(default=60_000, ge=1_000, description="Candle bucket width")
    max_candles: int = Field(default=100, ge=1, description="Candles kept in memory")

    # Rebalance (00:00 UTC+8)
    rebalance_hour_utc: int = Field(default=16, ge=0, le=23)
    rebalance_minute_utc: int = Field(default=0, ge=0, le=59)
    reset_session_on_rebalance: bool = Field(
        default=False,
        description="Collapse open/high/low onto the current price at each rebalance",
    )

    # SSE settings
    sse_index_cadence_ms: int = Field(default=1_000, description="SSE index event cadence")
    sse_telemetry_cadence_ms: int = Field(default=5_000, description="SSE telemetry event cadence")

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    # Admin authentication (required for mutation endpoints)
    admin_api_key: str = Field(
        default="",
        description="API key for admin/mutation endpoints (e.g., manual rebalance). Required in production."
    )

    class Config:
        env_prefix = ""
        case_sensitive = False
        env_file = ".env"
        extra = "ignore"

    @property
    def excluded_pattern_list(self) -> list[str]:
        """Parse excluded patterns string to list."""
        return [p.strip().upper() for p in self.excluded_patterns.split(",") if p.strip()]


# Global settings instance
settings = Settings()
