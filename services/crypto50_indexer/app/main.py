"""
Crypto50 Indexer Service

Always-on service that tracks the 50 largest USDT pairs on Binance,
derives a volume-weighted synthetic index every second and builds
1-minute candles from it.

API Endpoints:
- GET /health - Service health check
- GET /v0/index - Current index state
- GET /v0/candles - Recent index candles
- GET /v0/constituents - Current basket
- GET /v0/telemetry - Stream connection state and metrics
- GET /v0/stream - SSE real-time updates
- POST /v0/rebalance - Manual rebalance (admin)
- GET /metrics - Prometheus metrics endpoint
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import settings
from .routes import health, metrics, v0
from ..aggregator import AggregatorConfig, IndexAggregator
from ..connectors import BinanceSnapshotClient
from ..core.metrics import set_service_info

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Global instances for app state
_aggregator: Optional[IndexAggregator] = None


def build_aggregator_config() -> AggregatorConfig:
    """Map service settings onto the aggregator's runtime config."""
    return AggregatorConfig(
        base_price=settings.base_index_value,
        basket_size=settings.basket_size,
        quote_asset=settings.quote_asset.upper(),
        excluded_patterns=tuple(settings.excluded_pattern_list),
        tick_interval_ms=settings.tick_interval_ms,
        candle_interval_ms=settings.candle_interval_ms,
        max_candles=settings.max_candles,
        rebalance_hour_utc=settings.rebalance_hour_utc,
        rebalance_minute_utc=settings.rebalance_minute_utc,
        reset_session_on_rebalance=settings.reset_session_on_rebalance,
        ws_endpoint=settings.ws_endpoint,
    )


def _register_component_checks(aggregator: IndexAggregator) -> None:
    """Expose feed and basket status through /health."""

    async def feed_check() -> dict:
        if aggregator.is_connected():
            return {"status": "healthy", "message": "Stream connected"}
        if not aggregator.get_constituents():
            return {"status": "degraded", "message": "No basket to stream"}
        return {"status": "degraded", "message": "Stream disconnected"}

    async def basket_check() -> dict:
        count = len(aggregator.get_constituents())
        if count == 0:
            return {"status": "degraded", "message": "Basket empty - index pinned at base value"}
        return {
            "status": "healthy",
            "message": f"{count} constituents (generation {aggregator.generation})",
        }

    health.register_health_check("feed", feed_check)
    health.register_health_check("basket", basket_check)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Handles startup and shutdown of:
    - Snapshot client and basket bootstrap
    - miniTicker WebSocket connector
    - Index tick loop and rebalance timer
    """
    global _aggregator

    logger.info(f"Starting {settings.service_name} v{settings.service_version}")
    logger.info(f"Environment: {settings.environment}")
    logger.info(
        f"Index: base={settings.base_index_value} basket={settings.basket_size} "
        f"quote={settings.quote_asset} rebalance={settings.rebalance_hour_utc:02d}:"
        f"{settings.rebalance_minute_utc:02d} UTC"
    )

    set_service_info(settings.service_version, settings.environment)

    snapshot_client = BinanceSnapshotClient(
        url=settings.snapshot_url,
        timeout=settings.snapshot_timeout_seconds,
    )
    _aggregator = IndexAggregator(
        config=build_aggregator_config(),
        snapshot_client=snapshot_client,
    )

    # Bootstrap basket, then start stream, tick loop and scheduler
    await _aggregator.start()
    logger.info("Index aggregator started")

    _register_component_checks(_aggregator)

    # Store references on app.state for route access
    app.state.aggregator = _aggregator

    logger.info("Service startup complete")

    yield

    # Shutdown
    logger.info("Shutting down service...")

    health.clear_health_checks()

    if _aggregator:
        await _aggregator.stop()
        _aggregator = None

    app.state.aggregator = None

    logger.info("Service shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Crypto50 Indexer",
    description="Volume-weighted synthetic index of the top 50 Binance USDT pairs",
    version=settings.service_version,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.environment == "local" else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
# Root health endpoints (for container health check)
app.include_router(health.router, tags=["health"])
# Path-based routing (/indexer/* -> service)
app.include_router(health.router, prefix="/indexer", tags=["health-alb"])

# V0 API endpoints
app.include_router(v0.router, tags=["v0-api"])
app.include_router(v0.router, prefix="/indexer", tags=["v0-api-alb"])

# Prometheus metrics endpoint
app.include_router(metrics.router, tags=["metrics"])
app.include_router(metrics.router, prefix="/indexer", tags=["metrics-alb"])


@app.get("/")
async def root() -> dict:
    """Root endpoint - service info."""
    return {
        "service": settings.service_name,
        "version": settings.service_version,
        "environment": settings.environment,
        "base_value": settings.base_index_value,
        "base_date": settings.base_date.isoformat(),
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "services.crypto50_indexer.app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "local",
    )
