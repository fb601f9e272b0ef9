"""
Crypto50 Indexer V0 API Endpoints

Read-only views of the synthetic index plus a guarded manual rebalance.

Endpoints:
- GET /v0/index - Current index state
- GET /v0/candles - Bounded candle series (oldest first)
- GET /v0/constituents - Current basket with live price/change/weight
- GET /v0/telemetry - Stream connection state and metrics
- GET /v0/stream - SSE real-time updates
- POST /v0/rebalance - Manual basket rebalance (admin)
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Annotated, AsyncGenerator, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from ..config import settings


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v0", tags=["v0"])


# =============================================================================
# Response Models
# =============================================================================

class IndexResponse(BaseModel):
    """Response for /v0/index endpoint."""

    current_price: float
    open_price: float
    high_price: float
    low_price: float
    change_24h: float = Field(..., description="current_price - base_value")
    change_percent: float = Field(..., description="change_24h as % of base_value")
    last_update: int = Field(..., description="Last recomputation (ms since epoch)")
    base_value: float = Field(..., description="Index value on the base date")
    base_date: str = Field(..., description="Reference instant of the base value (ISO 8601)")
    connected: bool = Field(..., description="Live stream online flag")
    constituent_count: int = 0


class CandleResponse(BaseModel):
    """Single candle in response."""

    time: int = Field(..., description="Bucket start (ms since epoch)")
    open: float
    high: float
    low: float
    close: float


class CandlesResponse(BaseModel):
    """Response for /v0/candles endpoint."""

    interval_ms: int
    count: int
    candles: list[CandleResponse]


class ConstituentResponse(BaseModel):
    """Single basket constituent in response."""

    rank: int = Field(..., description="Volume rank at last rebalance (1 = largest)")
    symbol: str
    pair: str
    price: float
    change_24h: float
    volume_24h: float
    weight: float


class ConstituentsResponse(BaseModel):
    """Response for /v0/constituents endpoint."""

    generation: int = Field(..., description="Basket generation (bumped on every rebalance)")
    count: int
    total_volume_24h: float
    last_rebalance: Optional[int] = Field(None, description="Last basket replace (ms since epoch)")
    constituents: list[ConstituentResponse]


class TelemetryResponse(BaseModel):
    """Response for /v0/telemetry endpoint."""

    connected: bool
    connection_state: str
    last_message_time: Optional[int] = None
    message_count: int = 0
    frame_count: int = 0
    reconnect_count: int = 0
    subscribed_pairs: int = 0
    uptime_percent: float = 0.0
    avg_message_rate: float = 0.0
    basket_size: int = 0
    generation: int = 0
    next_rebalance: Optional[str] = None
    timestamp: int


class RebalanceResponse(BaseModel):
    """Response for /v0/rebalance endpoint."""

    replaced: bool = Field(..., description="False when the snapshot was empty and the basket was kept")
    generation: int
    constituent_count: int
    message: str


# =============================================================================
# Dependencies
# =============================================================================

def get_aggregator(request: Request):
    """Get aggregator from app state."""
    aggregator = getattr(request.app.state, "aggregator", None)
    if not aggregator:
        raise HTTPException(status_code=503, detail="Aggregator not initialized")
    return aggregator


def verify_admin_key(
    x_admin_key: Annotated[Optional[str], Header(alias="X-Admin-Key")] = None,
) -> bool:
    """
    Verify admin API key for mutation endpoints.

    Requires X-Admin-Key header matching ADMIN_API_KEY environment variable.
    In non-production environments with no key configured, allows access.

    Raises:
        HTTPException 401 if key is required but missing
        HTTPException 403 if key is invalid
    """
    configured_key = settings.admin_api_key

    # In production, admin key is REQUIRED
    if settings.environment == "production":
        if not configured_key:
            logger.error("ADMIN_API_KEY not configured in production - rejecting request")
            raise HTTPException(
                status_code=503,
                detail="Admin API key not configured. Contact administrator."
            )
        if not x_admin_key:
            raise HTTPException(
                status_code=401,
                detail="X-Admin-Key header required for mutation endpoints"
            )
        if x_admin_key != configured_key:
            logger.warning("Invalid admin key attempt")
            raise HTTPException(status_code=403, detail="Invalid admin key")
        return True

    # In non-production, if key is configured, require it
    if configured_key:
        if not x_admin_key:
            raise HTTPException(
                status_code=401,
                detail="X-Admin-Key header required for mutation endpoints"
            )
        if x_admin_key != configured_key:
            logger.warning("Invalid admin key attempt")
            raise HTTPException(status_code=403, detail="Invalid admin key")
        return True

    # Non-production with no key configured: allow (for local dev)
    logger.debug("Admin key check bypassed (non-production, no key configured)")
    return True


def _now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def _build_index_response(aggregator) -> IndexResponse:
    state = aggregator.get_index_state()
    return IndexResponse(
        current_price=state.current_price,
        open_price=state.open_price,
        high_price=state.high_price,
        low_price=state.low_price,
        change_24h=state.change_24h,
        change_percent=state.change_percent,
        last_update=state.last_update,
        base_value=aggregator.config.base_price,
        base_date=settings.base_date.isoformat(),
        connected=aggregator.is_connected(),
        constituent_count=len(aggregator.get_constituents()),
    )


def _build_telemetry_response(aggregator) -> TelemetryResponse:
    t = aggregator.get_telemetry()
    next_run = aggregator.next_rebalance_time
    return TelemetryResponse(
        connected=aggregator.is_connected(),
        connection_state=t.connection_state.value,
        last_message_time=t.last_message_time,
        message_count=t.message_count,
        frame_count=t.frame_count,
        reconnect_count=t.reconnect_count,
        subscribed_pairs=t.subscribed_pairs,
        uptime_percent=t.uptime_percent,
        avg_message_rate=t.avg_message_rate,
        basket_size=len(aggregator.get_constituents()),
        generation=aggregator.generation,
        next_rebalance=next_run.isoformat() if next_run else None,
        timestamp=_now_ms(),
    )


# =============================================================================
# GET /v0/index
# =============================================================================

@router.get("/index", response_model=IndexResponse)
async def get_index(request: Request):
    """
    Get the current synthetic index state.

    Before the first tick every price equals the base value.
    """
    aggregator = get_aggregator(request)
    return _build_index_response(aggregator)


# =============================================================================
# GET /v0/candles
# =============================================================================

@router.get("/candles", response_model=CandlesResponse)
async def get_candles(
    request: Request,
    limit: Annotated[
        Optional[int],
        Query(ge=1, le=100, description="Most recent N candles (1-100). Default: all")
    ] = None,
):
    """
    Get the in-memory candle series, oldest first.

    The last candle is the active one and may still change.
    Buckets without samples are absent (no gap filling).
    """
    aggregator = get_aggregator(request)
    candles = aggregator.get_candles(limit)

    return CandlesResponse(
        interval_ms=aggregator.config.candle_interval_ms,
        count=len(candles),
        candles=[
            CandleResponse(
                time=c.time,
                open=c.open,
                high=c.high,
                low=c.low,
                close=c.close,
            )
            for c in candles
        ],
    )


# =============================================================================
# GET /v0/constituents
# =============================================================================

@router.get("/constituents", response_model=ConstituentsResponse)
async def get_constituents(request: Request):
    """Get the current basket in volume-rank order."""
    aggregator = get_aggregator(request)
    basket = aggregator.get_constituents()

    return ConstituentsResponse(
        generation=aggregator.generation,
        count=len(basket),
        total_volume_24h=aggregator.get_total_volume(),
        last_rebalance=aggregator.last_rebalance_time,
        constituents=[
            ConstituentResponse(
                rank=i,
                symbol=c.symbol,
                pair=c.pair,
                price=c.price,
                change_24h=c.change_24h,
                volume_24h=c.volume_24h,
                weight=c.weight,
            )
            for i, c in enumerate(basket, start=1)
        ],
    )


# =============================================================================
# GET /v0/telemetry
# =============================================================================

@router.get("/telemetry", response_model=TelemetryResponse)
async def get_telemetry(request: Request):
    """Get stream connection state, counters and rebalance schedule."""
    aggregator = get_aggregator(request)
    return _build_telemetry_response(aggregator)


# =============================================================================
# GET /v0/stream (SSE)
# =============================================================================

@router.get("/stream")
async def stream_updates(request: Request):
    """
    Server-Sent Events stream for real-time updates.

    Events:
    - index: Index state plus the active candle (SSE_INDEX_CADENCE_MS)
    - telemetry: Stream connection status (SSE_TELEMETRY_CADENCE_MS)

    Reconnection: On reconnect, client should call /v0/index and
    /v0/candles first to get current state before resuming stream.
    """
    aggregator = get_aggregator(request)
    index_interval = settings.sse_index_cadence_ms / 1000
    telemetry_interval = settings.sse_telemetry_cadence_ms / 1000

    async def event_generator() -> AsyncGenerator[str, None]:
        """Generate SSE events."""
        sequence = 0
        last_index_time = 0.0
        last_telemetry_time = 0.0
        loop = asyncio.get_running_loop()

        try:
            while True:
                if await request.is_disconnected():
                    logger.info("SSE client disconnected")
                    break

                now = loop.time()

                if now - last_index_time >= index_interval:
                    last_index_time = now
                    sequence += 1
                    active = aggregator.get_active_candle()
                    event = {
                        "type": "index",
                        "sequence": sequence,
                        "timestamp": _now_ms(),
                        "data": {
                            "index": _build_index_response(aggregator).model_dump(),
                            "candle": active.model_dump() if active else None,
                        },
                    }
                    yield f"event: index\ndata: {json.dumps(event)}\n\n"

                if now - last_telemetry_time >= telemetry_interval:
                    last_telemetry_time = now
                    sequence += 1
                    event = {
                        "type": "telemetry",
                        "sequence": sequence,
                        "timestamp": _now_ms(),
                        "data": _build_telemetry_response(aggregator).model_dump(),
                    }
                    yield f"event: telemetry\ndata: {json.dumps(event)}\n\n"

                # Small sleep to prevent tight loop
                await asyncio.sleep(0.1)

        except asyncio.CancelledError:
            logger.info("SSE stream cancelled")
            raise

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )


# =============================================================================
# POST /v0/rebalance (Manual Rebalance)
# =============================================================================

@router.post("/rebalance", response_model=RebalanceResponse)
async def trigger_rebalance(
    request: Request,
    _admin_verified: Annotated[bool, Depends(verify_admin_key)] = True,
):
    """
    Rebalance the basket now instead of waiting for 16:00 UTC.

    Refetches the snapshot, reweights, replaces the basket and resubscribes
    the stream. An empty snapshot keeps the current basket.

    Authentication: Requires X-Admin-Key header in production.
    """
    aggregator = get_aggregator(request)

    try:
        replaced = await aggregator.rebalance()
    except Exception as e:
        logger.error(f"Manual rebalance failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    count = len(aggregator.get_constituents())
    return RebalanceResponse(
        replaced=replaced,
        generation=aggregator.generation,
        constituent_count=count,
        message=(
            f"Basket replaced with {count} constituents"
            if replaced
            else "Snapshot empty; current basket kept"
        ),
    )
