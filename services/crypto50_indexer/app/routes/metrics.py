"""
Prometheus Metrics Endpoint

Exposes /metrics endpoint in Prometheus text format.
"""

import logging
from fastapi import APIRouter, Request, Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from ...core.metrics import (
    REGISTRY,
    BASKET_CONSTITUENTS,
    update_feed_status,
    set_service_info,
)
from ..config import settings


logger = logging.getLogger(__name__)
router = APIRouter()


def _update_live_metrics(request: Request) -> None:
    """
    Update metrics with current live values from aggregator.

    Called on each /metrics scrape so feed status and basket size are current.
    """
    aggregator = getattr(request.app.state, "aggregator", None)
    if not aggregator:
        return

    update_feed_status(aggregator.is_connected())
    BASKET_CONSTITUENTS.set(len(aggregator.get_constituents()))


@router.get("/metrics")
async def prometheus_metrics(request: Request) -> Response:
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text exposition format.
    Designed for Prometheus scraping at /metrics or /indexer/metrics.

    Metrics exposed:
    - crypto50_index_price
    - crypto50_index_ticks_total
    - crypto50_candles_total
    - crypto50_basket_constituents
    - crypto50_rebalances_total{status}
    - crypto50_snapshot_fetch_latency_seconds
    - crypto50_frames_applied_total
    - crypto50_frames_dropped_total{reason}
    - crypto50_feed_connected
    - crypto50_feed_reconnects_total
    - crypto50_service_info{version, environment}
    """
    # Set service info on each scrape (idempotent)
    set_service_info(settings.service_version, settings.environment)

    _update_live_metrics(request)

    metrics_output = generate_latest(REGISTRY)

    return Response(
        content=metrics_output,
        media_type=CONTENT_TYPE_LATEST,
    )
