"""
Prometheus Metrics for Crypto50 Indexer

Exposes operational metrics for monitoring and alerting.

Metrics:
- Index price gauge and tick / candle counters
- Basket size and rebalance counters
- Stream frame counters (applied / dropped by reason)
- Feed connection gauge and reconnect counter
- Snapshot fetch latency histogram
"""

from prometheus_client import Counter, Gauge, Histogram, CollectorRegistry

# Create a custom registry to avoid conflicts with default registry
REGISTRY = CollectorRegistry()


# =============================================================================
# Index Metrics
# =============================================================================

INDEX_PRICE = Gauge(
    "crypto50_index_price",
    "Current synthetic index price",
    registry=REGISTRY,
)

INDEX_TICKS_TOTAL = Counter(
    "crypto50_index_ticks_total",
    "Total index recomputations",
    registry=REGISTRY,
)

CANDLES_TOTAL = Counter(
    "crypto50_candles_total",
    "Total candles opened",
    registry=REGISTRY,
)


# =============================================================================
# Basket Metrics
# =============================================================================

BASKET_CONSTITUENTS = Gauge(
    "crypto50_basket_constituents",
    "Number of constituents in the current basket",
    registry=REGISTRY,
)

REBALANCES_TOTAL = Counter(
    "crypto50_rebalances_total",
    "Total basket (re)initializations",
    ["status"],  # status: success, empty, kept
    registry=REGISTRY,
)

SNAPSHOT_FETCH_LATENCY = Histogram(
    "crypto50_snapshot_fetch_latency_seconds",
    "Ticker snapshot fetch latency in seconds",
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    registry=REGISTRY,
)


# =============================================================================
# Stream Metrics
# =============================================================================

FRAMES_APPLIED_TOTAL = Counter(
    "crypto50_frames_applied_total",
    "Total stream frames applied to the basket",
    registry=REGISTRY,
)

FRAMES_DROPPED_TOTAL = Counter(
    "crypto50_frames_dropped_total",
    "Total stream frames dropped",
    ["reason"],
    registry=REGISTRY,
)

FEED_CONNECTED = Gauge(
    "crypto50_feed_connected",
    "Stream connection status (1=connected, 0=disconnected)",
    registry=REGISTRY,
)

FEED_RECONNECTS = Counter(
    "crypto50_feed_reconnects_total",
    "Total stream reconnections",
    registry=REGISTRY,
)


# =============================================================================
# Service Info Metrics
# =============================================================================

SERVICE_INFO = Gauge(
    "crypto50_service_info",
    "Service information",
    ["version", "environment"],
    registry=REGISTRY,
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_index_tick(price: float) -> None:
    """Record one index recomputation."""
    INDEX_TICKS_TOTAL.inc()
    INDEX_PRICE.set(price)


def record_candle_opened() -> None:
    CANDLES_TOTAL.inc()


def record_rebalance(status: str, basket_size: int) -> None:
    """Record a bootstrap/rebalance outcome and the resulting basket size."""
    REBALANCES_TOTAL.labels(status=status).inc()
    BASKET_CONSTITUENTS.set(basket_size)


def record_snapshot_fetch(latency_seconds: float) -> None:
    SNAPSHOT_FETCH_LATENCY.observe(latency_seconds)


def record_frame_applied() -> None:
    FRAMES_APPLIED_TOTAL.inc()


def record_frame_dropped(reason: str) -> None:
    FRAMES_DROPPED_TOTAL.labels(reason=reason).inc()


def update_feed_status(connected: bool) -> None:
    """Update stream connection gauge."""
    FEED_CONNECTED.set(1 if connected else 0)


def increment_feed_reconnects() -> None:
    FEED_RECONNECTS.inc()


def set_service_info(version: str, environment: str) -> None:
    """Set service info gauge."""
    SERVICE_INFO.labels(version=version, environment=environment).set(1)
