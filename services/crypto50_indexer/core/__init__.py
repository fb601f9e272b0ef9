# Crypto50 Indexer Core Modules
"""
Core business logic for the Crypto50 synthetic index.

Modules:
- types: Canonical type definitions (Pydantic models)
- constants: Index definition, cadences and feed settings
- weights: Basket selection and volume weighting
- constituent_store: Generation-stamped live basket
- ticker_normalizer: Stream frame validation and application
- index_engine: Index price and session bounds
- candle_aggregator: OHLC candles from index samples
- rebalance: Daily rebalance timer
"""

from .types import (
    Candle,
    ConnectionState,
    Constituent,
    DropReason,
    FeedTelemetry,
    FrameKind,
    IndexState,
    MiniTickerFrame,
    StreamFrame,
    TickerDelta,
    TickerFrame,
    TickerSnapshot,
)

from .constants import (
    BASE_DATE,
    BASE_INDEX_VALUE,
    BASKET_SIZE,
    CANDLE_INTERVAL_MS,
    EXCLUDED_PAIR_PATTERNS,
    INDEX_TICK_INTERVAL_MS,
    MAX_CANDLES,
    QUOTE_ASSET,
    REBALANCE_HOUR_UTC,
    REBALANCE_MINUTE_UTC,
    get_stream_name,
)

from .weights import (
    WeightCalculator,
    calculate_weights,
)

from .constituent_store import ConstituentStore

from .ticker_normalizer import (
    TickerNormalizer,
    compute_percent_change,
    normalize_frame,
    parse_frame,
)

from .index_engine import (
    IndexPriceEngine,
    calculate_index_price,
)

from .candle_aggregator import (
    CandleAggregator,
    floor_to_interval,
)

from .rebalance import (
    RebalanceScheduler,
    next_rebalance_time,
)

__all__ = [
    # Types
    "Candle",
    "ConnectionState",
    "Constituent",
    "DropReason",
    "FeedTelemetry",
    "FrameKind",
    "IndexState",
    "MiniTickerFrame",
    "StreamFrame",
    "TickerDelta",
    "TickerFrame",
    "TickerSnapshot",
    # Constants
    "BASE_DATE",
    "BASE_INDEX_VALUE",
    "BASKET_SIZE",
    "CANDLE_INTERVAL_MS",
    "EXCLUDED_PAIR_PATTERNS",
    "INDEX_TICK_INTERVAL_MS",
    "MAX_CANDLES",
    "QUOTE_ASSET",
    "REBALANCE_HOUR_UTC",
    "REBALANCE_MINUTE_UTC",
    "get_stream_name",
    # Weights
    "WeightCalculator",
    "calculate_weights",
    # Store
    "ConstituentStore",
    # Normalizer
    "TickerNormalizer",
    "compute_percent_change",
    "normalize_frame",
    "parse_frame",
    # Index Engine
    "IndexPriceEngine",
    "calculate_index_price",
    # Candles
    "CandleAggregator",
    "floor_to_interval",
    # Rebalance
    "RebalanceScheduler",
    "next_rebalance_time",
]
