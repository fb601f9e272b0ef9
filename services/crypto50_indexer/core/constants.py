"""
Crypto50 Indexer Constants

Central configuration for the index definition, cadences and feed settings.

IMPORTANT: The index definition values (base value, basket size, eligibility
rules, candle interval, rebalance instant) define what the published number
means. Changing them changes the index.
"""

from datetime import datetime


# =============================================================================
# Index Definition (FROZEN)
# =============================================================================

# Starting value of the index on the base date
BASE_INDEX_VALUE: float = 1000.0

# Reference instant of the base value (local wall clock, as published)
BASE_DATE: datetime = datetime(2025, 2, 5, 12, 0, 0)

# Number of constituents selected at each rebalance
BASKET_SIZE: int = 50

# Only pairs quoted in this currency are eligible
QUOTE_ASSET: str = "USDT"

# Pairs containing any of these substrings are never eligible:
# leveraged tokens (UP/DOWN/BULL/BEAR) and stablecoin-vs-stablecoin pairs.
EXCLUDED_PAIR_PATTERNS: tuple[str, ...] = (
    "UP",
    "DOWN",
    "BULL",
    "BEAR",
    "USDC",
    "FDUSD",
)


# =============================================================================
# Cadence
# =============================================================================

# Index recomputation period (ms)
INDEX_TICK_INTERVAL_MS: int = 1_000

# Candle bucket width (ms)
CANDLE_INTERVAL_MS: int = 60_000

# Candles retained in memory (oldest evicted first)
MAX_CANDLES: int = 100


# =============================================================================
# Rebalance (FROZEN)
# =============================================================================

# Daily rebalance at 00:00 UTC+8, i.e. 16:00 UTC
REBALANCE_HOUR_UTC: int = 16
REBALANCE_MINUTE_UTC: int = 0


# =============================================================================
# Binance Endpoints
# =============================================================================

BINANCE_TICKER_24H_URL: str = "https://api.binance.com/api/v3/ticker/24hr"
BINANCE_WS_ENDPOINT: str = "wss://stream.binance.com:9443/ws"

# Stream suffix for the lightweight per-pair ticker
MINI_TICKER_STREAM: str = "miniTicker"

# Binance caps a single connection at 1024 streams
MAX_STREAMS_PER_CONNECTION: int = 1_024

# Snapshot request timeout (seconds)
SNAPSHOT_TIMEOUT_SECONDS: float = 30.0


# =============================================================================
# Reconnection
# =============================================================================

RECONNECT_INITIAL_DELAY_MS: int = 1_000
RECONNECT_MAX_DELAY_MS: int = 30_000
RECONNECT_BACKOFF_MULTIPLIER: float = 2.0


# =============================================================================
# SSE Configuration
# =============================================================================

# Index update cadence for SSE stream (ms)
SSE_INDEX_CADENCE_MS: int = 1_000

# Telemetry update cadence for SSE stream (ms)
SSE_TELEMETRY_CADENCE_MS: int = 5_000


def get_stream_name(pair: str) -> str:
    """Binance stream name for a pair, e.g. BTCUSDT -> btcusdt@miniTicker."""
    return f"{pair.lower()}@{MINI_TICKER_STREAM}"
