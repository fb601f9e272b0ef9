"""
Crypto50 Indexer Core Types

Canonical type definitions for the basket, the synthetic index and its candles.

SERIALIZATION CONTRACT:
    Attributes are snake_case. Core models also carry camelCase aliases
    (via `alias_generator` and `populate_by_name`) so they validate Binance
    REST payloads such as {"lastPrice": ..., "quoteVolume": ...}.
    The HTTP layer serializes its own snake_case response models and never
    dumps core models by alias.

Inbound stream frames are the exception: they keep Binance's single-letter
field names as aliases (s, c, o, P) and are validated as a strict tagged union.
"""

from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag


def to_camel(string: str) -> str:
    """Convert snake_case to camelCase field aliases."""
    components = string.split("_")
    return components[0] + "".join(x[:1].upper() + x[1:] for x in components[1:])


# =============================================================================
# Core Enums
# =============================================================================

class ConnectionState(str, Enum):
    """Connection state for the streaming feed."""
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class FrameKind(str, Enum):
    """Recognized streaming frame kinds (Binance event type `e`)."""
    MINI_TICKER = "24hrMiniTicker"
    TICKER = "24hrTicker"


class DropReason(str, Enum):
    """Why an inbound frame was discarded without mutating the basket."""
    INVALID = "invalid"
    NON_FINITE = "non_finite"
    UNKNOWN_PAIR = "unknown_pair"
    STALE_GENERATION = "stale_generation"


# =============================================================================
# Snapshot & Basket Types
# =============================================================================

class TickerSnapshot(BaseModel):
    """One record of the 24h ticker listing (string-encoded numerics on the wire)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    symbol: str = Field(..., description="Trading pair, e.g. BTCUSDT")
    price_change_percent: float = Field(..., description="24h percent change")
    last_price: float = Field(..., description="Last trade price")
    quote_volume: float = Field(..., description="24h volume in quote currency")


class Constituent(BaseModel):
    """
    One tracked trading pair in the index basket.

    Instances are immutable; the store swaps in an updated copy on every tick
    so a snapshot reader never sees a half-applied update.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    symbol: str = Field(..., description="Base asset, e.g. BTC")
    pair: str = Field(..., description="Full trading pair, e.g. BTCUSDT")
    price: float = Field(..., description="Last known trade price")
    change_24h: float = Field(default=0.0, description="Rolling percent change")
    volume_24h: float = Field(default=0.0, description="Quote volume at last rebalance")
    weight: float = Field(default=0.0, description="Fraction of the index, in [0, 1]")


# =============================================================================
# Index & Candle Types
# =============================================================================

class IndexState(BaseModel):
    """Current synthetic index snapshot."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    current_price: float
    open_price: float
    high_price: float
    low_price: float
    change_24h: float = Field(default=0.0, description="current_price - base")
    change_percent: float = Field(default=0.0, description="change_24h as % of base")
    last_update: int = Field(..., description="Last recomputation (ms since epoch)")

    @classmethod
    def initial(cls, base_price: float, timestamp_ms: int) -> "IndexState":
        """State at process start: every price pinned to the base value."""
        return cls(
            current_price=base_price,
            open_price=base_price,
            high_price=base_price,
            low_price=base_price,
            change_24h=0.0,
            change_percent=0.0,
            last_update=timestamp_ms,
        )


class Candle(BaseModel):
    """Fixed-interval OHLC bucket of the index price."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    time: int = Field(..., description="Bucket start (ms since epoch, interval-aligned)")
    open: float
    high: float
    low: float
    close: float


# =============================================================================
# Streaming Frames
# =============================================================================

class MiniTickerFrame(BaseModel):
    """
    Binance <pair>@miniTicker payload.

    {"e": "24hrMiniTicker", "E": 1672515782136, "s": "BTCUSDT",
     "c": "95000.00", "o": "94000.00", "h": ..., "l": ..., "v": ..., "q": ...}

    Carries no percent change; it is derived from close and open. The
    variant is chosen by the presence of `P`, so a miniTicker-tagged frame
    that does carry `P` validates as a TickerFrame.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    kind: Literal["24hrMiniTicker", "24hrTicker"] = Field(default="24hrMiniTicker", alias="e")
    event_time: Optional[int] = Field(default=None, alias="E")
    pair: str = Field(..., alias="s", min_length=1)
    close_price: float = Field(..., alias="c")
    open_price: float = Field(..., alias="o")


class TickerFrame(BaseModel):
    """Any ticker payload carrying an explicit percent change `P`."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    kind: Literal["24hrMiniTicker", "24hrTicker"] = Field(default="24hrTicker", alias="e")
    event_time: Optional[int] = Field(default=None, alias="E")
    pair: str = Field(..., alias="s", min_length=1)
    close_price: float = Field(..., alias="c")
    open_price: Optional[float] = Field(default=None, alias="o")
    price_change_percent: float = Field(..., alias="P")


def _frame_kind(value: Any) -> Optional[str]:
    """
    Pick the frame variant from the presence of `P`.

    An unrecognized `e` is returned as-is so validation rejects it.
    """
    if isinstance(value, dict):
        kind = value.get("e")
        if kind is not None and kind not in (FrameKind.MINI_TICKER.value, FrameKind.TICKER.value):
            return str(kind)
        return FrameKind.TICKER.value if value.get("P") is not None else FrameKind.MINI_TICKER.value
    if isinstance(value, TickerFrame):
        return FrameKind.TICKER.value
    if isinstance(value, MiniTickerFrame):
        return FrameKind.MINI_TICKER.value
    return None


StreamFrame = Annotated[
    Union[
        Annotated[MiniTickerFrame, Tag(FrameKind.MINI_TICKER.value)],
        Annotated[TickerFrame, Tag(FrameKind.TICKER.value)],
    ],
    Discriminator(_frame_kind),
]


class TickerDelta(BaseModel):
    """Validated price/percent-change update for a single pair."""

    model_config = ConfigDict(frozen=True)

    pair: str
    price: float
    change_percent: float


# =============================================================================
# Telemetry Types
# =============================================================================

class FeedTelemetry(BaseModel):
    """Streaming feed telemetry snapshot."""

    connection_state: ConnectionState = ConnectionState.DISCONNECTED
    last_message_time: Optional[int] = None
    message_count: int = 0
    frame_count: int = 0
    reconnect_count: int = 0
    subscribed_pairs: int = 0
    session_start_time: Optional[int] = None
    uptime_percent: float = 0.0
    avg_message_rate: float = 0.0
