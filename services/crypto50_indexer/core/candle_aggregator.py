"""
Crypto50 Indexer Candle Aggregator

Folds index-price samples into fixed-interval OHLC candles.
Handles bucket alignment, candle rollover and history management.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Optional

from .constants import CANDLE_INTERVAL_MS, MAX_CANDLES
from .types import Candle

logger = logging.getLogger(__name__)


def floor_to_interval(timestamp_ms: int, interval_ms: int = CANDLE_INTERVAL_MS) -> int:
    """Floor a timestamp (ms) to the start of its bucket (ms)."""
    return (timestamp_ms // interval_ms) * interval_ms


@dataclass
class CandleAggregator:
    """
    Builds candles from a stream of (timestamp, price) samples.

    Features:
    - In-place update of the active candle within its bucket
    - New candle opens at the previous close (no price gap between candles)
    - Bounded history: the oldest candle is evicted past max_candles
    - Callback with the finished candle when a new bucket starts

    Buckets with no samples are skipped, not gap-filled.

    Usage:
        aggregator = CandleAggregator(on_candle_complete=handle_candle)
        aggregator.add_sample(timestamp_ms, price)
        history = aggregator.get_candles()
    """

    interval_ms: int = CANDLE_INTERVAL_MS
    max_candles: int = MAX_CANDLES
    on_candle_complete: Optional[Callable[[Candle], None]] = None

    # Internal state
    _candles: deque[Candle] = field(default_factory=deque, init=False)
    _sample_count: int = field(default=0, init=False)

    def __post_init__(self) -> None:
        self._candles = deque(maxlen=self.max_candles)

    def add_sample(self, timestamp_ms: int, price: float) -> Candle:
        """
        Fold one sample into the series.

        Args:
            timestamp_ms: Sample time (ms since epoch)
            price: Index price at that time

        Returns:
            Copy of the active candle after the update
        """
        bucket = floor_to_interval(timestamp_ms, self.interval_ms)
        active = self._candles[-1] if self._candles else None

        if active is not None and bucket < active.time:
            # Clock went backwards; never reopen a finished bucket
            logger.warning(
                f"Dropping sample at {timestamp_ms}: bucket {bucket} precedes "
                f"active candle {active.time}"
            )
            return active.model_copy()

        if active is not None and active.time == bucket:
            if price > active.high:
                active.high = price
            if price < active.low:
                active.low = price
            active.close = price
        else:
            finished = active
            open_price = finished.close if finished is not None else price
            active = Candle(
                time=bucket,
                open=open_price,
                high=max(open_price, price),
                low=min(open_price, price),
                close=price,
            )
            self._candles.append(active)
            if finished is not None and self.on_candle_complete:
                self.on_candle_complete(finished.model_copy())

        self._sample_count += 1
        return active.model_copy()

    def get_candles(self, limit: Optional[int] = None) -> list[Candle]:
        """
        Get candles, oldest first, including the active one.

        Args:
            limit: Optional limit (most recent N)
        """
        candles = [c.model_copy() for c in self._candles]
        if limit:
            return candles[-limit:]
        return candles

    def get_active_candle(self) -> Optional[Candle]:
        """Get the candle currently being updated."""
        if not self._candles:
            return None
        return self._candles[-1].model_copy()

    def get_latest_completed(self) -> Optional[Candle]:
        """Get the most recently finished candle."""
        if len(self._candles) < 2:
            return None
        return self._candles[-2].model_copy()

    @property
    def candle_count(self) -> int:
        """Number of candles in history (active included)."""
        return len(self._candles)

    @property
    def sample_count(self) -> int:
        """Samples folded since creation."""
        return self._sample_count
