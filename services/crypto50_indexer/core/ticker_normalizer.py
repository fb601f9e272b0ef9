"""
Crypto50 Indexer Ticker Normalizer

Turns one raw streaming frame into a validated price / percent-change update
and applies it to the constituent store.

Drop rules (silent, no exception, no mutation):
- Frame does not match a recognized shape (miniTicker / ticker)
- Price or percent change is not finite
- Pair is not in the current basket
- Frame belongs to a basket generation that has been replaced

Percent change:
- `P` field when the frame carries one (full ticker stream)
- otherwise (c - o) / o * 100, or 0 when o == 0 (miniTicker stream)
"""

import logging
import math
from typing import Any, Optional, Union

from pydantic import TypeAdapter, ValidationError

from .constituent_store import ConstituentStore
from .metrics import record_frame_applied, record_frame_dropped
from .types import DropReason, MiniTickerFrame, StreamFrame, TickerDelta, TickerFrame

logger = logging.getLogger(__name__)

_FRAME_ADAPTER: TypeAdapter = TypeAdapter(StreamFrame)


def parse_frame(data: Any) -> Optional[Union[MiniTickerFrame, TickerFrame]]:
    """
    Validate a decoded JSON payload against the recognized frame kinds.

    Returns None for anything that is not a miniTicker or ticker frame.
    """
    if isinstance(data, (MiniTickerFrame, TickerFrame)):
        return data
    if not isinstance(data, dict):
        return None
    try:
        return _FRAME_ADAPTER.validate_python(data)
    except ValidationError as e:
        logger.debug(f"Rejected frame ({e.error_count()} errors): {data}")
        return None


def compute_percent_change(close_price: float, open_price: Optional[float]) -> float:
    """Percent move from open to close; 0 when open is missing or zero."""
    if not open_price:
        return 0.0
    return ((close_price - open_price) / open_price) * 100


def normalize_frame(frame: Union[MiniTickerFrame, TickerFrame]) -> Optional[TickerDelta]:
    """
    Extract price and percent change from a validated frame.

    Returns None when either value is not finite.
    """
    price = frame.close_price
    if isinstance(frame, TickerFrame):
        change = frame.price_change_percent
    else:
        change = compute_percent_change(frame.close_price, frame.open_price)

    if not (math.isfinite(price) and math.isfinite(change)):
        return None

    return TickerDelta(pair=frame.pair, price=price, change_percent=change)


class TickerNormalizer:
    """
    Applies streaming frames to a ConstituentStore.

    Usage:
        normalizer = TickerNormalizer(store)
        normalizer.apply({"s": "BTCUSDT", "c": "95000", "o": "94000"})
    """

    def __init__(self, store: ConstituentStore):
        self.store = store

    def apply(
        self,
        data: Union[dict[str, Any], MiniTickerFrame, TickerFrame],
        generation: Optional[int] = None,
    ) -> bool:
        """
        Parse, validate and apply one frame.

        Args:
            data: Raw frame dict or an already parsed frame
            generation: Basket generation the feed was subscribed for

        Returns:
            True if a constituent was updated
        """
        frame = parse_frame(data)
        if frame is None:
            record_frame_dropped(DropReason.INVALID.value)
            return False

        delta = normalize_frame(frame)
        if delta is None:
            logger.debug(f"Dropped non-finite frame for {frame.pair}")
            record_frame_dropped(DropReason.NON_FINITE.value)
            return False

        return self.apply_delta(delta, generation)

    def apply_delta(self, delta: TickerDelta, generation: Optional[int] = None) -> bool:
        """Write a normalized delta into the store."""
        if generation is not None and generation != self.store.generation:
            logger.debug(
                f"Dropped frame for {delta.pair}: generation {generation} "
                f"replaced by {self.store.generation}"
            )
            record_frame_dropped(DropReason.STALE_GENERATION.value)
            return False

        applied = self.store.apply_update(
            delta.pair,
            delta.price,
            delta.change_percent,
            generation=generation,
        )
        if not applied:
            # Either unknown pair, or a replace raced in after the check above
            reason = (
                DropReason.UNKNOWN_PAIR
                if generation is None or generation == self.store.generation
                else DropReason.STALE_GENERATION
            )
            logger.debug(f"Dropped frame for {delta.pair}: {reason.value}")
            record_frame_dropped(reason.value)
            return False

        record_frame_applied()
        return True
