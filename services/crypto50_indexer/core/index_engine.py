"""
Crypto50 Indexer Index Price Engine

Derives the synthetic index price from the basket.

The index tracks the volume-weighted average percent move of its
constituents, applied to a fixed base value:

    avg_change  = sum(w_i * change_i) / sum(w_i)      (denominator 1 if 0)
    index_price = base * (1 + avg_change / 100)

This is the published definition, not a reconstruction of a weighted sum of
absolute prices. Keep it as is; reference values depend on it.
"""

import logging
import time
from typing import Optional, Sequence

from .constants import BASE_INDEX_VALUE
from .types import Constituent, IndexState

logger = logging.getLogger(__name__)


def calculate_index_price(constituents: Sequence[Constituent], base_price: float) -> float:
    """
    Compute the index price for a basket snapshot.

    An empty basket returns the base price unchanged.
    """
    if not constituents:
        return base_price

    weighted_change_sum = 0.0
    total_weight = 0.0
    for c in constituents:
        weighted_change_sum += c.change_24h * c.weight
        total_weight += c.weight

    avg_change = weighted_change_sum / (total_weight or 1)
    return base_price * (1 + avg_change / 100)


class IndexPriceEngine:
    """
    Holds the running IndexState and updates it on every tick.

    Within a session high_price only rises and low_price only falls.
    open_price stays at the base value; the session lasts for the process
    lifetime unless reset_session() is called.

    Usage:
        engine = IndexPriceEngine(base_price=1000.0)
        state = engine.recompute(store.snapshot())
    """

    def __init__(self, base_price: float = BASE_INDEX_VALUE):
        self.base_price = base_price
        self._state = IndexState.initial(base_price, int(time.time() * 1000))

    @property
    def state(self) -> IndexState:
        """Current index state (a copy; callers cannot mutate the engine)."""
        return self._state.model_copy()

    def recompute(
        self,
        constituents: Sequence[Constituent],
        timestamp_ms: Optional[int] = None,
    ) -> IndexState:
        """
        Recompute the index from a basket snapshot and widen the session bounds.

        Args:
            constituents: Snapshot of the basket
            timestamp_ms: Time of the recomputation (default: now)

        Returns:
            The new IndexState
        """
        if timestamp_ms is None:
            timestamp_ms = int(time.time() * 1000)

        price = calculate_index_price(constituents, self.base_price)
        prev = self._state

        change = price - self.base_price
        self._state = IndexState(
            current_price=price,
            open_price=prev.open_price,
            high_price=max(prev.high_price, price),
            low_price=min(prev.low_price, price),
            change_24h=change,
            change_percent=(change / self.base_price) * 100 if self.base_price else 0.0,
            last_update=timestamp_ms,
        )
        return self.state

    def reset_session(self, timestamp_ms: Optional[int] = None) -> IndexState:
        """
        Start a new session: open/high/low collapse onto the current price.

        Only used when session-scoped bounds are enabled.
        """
        if timestamp_ms is None:
            timestamp_ms = int(time.time() * 1000)

        current = self._state.current_price
        self._state = self._state.model_copy(
            update={
                "open_price": current,
                "high_price": current,
                "low_price": current,
                "last_update": timestamp_ms,
            }
        )
        logger.info(f"Index session reset at {current:.2f}")
        return self.state
