"""
Crypto50 Indexer Weight Calculator

Selects the basket from a 24h ticker snapshot and assigns volume weights.

Selection rules:
- Pair must end with the quote asset (USDT)
- Pair must not contain any denylisted pattern (leveraged / stablecoin pairs)
- Rank by 24h quote volume, descending, keep the top N

Weight of a constituent = its quote volume / total quote volume of the
selected set. A zero total falls back to equal weights.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from .constants import BASKET_SIZE, EXCLUDED_PAIR_PATTERNS, QUOTE_ASSET
from .types import Constituent, TickerSnapshot

logger = logging.getLogger(__name__)


def calculate_weights(volumes: Sequence[float]) -> list[float]:
    """
    Normalize volumes into weights that sum to 1.

    Returns an empty list for no volumes and equal weights when the
    total volume is zero.
    """
    if not volumes:
        return []

    total = sum(volumes)
    if total <= 0:
        equal = 1.0 / len(volumes)
        return [equal for _ in volumes]

    return [v / total for v in volumes]


@dataclass
class WeightCalculator:
    """
    Builds a weighted basket from raw ticker snapshots.

    Usage:
        calculator = WeightCalculator(basket_size=50)
        basket = calculator.build_basket(tickers)
    """

    basket_size: int = BASKET_SIZE
    quote_asset: str = QUOTE_ASSET
    excluded_patterns: tuple[str, ...] = field(default=EXCLUDED_PAIR_PATTERNS)

    def is_eligible(self, pair: str) -> bool:
        """Check quote suffix and denylist for a pair."""
        if not pair.endswith(self.quote_asset):
            return False
        return not any(pattern in pair for pattern in self.excluded_patterns)

    def base_symbol(self, pair: str) -> str:
        """Strip the quote suffix: BTCUSDT -> BTC."""
        if pair.endswith(self.quote_asset):
            return pair[: -len(self.quote_asset)]
        return pair

    def select(self, tickers: Iterable[TickerSnapshot]) -> list[TickerSnapshot]:
        """Filter eligible pairs and keep the top N by quote volume."""
        eligible = [
            t for t in tickers
            if self.is_eligible(t.symbol)
            and math.isfinite(t.quote_volume)
            and t.quote_volume >= 0
        ]
        eligible.sort(key=lambda t: t.quote_volume, reverse=True)
        return eligible[: self.basket_size]

    def build_basket(self, tickers: Iterable[TickerSnapshot]) -> list[Constituent]:
        """
        Select and weight the basket.

        Args:
            tickers: Full 24h ticker listing (any order, any quote asset)

        Returns:
            Constituents ordered by volume rank; empty if nothing is eligible
        """
        selected = self.select(tickers)
        if not selected:
            logger.warning("No eligible pairs in snapshot - basket is empty")
            return []

        weights = calculate_weights([t.quote_volume for t in selected])

        basket = [
            Constituent(
                symbol=self.base_symbol(t.symbol),
                pair=t.symbol,
                price=t.last_price,
                change_24h=t.price_change_percent,
                volume_24h=t.quote_volume,
                weight=w,
            )
            for t, w in zip(selected, weights)
        ]

        logger.info(
            f"Basket built: {len(basket)} constituents "
            f"(top={basket[0].pair} weight={basket[0].weight:.4f})"
        )
        return basket
