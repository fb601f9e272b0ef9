"""
Crypto50 Indexer Constituent Store

Owns the live basket. Two writers touch it:
- the ticker normalizer, one constituent at a time (price / change)
- bootstrap and rebalance, which replace the whole basket

Every replace starts a new generation. Updates addressed to an older
generation are discarded, so a frame from a feed that is being torn down
can never land in the basket that replaced it.
"""

import threading
from typing import Optional

from .types import Constituent


class ConstituentStore:
    """
    Lock-guarded basket with snapshot reads.

    Constituents are immutable models; an update swaps in a copy, so
    snapshot() always returns whole, consistent constituents.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._constituents: dict[str, Constituent] = {}
        self._generation = 0

    @property
    def generation(self) -> int:
        """Current basket generation (0 before the first replace)."""
        with self._lock:
            return self._generation

    def replace(self, constituents: list[Constituent]) -> int:
        """
        Replace the basket wholesale.

        Order is preserved (volume rank). Duplicate pairs keep the first entry.

        Returns:
            The new generation number
        """
        basket: dict[str, Constituent] = {}
        for constituent in constituents:
            basket.setdefault(constituent.pair, constituent)

        with self._lock:
            self._constituents = basket
            self._generation += 1
            return self._generation

    def apply_update(
        self,
        pair: str,
        price: float,
        change_24h: float,
        generation: Optional[int] = None,
    ) -> bool:
        """
        Overwrite price and change for one pair (last write wins).

        Args:
            pair: Exact trading pair, e.g. BTCUSDT
            price: New last price
            change_24h: New percent change
            generation: Basket generation the update was produced for;
                None applies to whatever basket is current

        Returns:
            True if applied, False if the pair is unknown or the generation is stale
        """
        with self._lock:
            if generation is not None and generation != self._generation:
                return False
            current = self._constituents.get(pair)
            if current is None:
                return False
            self._constituents[pair] = current.model_copy(
                update={"price": price, "change_24h": change_24h}
            )
            return True

    def snapshot(self) -> list[Constituent]:
        """Consistent copy of the basket, in volume-rank order."""
        with self._lock:
            return list(self._constituents.values())

    def get(self, pair: str) -> Optional[Constituent]:
        """Look up a constituent by exact pair."""
        with self._lock:
            return self._constituents.get(pair)

    def has_pair(self, pair: str) -> bool:
        with self._lock:
            return pair in self._constituents

    @property
    def pairs(self) -> list[str]:
        """Pairs in the current basket, in volume-rank order."""
        with self._lock:
            return list(self._constituents.keys())

    def total_volume(self) -> float:
        """Sum of 24h quote volume across the basket (as of the last rebalance)."""
        with self._lock:
            return sum(c.volume_24h for c in self._constituents.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._constituents)
