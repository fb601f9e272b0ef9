"""
Index Aggregator

Owns the live basket and drives the synthetic index.

Responsibilities:
- Bootstrap the basket from the 24h ticker snapshot
- Run the miniTicker stream for the current basket generation
- Recompute the index and fold it into candles once per tick
- Rebalance the basket daily (and on demand), resubscribing the stream
- Expose read-only snapshots for the HTTP layer

Flow:
    snapshot -> WeightCalculator -> ConstituentStore (generation N)
    stream frame (generation N) -> TickerNormalizer -> ConstituentStore
    tick -> IndexPriceEngine -> CandleAggregator -> on_index_update
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional, Sequence

from ..core.types import (
    Candle,
    ConnectionState,
    Constituent,
    FeedTelemetry,
    IndexState,
)
from ..core.constants import (
    BASE_INDEX_VALUE,
    BASKET_SIZE,
    BINANCE_WS_ENDPOINT,
    CANDLE_INTERVAL_MS,
    EXCLUDED_PAIR_PATTERNS,
    INDEX_TICK_INTERVAL_MS,
    MAX_CANDLES,
    QUOTE_ASSET,
    REBALANCE_HOUR_UTC,
    REBALANCE_MINUTE_UTC,
)
from ..core.candle_aggregator import CandleAggregator
from ..core.constituent_store import ConstituentStore
from ..core.index_engine import IndexPriceEngine
from ..core.metrics import record_candle_opened, record_index_tick, record_rebalance
from ..core.rebalance import RebalanceScheduler
from ..core.ticker_normalizer import TickerNormalizer
from ..core.weights import WeightCalculator
from ..connectors.base import BaseConnector, Frame
from ..connectors.binance import BinanceMiniTickerConnector
from ..connectors.snapshot import BinanceSnapshotClient

logger = logging.getLogger(__name__)

ConnectorFactory = Callable[
    [Sequence[str], Callable[[Frame], None], Callable[[ConnectionState], None]],
    BaseConnector,
]


@dataclass
class AggregatorConfig:
    """Configuration for the index aggregator."""

    base_price: float = BASE_INDEX_VALUE
    basket_size: int = BASKET_SIZE
    quote_asset: str = QUOTE_ASSET
    excluded_patterns: tuple[str, ...] = field(default=EXCLUDED_PAIR_PATTERNS)
    tick_interval_ms: int = INDEX_TICK_INTERVAL_MS
    candle_interval_ms: int = CANDLE_INTERVAL_MS
    max_candles: int = MAX_CANDLES
    rebalance_hour_utc: int = REBALANCE_HOUR_UTC
    rebalance_minute_utc: int = REBALANCE_MINUTE_UTC
    reset_session_on_rebalance: bool = False
    ws_endpoint: str = BINANCE_WS_ENDPOINT


class IndexAggregator:
    """
    Single owner of the basket, the index state and the candle series.

    Usage:
        aggregator = IndexAggregator(
            config=AggregatorConfig(),
            on_index_update=handle_index,
        )
        await aggregator.start()
        # ... runs in background ...
        await aggregator.stop()
    """

    def __init__(
        self,
        config: Optional[AggregatorConfig] = None,
        snapshot_client: Optional[BinanceSnapshotClient] = None,
        on_index_update: Optional[Callable[[IndexState], None]] = None,
        on_candle_complete: Optional[Callable[[Candle], None]] = None,
        connector_factory: Optional[ConnectorFactory] = None,
    ):
        self.config = config or AggregatorConfig()
        self.snapshot_client = snapshot_client or BinanceSnapshotClient()
        self.on_index_update = on_index_update
        self.on_candle_complete = on_candle_complete
        self._connector_factory = connector_factory or self._default_connector

        self.store = ConstituentStore()
        self.calculator = WeightCalculator(
            basket_size=self.config.basket_size,
            quote_asset=self.config.quote_asset,
            excluded_patterns=tuple(self.config.excluded_patterns),
        )
        self.normalizer = TickerNormalizer(self.store)
        self.engine = IndexPriceEngine(base_price=self.config.base_price)
        self.candles = CandleAggregator(
            interval_ms=self.config.candle_interval_ms,
            max_candles=self.config.max_candles,
            on_candle_complete=self._handle_candle_complete,
        )
        self.scheduler = RebalanceScheduler(
            on_rebalance=self.rebalance,
            hour=self.config.rebalance_hour_utc,
            minute=self.config.rebalance_minute_utc,
        )

        self._connector: Optional[BaseConnector] = None
        self._rebalance_lock = asyncio.Lock()
        self._running = False
        self._stopped = False
        self._tick_task: Optional[asyncio.Task] = None
        self._bootstrapped = False
        self._last_rebalance_ms: Optional[int] = None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Bootstrap the basket, then start the stream, tick loop and scheduler."""
        if self._running:
            logger.warning("Aggregator already running")
            return

        self._running = True
        self._stopped = False
        logger.info("Starting index aggregator...")

        await self.bootstrap()
        if self._stopped:
            return

        self._tick_task = asyncio.create_task(self._tick_loop())
        await self.scheduler.start()

        logger.info(
            f"Aggregator started: {len(self.store)} constituents, "
            f"tick={self.config.tick_interval_ms}ms, "
            f"candle={self.config.candle_interval_ms}ms"
        )

    async def stop(self) -> None:
        """Cancel the tick loop and scheduler, stop the stream, close HTTP."""
        self._running = False
        self._stopped = True

        if self._tick_task:
            self._tick_task.cancel()
            try:
                await self._tick_task
            except asyncio.CancelledError:
                pass
            self._tick_task = None

        await self.scheduler.stop()

        async with self._rebalance_lock:
            if self._connector:
                await self._connector.stop()
                self._connector = None

        await self.snapshot_client.close()
        logger.info("Aggregator stopped")

    # =========================================================================
    # Basket (re)initialization
    # =========================================================================

    async def bootstrap(self) -> int:
        """
        Build the initial basket from a fresh snapshot.

        An empty snapshot leaves the basket empty; the index stays at base.

        Returns:
            Number of constituents loaded
        """
        async with self._rebalance_lock:
            basket = await self._fetch_basket()
            if self._stopped:
                logger.info("Aggregator stopped during bootstrap - discarding snapshot")
                return 0
            if not basket:
                logger.warning("Bootstrap got no constituents - index pinned at base value")
            await self._install_basket(basket)
            self._bootstrapped = True
            record_rebalance("success" if basket else "empty", len(basket))
            return len(basket)

    async def rebalance(self) -> bool:
        """
        Re-select and re-weight the basket, then resubscribe the stream.

        An empty snapshot keeps the current basket.

        Returns:
            True if the basket was replaced
        """
        async with self._rebalance_lock:
            basket = await self._fetch_basket()
            if self._stopped:
                logger.info("Aggregator stopped during rebalance - discarding snapshot")
                return False
            if not basket:
                logger.warning(
                    f"Rebalance got no constituents - keeping current basket "
                    f"({len(self.store)} constituents)"
                )
                record_rebalance("kept", len(self.store))
                return False

            previous = set(self.store.pairs)
            await self._install_basket(basket)
            current = set(self.store.pairs)

            if self.config.reset_session_on_rebalance:
                self.engine.reset_session()

            record_rebalance("success", len(basket))
            logger.info(
                f"Rebalance complete: {len(basket)} constituents, "
                f"+{len(current - previous)} / -{len(previous - current)} pairs, "
                f"generation={self.store.generation}"
            )
            return True

    async def _fetch_basket(self) -> list[Constituent]:
        tickers = await self.snapshot_client.fetch_tickers()
        return self.calculator.build_basket(tickers)

    async def _install_basket(self, basket: list[Constituent]) -> None:
        generation = self.store.replace(basket)
        self._last_rebalance_ms = int(time.time() * 1000)
        await self._resubscribe(generation)

    async def _resubscribe(self, generation: int) -> None:
        """Replace the stream connector with one bound to `generation`."""
        if self._connector:
            await self._connector.stop()
            self._connector = None

        pairs = self.store.pairs
        if not pairs:
            return

        def on_frame(frame: Frame, g: int = generation) -> None:
            self._handle_frame(frame, g)

        self._connector = self._connector_factory(pairs, on_frame, self._handle_state_change)
        await self._connector.start()
        logger.info(f"Subscribed stream to {len(pairs)} pairs (generation={generation})")

    def _default_connector(
        self,
        pairs: Sequence[str],
        on_frame: Callable[[Frame], None],
        on_state_change: Callable[[ConnectionState], None],
    ) -> BaseConnector:
        return BinanceMiniTickerConnector(
            pairs=pairs,
            on_frame=on_frame,
            on_state_change=on_state_change,
            ws_endpoint=self.config.ws_endpoint,
        )

    # =========================================================================
    # Stream and tick handlers
    # =========================================================================

    def _handle_frame(self, frame: Frame, generation: int) -> bool:
        return self.normalizer.apply(frame, generation=generation)

    def _handle_state_change(self, state: ConnectionState) -> None:
        logger.info(f"Stream state: {state.value}")

    def _handle_candle_complete(self, candle: Candle) -> None:
        logger.info(
            f"Candle closed: time={candle.time} o={candle.open:.2f} "
            f"h={candle.high:.2f} l={candle.low:.2f} c={candle.close:.2f}"
        )
        if self.on_candle_complete:
            self.on_candle_complete(candle)

    def tick(self, now_ms: Optional[int] = None) -> IndexState:
        """
        Recompute the index from the current basket and fold it into candles.

        Args:
            now_ms: Tick time (ms since epoch, default: now)

        Returns:
            The new IndexState
        """
        if now_ms is None:
            now_ms = int(time.time() * 1000)

        state = self.engine.recompute(self.store.snapshot(), timestamp_ms=now_ms)

        previous = self.candles.get_active_candle()
        active = self.candles.add_sample(now_ms, state.current_price)
        if previous is None or active.time != previous.time:
            record_candle_opened()

        record_index_tick(state.current_price)

        if self.on_index_update:
            self.on_index_update(state)
        return state

    async def _tick_loop(self) -> None:
        """Background loop that recomputes the index on every interval boundary."""
        logger.info("Index tick loop started")

        while self._running:
            try:
                await self._wait_for_tick_boundary()

                if not self._running:
                    break

                self.tick()

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in tick loop: {e}")
                await asyncio.sleep(self.config.tick_interval_ms / 1000)

        logger.info("Index tick loop stopped")

    async def _wait_for_tick_boundary(self) -> None:
        """Wait until the next tick interval boundary."""
        interval = self.config.tick_interval_ms / 1000
        now = time.time()
        delay = interval - (now % interval)
        await asyncio.sleep(delay)

    # =========================================================================
    # Read-only accessors
    # =========================================================================

    def get_index_state(self) -> IndexState:
        return self.engine.state

    def get_candles(self, limit: Optional[int] = None) -> list[Candle]:
        """Get candles, oldest first (active candle last)."""
        return self.candles.get_candles(limit)

    def get_active_candle(self) -> Optional[Candle]:
        return self.candles.get_active_candle()

    def get_constituents(self) -> list[Constituent]:
        """Current basket in volume-rank order."""
        return self.store.snapshot()

    def get_total_volume(self) -> float:
        return self.store.total_volume()

    def is_connected(self) -> bool:
        """Online flag for the stream."""
        return self._connector is not None and self._connector.is_connected()

    def get_telemetry(self) -> FeedTelemetry:
        if self._connector is None:
            return FeedTelemetry()
        return self._connector.get_telemetry()

    @property
    def generation(self) -> int:
        return self.store.generation

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_bootstrapped(self) -> bool:
        return self._bootstrapped

    @property
    def last_rebalance_time(self) -> Optional[int]:
        """When the basket was last replaced (ms since epoch)."""
        return self._last_rebalance_ms

    @property
    def next_rebalance_time(self) -> Optional[datetime]:
        return self.scheduler.next_run
