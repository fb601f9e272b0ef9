"""
Unit tests for Crypto50 Indexer Aggregator.

Tests bootstrap, stream application, ticks, rebalancing and teardown
with a mocked snapshot client and connector factory.
"""

import asyncio

import pytest
from unittest.mock import MagicMock, AsyncMock

from services.crypto50_indexer.core.types import (
    ConnectionState,
    FeedTelemetry,
    MiniTickerFrame,
    TickerSnapshot,
)
from services.crypto50_indexer.aggregator.index_aggregator import (
    IndexAggregator,
    AggregatorConfig,
)


def make_ticker(symbol: str, volume: float, change: float = 0.0, price: float = 100.0) -> TickerSnapshot:
    return TickerSnapshot(
        symbol=symbol,
        price_change_percent=change,
        last_price=price,
        quote_volume=volume,
    )


BASKET_TICKERS = [
    make_ticker("BTCUSDT", 600.0, change=2.0, price=95000.0),
    make_ticker("ETHUSDT", 400.0, change=-1.0, price=3500.0),
    make_ticker("BTCUPUSDT", 9000.0, change=50.0),  # leveraged, excluded
]


class FakeConnectorFactory:
    """Records every connector the aggregator creates."""

    def __init__(self):
        self.created: list[dict] = []

    def __call__(self, pairs, on_frame, on_state_change):
        connector = MagicMock()
        connector.start = AsyncMock()
        connector.stop = AsyncMock()
        connector.is_connected.return_value = True
        connector.get_telemetry.return_value = FeedTelemetry(
            connection_state=ConnectionState.CONNECTED,
            subscribed_pairs=len(pairs),
        )
        self.created.append({
            "pairs": list(pairs),
            "on_frame": on_frame,
            "on_state_change": on_state_change,
            "connector": connector,
        })
        return connector

    @property
    def latest(self) -> dict:
        return self.created[-1]


@pytest.fixture
def snapshot_client():
    client = MagicMock()
    client.fetch_tickers = AsyncMock(return_value=list(BASKET_TICKERS))
    client.close = AsyncMock()
    return client


@pytest.fixture
def factory():
    return FakeConnectorFactory()


@pytest.fixture
def aggregator(snapshot_client, factory):
    return IndexAggregator(
        config=AggregatorConfig(),
        snapshot_client=snapshot_client,
        connector_factory=factory,
    )


def frame(pair: str, close: float, open_: float) -> MiniTickerFrame:
    return MiniTickerFrame(pair=pair, close_price=close, open_price=open_)


class TestAggregatorConfig:
    """Tests for AggregatorConfig."""

    def test_default_config(self):
        config = AggregatorConfig()
        assert config.base_price == 1000.0
        assert config.basket_size == 50
        assert config.quote_asset == "USDT"
        assert config.tick_interval_ms == 1_000
        assert config.candle_interval_ms == 60_000
        assert config.max_candles == 100
        assert config.rebalance_hour_utc == 16
        assert config.reset_session_on_rebalance is False

    def test_custom_config(self):
        config = AggregatorConfig(basket_size=10, base_price=100.0)
        aggregator = IndexAggregator(config=config, snapshot_client=MagicMock())
        assert aggregator.calculator.basket_size == 10
        assert aggregator.engine.base_price == 100.0


class TestBootstrap:
    """Tests for the initial basket load."""

    def test_aggregator_creation(self, aggregator):
        assert aggregator.generation == 0
        assert aggregator.get_constituents() == []
        assert not aggregator.is_bootstrapped
        assert not aggregator.is_connected()
        assert aggregator.get_telemetry().connection_state == ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_bootstrap_loads_basket_and_subscribes(self, aggregator, factory):
        count = await aggregator.bootstrap()

        assert count == 2
        assert aggregator.generation == 1
        assert aggregator.is_bootstrapped
        assert [c.pair for c in aggregator.get_constituents()] == ["BTCUSDT", "ETHUSDT"]
        assert aggregator.get_total_volume() == 1000.0
        assert aggregator.last_rebalance_time is not None

        assert len(factory.created) == 1
        assert factory.latest["pairs"] == ["BTCUSDT", "ETHUSDT"]
        factory.latest["connector"].start.assert_awaited_once()
        assert aggregator.is_connected()

    @pytest.mark.asyncio
    async def test_bootstrap_empty_snapshot_runs_degraded(self, aggregator, snapshot_client, factory):
        """Fetch failure -> empty basket, no stream, index pinned at base."""
        snapshot_client.fetch_tickers.return_value = []

        count = await aggregator.bootstrap()

        assert count == 0
        assert aggregator.is_bootstrapped
        assert factory.created == []
        assert not aggregator.is_connected()

        state = aggregator.tick(now_ms=1_000)
        assert state.current_price == 1000.0
        assert state.high_price == state.low_price == 1000.0


class TestStreamAndTick:
    """Tests for frame application and index ticks."""

    @pytest.mark.asyncio
    async def test_tick_uses_snapshot_changes(self, aggregator):
        """BTC +2% @ 0.6, ETH -1% @ 0.4 -> 1008."""
        await aggregator.bootstrap()

        state = aggregator.tick(now_ms=60_000)

        assert state.current_price == pytest.approx(1008.0)
        assert state.change_24h == pytest.approx(8.0)
        assert state.change_percent == pytest.approx(0.8)
        assert state.last_update == 60_000
        assert aggregator.get_index_state() == state

    @pytest.mark.asyncio
    async def test_frame_updates_constituent(self, aggregator, factory):
        await aggregator.bootstrap()
        on_frame = factory.latest["on_frame"]

        on_frame(frame("BTCUSDT", 95000.0, 94000.0))

        btc = aggregator.store.get("BTCUSDT")
        assert btc.price == 95000.0
        assert btc.change_24h == pytest.approx(1.0638, abs=1e-4)

    @pytest.mark.asyncio
    async def test_unknown_pair_frame_ignored(self, aggregator, factory):
        await aggregator.bootstrap()
        before = aggregator.get_constituents()

        factory.latest["on_frame"](frame("DOGEUSDT", 0.2, 0.1))

        assert aggregator.get_constituents() == before

    @pytest.mark.asyncio
    async def test_tick_feeds_candles(self, aggregator):
        await aggregator.bootstrap()

        aggregator.tick(now_ms=0)
        aggregator.tick(now_ms=30_000)
        aggregator.tick(now_ms=65_000)

        candles = aggregator.get_candles()
        assert [c.time for c in candles] == [0, 60_000]
        assert aggregator.get_active_candle().time == 60_000
        assert aggregator.get_candles(limit=1)[0].time == 60_000

    @pytest.mark.asyncio
    async def test_callbacks(self, snapshot_client, factory):
        on_index_update = MagicMock()
        on_candle_complete = MagicMock()
        aggregator = IndexAggregator(
            snapshot_client=snapshot_client,
            connector_factory=factory,
            on_index_update=on_index_update,
            on_candle_complete=on_candle_complete,
        )
        await aggregator.bootstrap()

        aggregator.tick(now_ms=0)
        aggregator.tick(now_ms=60_000)

        assert on_index_update.call_count == 2
        on_candle_complete.assert_called_once()
        assert on_candle_complete.call_args[0][0].time == 0


class TestRebalance:
    """Tests for basket replacement."""

    @pytest.mark.asyncio
    async def test_rebalance_replaces_basket_and_resubscribes(self, aggregator, snapshot_client, factory):
        await aggregator.bootstrap()
        old_connector = factory.latest["connector"]

        snapshot_client.fetch_tickers.return_value = [
            make_ticker("SOLUSDT", 700.0, change=5.0),
            make_ticker("BTCUSDT", 300.0, change=1.0),
        ]
        replaced = await aggregator.rebalance()

        assert replaced
        assert aggregator.generation == 2
        assert [c.pair for c in aggregator.get_constituents()] == ["SOLUSDT", "BTCUSDT"]
        old_connector.stop.assert_awaited_once()
        assert len(factory.created) == 2
        assert factory.latest["pairs"] == ["SOLUSDT", "BTCUSDT"]
        factory.latest["connector"].start.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stale_generation_frame_discarded(self, aggregator, snapshot_client, factory):
        """A frame from the torn-down feed never lands in the new basket."""
        await aggregator.bootstrap()
        old_on_frame = factory.latest["on_frame"]

        await aggregator.rebalance()
        new_on_frame = factory.latest["on_frame"]
        btc_before = aggregator.store.get("BTCUSDT")

        old_on_frame(frame("BTCUSDT", 1.0, 2.0))
        assert aggregator.store.get("BTCUSDT") == btc_before

        new_on_frame(frame("BTCUSDT", 96000.0, 95000.0))
        assert aggregator.store.get("BTCUSDT").price == 96000.0

    @pytest.mark.asyncio
    async def test_empty_rebalance_keeps_basket(self, aggregator, snapshot_client, factory):
        await aggregator.bootstrap()
        before = aggregator.get_constituents()

        snapshot_client.fetch_tickers.return_value = []
        replaced = await aggregator.rebalance()

        assert not replaced
        assert aggregator.generation == 1
        assert aggregator.get_constituents() == before
        assert len(factory.created) == 1
        factory.latest["connector"].stop.assert_not_called()

    @pytest.mark.asyncio
    async def test_session_bounds_persist_by_default(self, aggregator):
        await aggregator.bootstrap()
        aggregator.tick(now_ms=0)  # 1008

        await aggregator.rebalance()
        state = aggregator.get_index_state()

        assert state.open_price == 1000.0
        assert state.high_price == pytest.approx(1008.0)

    @pytest.mark.asyncio
    async def test_session_reset_on_rebalance(self, snapshot_client, factory):
        aggregator = IndexAggregator(
            config=AggregatorConfig(reset_session_on_rebalance=True),
            snapshot_client=snapshot_client,
            connector_factory=factory,
        )
        await aggregator.bootstrap()
        aggregator.tick(now_ms=0)

        await aggregator.rebalance()
        state = aggregator.get_index_state()

        assert state.open_price == pytest.approx(1008.0)
        assert state.high_price == pytest.approx(1008.0)
        assert state.low_price == pytest.approx(1008.0)


class TestLifecycle:
    """Tests for start/stop."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, aggregator, snapshot_client, factory):
        await aggregator.start()

        assert aggregator.is_running
        assert aggregator.generation == 1
        assert aggregator.next_rebalance_time is not None
        assert aggregator._tick_task is not None

        connector = factory.latest["connector"]
        await aggregator.stop()

        assert not aggregator.is_running
        assert aggregator._tick_task is None
        assert aggregator.next_rebalance_time is None
        connector.stop.assert_awaited_once()
        snapshot_client.close.assert_awaited_once()
        assert not aggregator.is_connected()

    @pytest.mark.asyncio
    async def test_stop_during_pending_rebalance(self, aggregator, snapshot_client, factory):
        """A rebalance still fetching when stop() runs must not resubscribe."""
        await aggregator.bootstrap()
        assert len(factory.created) == 1

        gate = asyncio.Event()

        async def gated_fetch():
            await gate.wait()
            return list(BASKET_TICKERS)

        snapshot_client.fetch_tickers = AsyncMock(side_effect=gated_fetch)

        rebalance_task = asyncio.create_task(aggregator.rebalance())
        await asyncio.sleep(0)
        stop_task = asyncio.create_task(aggregator.stop())
        await asyncio.sleep(0)

        gate.set()
        replaced = await rebalance_task
        await stop_task

        assert replaced is False
        assert len(factory.created) == 1
        assert aggregator.generation == 1
        assert aggregator._connector is None
        factory.latest["connector"].stop.assert_awaited_once()
        assert not aggregator.is_connected()

    @pytest.mark.asyncio
    async def test_rebalance_after_stop_is_noop(self, aggregator, factory):
        await aggregator.bootstrap()
        await aggregator.stop()

        assert await aggregator.rebalance() is False
        assert len(factory.created) == 1
        assert aggregator._connector is None

    @pytest.mark.asyncio
    async def test_double_start_is_noop(self, aggregator, snapshot_client):
        await aggregator.start()
        await aggregator.start()

        snapshot_client.fetch_tickers.assert_awaited_once()
        await aggregator.stop()
