"""
Unit tests for the daily rebalance scheduler.

Tests cover:
- next_rebalance_time: strictly-after semantics, timezones, day rollover
- RebalanceScheduler: one fire per instant, re-arming, failure handling, stop
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from services.crypto50_indexer.core.rebalance import (
    RebalanceScheduler,
    next_rebalance_time,
)


UTC = timezone.utc


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.now += timedelta(seconds=delay)


# =============================================================================
# next_rebalance_time
# =============================================================================

class TestNextRebalanceTime:
    """Tests for next_rebalance_time."""

    def test_before_target_same_day(self):
        now = datetime(2025, 2, 5, 15, 59, 30, tzinfo=UTC)
        assert next_rebalance_time(now) == datetime(2025, 2, 5, 16, 0, tzinfo=UTC)

    def test_exactly_at_target_rolls_to_next_day(self):
        """The instant itself is not 'after' - never fire twice for one instant."""
        now = datetime(2025, 2, 5, 16, 0, 0, tzinfo=UTC)
        assert next_rebalance_time(now) == datetime(2025, 2, 6, 16, 0, tzinfo=UTC)

    def test_inside_target_minute(self):
        now = datetime(2025, 2, 5, 16, 0, 45, tzinfo=UTC)
        assert next_rebalance_time(now) == datetime(2025, 2, 6, 16, 0, tzinfo=UTC)

    def test_after_target(self):
        now = datetime(2025, 2, 5, 23, 0, tzinfo=UTC)
        assert next_rebalance_time(now) == datetime(2025, 2, 6, 16, 0, tzinfo=UTC)

    def test_month_rollover(self):
        now = datetime(2025, 1, 31, 17, 0, tzinfo=UTC)
        assert next_rebalance_time(now) == datetime(2025, 2, 1, 16, 0, tzinfo=UTC)

    def test_naive_treated_as_utc(self):
        now = datetime(2025, 2, 5, 10, 0)
        result = next_rebalance_time(now)
        assert result == datetime(2025, 2, 5, 16, 0, tzinfo=UTC)
        assert result.tzinfo is not None

    def test_other_timezone(self):
        """Midnight UTC+8 is 16:00 UTC the previous day."""
        utc8 = timezone(timedelta(hours=8))
        now = datetime(2025, 2, 5, 23, 59, tzinfo=utc8)  # 15:59 UTC
        assert next_rebalance_time(now) == datetime(2025, 2, 5, 16, 0, tzinfo=UTC)

    def test_custom_instant(self):
        now = datetime(2025, 2, 5, 8, 0, tzinfo=UTC)
        assert next_rebalance_time(now, hour=9, minute=30) == datetime(2025, 2, 5, 9, 30, tzinfo=UTC)


# =============================================================================
# RebalanceScheduler
# =============================================================================

class TestRebalanceScheduler:
    """Tests for RebalanceScheduler."""

    def test_initial_state(self):
        scheduler = RebalanceScheduler(on_rebalance=AsyncMock())
        assert scheduler.next_run is None
        assert scheduler.run_count == 0
        assert not scheduler.is_running

    @pytest.mark.asyncio
    async def test_start_arms_timer_and_stop_cancels(self):
        clock = FakeClock(datetime(2025, 2, 5, 12, 0, tzinfo=UTC))
        callback = AsyncMock()
        scheduler = RebalanceScheduler(on_rebalance=callback, clock=clock)

        await scheduler.start()
        assert scheduler.is_running
        assert scheduler.next_run == datetime(2025, 2, 5, 16, 0, tzinfo=UTC)

        await scheduler.stop()
        assert not scheduler.is_running
        assert scheduler.next_run is None
        callback.assert_not_called()

    @pytest.mark.asyncio
    async def test_fires_once_per_day(self):
        """The loop fires at each target instant and re-arms for the next day."""
        clock = FakeClock(datetime(2025, 2, 5, 12, 0, tzinfo=UTC))
        fired: list[datetime] = []

        async def on_rebalance():
            fired.append(clock.now)
            if len(fired) == 3:
                scheduler._running = False

        scheduler = RebalanceScheduler(on_rebalance=on_rebalance, clock=clock)
        scheduler._running = True
        scheduler._next_run = next_rebalance_time(clock())

        with patch("asyncio.sleep", new=clock.sleep):
            await scheduler._loop()

        assert fired == [
            datetime(2025, 2, 5, 16, 0, tzinfo=UTC),
            datetime(2025, 2, 6, 16, 0, tzinfo=UTC),
            datetime(2025, 2, 7, 16, 0, tzinfo=UTC),
        ]
        assert scheduler.run_count == 3
        assert scheduler.next_run == datetime(2025, 2, 8, 16, 0, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_late_wakeup_fires_once(self):
        """Waking up late inside the target minute still fires exactly once."""
        clock = FakeClock(datetime(2025, 2, 5, 15, 59, 59, tzinfo=UTC))
        fired: list[datetime] = []

        async def late_sleep(delay: float) -> None:
            clock.now += timedelta(seconds=delay + 30)

        async def on_rebalance():
            fired.append(clock.now)
            if len(fired) == 2:
                scheduler._running = False

        scheduler = RebalanceScheduler(on_rebalance=on_rebalance, clock=clock)
        scheduler._running = True
        scheduler._next_run = next_rebalance_time(clock())

        with patch("asyncio.sleep", new=late_sleep):
            await scheduler._loop()

        assert len(fired) == 2
        assert fired[1] - fired[0] == timedelta(days=1)

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_schedule(self):
        clock = FakeClock(datetime(2025, 2, 5, 12, 0, tzinfo=UTC))
        calls = 0

        async def on_rebalance():
            nonlocal calls
            calls += 1
            if calls == 1:
                raise RuntimeError("snapshot exploded")
            scheduler._running = False

        scheduler = RebalanceScheduler(on_rebalance=on_rebalance, clock=clock)
        scheduler._running = True
        scheduler._next_run = next_rebalance_time(clock())

        with patch("asyncio.sleep", new=clock.sleep):
            await scheduler._loop()

        assert calls == 2
        assert scheduler.run_count == 2

    @pytest.mark.asyncio
    async def test_stop_during_sleep_does_not_fire(self):
        callback = AsyncMock()
        scheduler = RebalanceScheduler(on_rebalance=callback)

        await scheduler.start()
        await asyncio.sleep(0)
        await scheduler.stop()

        callback.assert_not_called()
        assert scheduler.run_count == 0

    @pytest.mark.asyncio
    async def test_double_start_is_noop(self):
        scheduler = RebalanceScheduler(on_rebalance=AsyncMock())
        await scheduler.start()
        task = scheduler._task
        await scheduler.start()
        assert scheduler._task is task
        await scheduler.stop()
