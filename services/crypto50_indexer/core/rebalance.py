"""
Crypto50 Indexer Rebalance Scheduler

Fires the basket rebalance once per day at a fixed UTC wall-clock instant
(16:00 UTC, i.e. midnight UTC+8).

The scheduler arms a one-shot sleep until the next instant, runs the
callback, then re-arms for the following day. A failing callback is logged
and the schedule continues.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from .constants import REBALANCE_HOUR_UTC, REBALANCE_MINUTE_UTC

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def next_rebalance_time(
    now: datetime,
    hour: int = REBALANCE_HOUR_UTC,
    minute: int = REBALANCE_MINUTE_UTC,
) -> datetime:
    """
    Next rebalance instant strictly after `now`.

    Args:
        now: Reference time (naive values are treated as UTC)
        hour: Rebalance hour (UTC)
        minute: Rebalance minute (UTC)

    Returns:
        Timezone-aware UTC datetime

    Example:
        >>> next_rebalance_time(datetime(2025, 2, 5, 15, 59, tzinfo=timezone.utc))
        datetime.datetime(2025, 2, 5, 16, 0, tzinfo=datetime.timezone.utc)
    """
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    else:
        now = now.astimezone(timezone.utc)

    target = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return target


class RebalanceScheduler:
    """
    Daily one-shot timer for basket rebalancing.

    Usage:
        scheduler = RebalanceScheduler(on_rebalance=aggregator.rebalance)
        await scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        on_rebalance: Callable[[], Awaitable[object]],
        hour: int = REBALANCE_HOUR_UTC,
        minute: int = REBALANCE_MINUTE_UTC,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.on_rebalance = on_rebalance
        self.hour = hour
        self.minute = minute
        self._clock = clock

        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._next_run: Optional[datetime] = None
        self._run_count = 0

    @property
    def next_run(self) -> Optional[datetime]:
        """Instant the timer is currently armed for (None when stopped)."""
        return self._next_run

    @property
    def run_count(self) -> int:
        return self._run_count

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Arm the timer. Calling start twice is a no-op."""
        if self._running:
            return
        self._running = True
        self._next_run = next_rebalance_time(self._clock(), self.hour, self.minute)
        self._task = asyncio.create_task(self._loop())
        logger.info(f"Rebalance scheduler armed for {self._next_run.isoformat()}")

    async def stop(self) -> None:
        """Cancel the pending timer."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._next_run = None
        logger.info("Rebalance scheduler stopped")

    async def _loop(self) -> None:
        while self._running:
            target = self._next_run
            if target is None:
                target = next_rebalance_time(self._clock(), self.hour, self.minute)
                self._next_run = target

            delay = (target - self._clock()).total_seconds()
            if delay > 0:
                await asyncio.sleep(delay)

            if not self._running:
                break

            await self._fire(target)

            # Re-arm strictly after the instant just served
            self._next_run = next_rebalance_time(
                max(self._clock(), target), self.hour, self.minute
            )
            logger.info(f"Next rebalance at {self._next_run.isoformat()}")

    async def _fire(self, target: datetime) -> None:
        logger.info(f"Rebalance fired (scheduled {target.isoformat()})")
        try:
            await self.on_rebalance()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Scheduled rebalance failed: {e}")
        finally:
            self._run_count += 1
