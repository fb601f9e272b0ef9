"""
Binance 24h Ticker Snapshot Client

Fetches the full 24h ticker listing used to build the basket at startup
and at every rebalance.

GET https://api.binance.com/api/v3/ticker/24hr

Response (array, numerics string-encoded):
[
    {
        "symbol": "BTCUSDT",
        "priceChangePercent": "1.25",
        "lastPrice": "95000.00",
        "quoteVolume": "1500000000.00",
        ...
    },
    ...
]

Transport and HTTP failures never raise to the caller; they are logged
and reported as an empty listing.
"""

import logging
import math
import time
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from ..core.constants import BINANCE_TICKER_24H_URL, SNAPSHOT_TIMEOUT_SECONDS
from ..core.metrics import record_snapshot_fetch
from ..core.types import TickerSnapshot

logger = logging.getLogger(__name__)


class BinanceSnapshotClient:
    """
    HTTP client for the Binance 24h ticker listing.

    Usage:
        client = BinanceSnapshotClient()
        tickers = await client.fetch_tickers()
        await client.close()
    """

    def __init__(
        self,
        url: str = BINANCE_TICKER_24H_URL,
        timeout: float = SNAPSHOT_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.timeout = timeout
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def fetch_tickers(self) -> list[TickerSnapshot]:
        """
        Fetch and validate the 24h ticker listing.

        Returns:
            Valid ticker records; empty on any transport or HTTP failure
        """
        client = await self._get_client()
        started = time.monotonic()

        try:
            response = await client.get(self.url)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                f"[binance/snapshot] HTTP error {e.response.status_code}: "
                f"{e.response.text[:200] if e.response.text else 'no body'}"
            )
            return []
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"[binance/snapshot] Fetch failed: {e}")
            return []
        finally:
            record_snapshot_fetch(time.monotonic() - started)

        if not isinstance(data, list):
            logger.error(f"[binance/snapshot] Unexpected payload type: {type(data).__name__}")
            return []

        tickers = self.parse_tickers(data)
        logger.info(f"[binance/snapshot] Fetched {len(tickers)}/{len(data)} valid tickers")
        return tickers

    @staticmethod
    def parse_tickers(records: list[Any]) -> list[TickerSnapshot]:
        """Validate raw records, skipping malformed or non-finite ones."""
        tickers: list[TickerSnapshot] = []
        skipped = 0

        for record in records:
            try:
                ticker = TickerSnapshot.model_validate(record)
            except ValidationError:
                skipped += 1
                continue

            if not all(
                math.isfinite(v)
                for v in (ticker.price_change_percent, ticker.last_price, ticker.quote_volume)
            ):
                skipped += 1
                continue

            tickers.append(ticker)

        if skipped:
            logger.warning(f"[binance/snapshot] Skipped {skipped} invalid ticker records")
        return tickers
