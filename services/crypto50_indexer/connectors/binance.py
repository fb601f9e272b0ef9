"""
Binance Mini-Ticker Connector

WebSocket connector for the Binance spot per-pair miniTicker stream.
One connection subscribes to every pair of the current basket.

Binance WebSocket API:
- Spot: wss://stream.binance.com:9443/ws

Subscription:
{"method": "SUBSCRIBE", "params": ["btcusdt@miniTicker", ...], "id": 1}

Message format (24hrMiniTicker):
{
    "e": "24hrMiniTicker",
    "E": 1672515782136,    // Event time (ms)
    "s": "BTCUSDT",        // Symbol
    "c": "95000.00",       // Close price
    "o": "94000.00",       // Open price (24h ago)
    "h": "95500.00",       // High
    "l": "93800.00",       // Low
    "v": "10000",          // Base volume
    "q": "950000000"       // Quote volume
}
"""

import logging
from typing import Any, Callable, Optional, Sequence

from ..core.constants import (
    BINANCE_WS_ENDPOINT,
    MAX_STREAMS_PER_CONNECTION,
    get_stream_name,
)
from ..core.ticker_normalizer import parse_frame
from ..core.types import ConnectionState
from .base import BaseConnector, Frame

logger = logging.getLogger(__name__)


class BinanceMiniTickerConnector(BaseConnector):
    """
    Binance miniTicker connector for a fixed set of pairs.

    The pair list is fixed for the connector's lifetime; a rebalance
    replaces the connector instead of mutating its subscription.

    Usage:
        connector = BinanceMiniTickerConnector(
            pairs=["BTCUSDT", "ETHUSDT"],
            on_frame=handle_frame,
        )
        await connector.start()
        # ... connector runs in background ...
        await connector.stop()
    """

    def __init__(
        self,
        pairs: Sequence[str],
        on_frame: Optional[Callable[[Frame], None]] = None,
        on_state_change: Optional[Callable[[ConnectionState], None]] = None,
        ws_endpoint: str = BINANCE_WS_ENDPOINT,
    ):
        super().__init__(
            name="binance/miniTicker",
            on_frame=on_frame,
            on_state_change=on_state_change,
        )

        if not pairs:
            raise ValueError("Binance miniTicker connector needs at least one pair")
        if len(pairs) > MAX_STREAMS_PER_CONNECTION:
            raise ValueError(
                f"{len(pairs)} pairs exceed the {MAX_STREAMS_PER_CONNECTION} "
                f"streams allowed per connection"
            )

        self.pairs = list(dict.fromkeys(p.upper() for p in pairs))
        self.ws_endpoint = ws_endpoint
        self._streams = [get_stream_name(p) for p in self.pairs]

    @property
    def streams(self) -> list[str]:
        return list(self._streams)

    @property
    def subscribed_count(self) -> int:
        return len(self._streams)

    def get_ws_url(self) -> str:
        """Raw stream endpoint; streams are added by SUBSCRIBE."""
        return self.ws_endpoint

    def build_subscription_message(self) -> dict[str, Any]:
        """Build the Binance SUBSCRIBE message for every basket pair."""
        return {
            "method": "SUBSCRIBE",
            "params": self.streams,
            "id": 1,
        }

    def parse_message(self, data: Any) -> list[Frame]:
        """
        Parse a Binance message into frames.

        Handles:
        - miniTicker / ticker events
        - Combined-stream envelopes {"stream": ..., "data": {...}}
        - Array payloads (all-market streams)
        - Subscription confirmations (ignored)
        - Error messages (logged)
        """
        if isinstance(data, list):
            frames: list[Frame] = []
            for item in data:
                frames.extend(self.parse_message(item))
            return frames

        if not isinstance(data, dict):
            logger.debug(f"{self._log_prefix} Ignoring non-object message: {data!r}")
            return []

        if "result" in data and "id" in data:
            logger.debug(f"{self._log_prefix} Subscription confirmed: {data}")
            return []

        if "error" in data:
            logger.error(f"{self._log_prefix} Error from Binance: {data['error']}")
            return []

        if "stream" in data and "data" in data:
            return self.parse_message(data["data"])

        frame = parse_frame(data)
        if frame is None:
            logger.debug(f"{self._log_prefix} Ignoring event type: {data.get('e')}")
            return []
        return [frame]
