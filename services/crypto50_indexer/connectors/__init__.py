# Crypto50 Indexer Connectors
# Binance ticker snapshot and miniTicker stream
"""
Market-data connectors for the basket.

- BinanceSnapshotClient: one-shot 24h ticker listing (REST)
- BinanceMiniTickerConnector: live per-pair miniTicker stream (WebSocket)
  with reconnection, exponential backoff and telemetry
"""

from .base import BaseConnector, ConnectorState, Frame
from .binance import BinanceMiniTickerConnector
from .snapshot import BinanceSnapshotClient

__all__ = [
    "BaseConnector",
    "ConnectorState",
    "Frame",
    "BinanceMiniTickerConnector",
    "BinanceSnapshotClient",
]
