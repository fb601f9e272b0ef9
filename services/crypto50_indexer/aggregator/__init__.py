# Crypto50 Indexer Aggregator
# Basket ownership, index ticks and rebalancing

"""
Aggregator module for the synthetic index.

Components:
- IndexAggregator: owns the basket, runs the stream, tick loop and rebalance timer
- AggregatorConfig: runtime settings for the aggregator
"""

from .index_aggregator import AggregatorConfig, IndexAggregator

__all__ = [
    "IndexAggregator",
    "AggregatorConfig",
]
