"""Swap indexer service for one SPL token-swap pool.

This application:
- Reconciles live logsSubscribe notifications with signature-history backfill
- Reconstructs swaps from token balance deltas
- Persists each swap exactly once and serves the series over HTTP
"""

from swap_indexer.config import IndexerConfig, ConfigError, PoolAddresses, load_config, resolve_pool
from swap_indexer.sink import EventSink
from swap_indexer.controller import FeedState, ReconciliationController
from swap_indexer.api import create_app
from swap_indexer.indexer import SwapIndexer

__all__ = [
    "IndexerConfig",
    "ConfigError",
    "PoolAddresses",
    "load_config",
    "resolve_pool",
    "EventSink",
    "FeedState",
    "ReconciliationController",
    "create_app",
    "SwapIndexer",
]
