"""Solana-specific adapter for JSON-RPC and WebSocket integration.

This package provides:
- Normalization of RPC payloads to swapcore transactions
- logsSubscribe client management with reconnection callbacks
- JSON-RPC client for backfill and precision lookups
- Client-side rate limiting
"""

from solana_adapter.normalizer import LogNotification, SignatureInfo, SolanaNormalizer
from solana_adapter.ws_client import ConnectionState, LogsSubscriptionClient, SubscriptionError
from solana_adapter.rpc_client import RpcError, SolanaRpcClient, TransactionNotAvailable
from solana_adapter.rate_limiter import RateLimiter, RateLimitConfig

__all__ = [
    "LogNotification",
    "SignatureInfo",
    "SolanaNormalizer",
    "ConnectionState",
    "LogsSubscriptionClient",
    "SubscriptionError",
    "RpcError",
    "SolanaRpcClient",
    "TransactionNotAvailable",
    "RateLimiter",
    "RateLimitConfig",
]
