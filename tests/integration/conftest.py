"""Shared fixtures for integration tests."""

import sys
from pathlib import Path
from unittest.mock import patch

import pytest
import pytest_asyncio

# Ensure tests/integration is on sys.path so ``import integration_helpers``
# works regardless of how pytest is invoked.
_INTEGRATION_DIR = str(Path(__file__).resolve().parent)
if _INTEGRATION_DIR not in sys.path:
    sys.path.insert(0, _INTEGRATION_DIR)

from integration_helpers import LogsFeed, PoolLedger
from solana_adapter.rate_limiter import RateLimitConfig
from solana_adapter.rpc_client import SolanaRpcClient
from swap_db import DatabaseFactory, DatabaseSettings


@pytest.fixture
def ledger():
    return PoolLedger()


@pytest.fixture
def rpc_over_ledger(ledger):
    """Every SolanaRpcClient the indexer builds talks to the in-memory ledger."""

    def _client(**kwargs):
        kwargs["rate_limit_config"] = RateLimitConfig(max_requests=100_000, backoff_base=0)
        return SolanaRpcClient(transport=ledger.transport(), retry_backoff=0, **kwargs)

    with patch("swap_indexer.indexer.SolanaRpcClient", side_effect=_client):
        yield


@pytest_asyncio.fixture
async def feed():
    server = LogsFeed()
    await server.start()
    yield server
    await server.stop()


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'swap_events.db'}"


@pytest.fixture
def db(database_url):
    database = DatabaseFactory(DatabaseSettings(database_url=database_url))
    database.create_tables()
    yield database
    database.dispose()
