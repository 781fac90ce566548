"""Swap indexer orchestrator.

Wires the ledger clients, reconstructor, reconciliation controller, event
sink and query API together and owns their startup/shutdown order.
"""

import asyncio
import contextlib
import logging
import signal
from datetime import datetime, UTC
from typing import Optional

import uvicorn

from solana_adapter.rate_limiter import RateLimitConfig
from solana_adapter.rpc_client import SolanaRpcClient
from solana_adapter.ws_client import LogsSubscriptionClient
from swap_db import DatabaseFactory
from swapcore.balances import MintPrecisionCache
from swapcore.reconstructor import SwapReconstructor
from swapcore.seen_cache import SeenSignatureCache

from swap_indexer.api import create_app
from swap_indexer.config import IndexerConfig, IndexerMode, PoolAddresses, to_pool_config
from swap_indexer.controller import ReconciliationController
from swap_indexer.sink import EventSink


logger = logging.getLogger(__name__)


class _ApiServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the indexer."""

    @contextlib.contextmanager
    def capture_signals(self):
        yield

    def install_signal_handlers(self) -> None:
        pass


class SwapIndexer:
    """Runs one pool's indexing pipeline until shutdown.

    Shutdown order: live feed first (no new work), then the reconciliation
    worker (in-flight transaction finishes), then the sink (final flush),
    then the API.

    Example:
        indexer = SwapIndexer(config=config, db=db, pool=resolve_pool(config))
        await indexer.start()
        await indexer.run_until_shutdown()
    """

    def __init__(self, config: IndexerConfig, db: DatabaseFactory, pool: PoolAddresses):
        """Initialize indexer.

        Args:
            config: IndexerConfig with settings.
            db: DatabaseFactory for the event store.
            pool: Resolved pool addresses.
        """
        self._config = config
        self._db = db
        self._pool = pool

        # Components
        self._rpc: Optional[SolanaRpcClient] = None
        self._sink: Optional[EventSink] = None
        self._controller: Optional[ReconciliationController] = None
        self._subscription: Optional[LogsSubscriptionClient] = None
        self._api_server: Optional[_ApiServer] = None
        self._api_task: Optional[asyncio.Task] = None
        self._health_task: Optional[asyncio.Task] = None

        # State
        self._running = False
        self._start_time: Optional[datetime] = None
        self._shutdown_event = asyncio.Event()

    @property
    def sink(self) -> Optional[EventSink]:
        return self._sink

    @property
    def controller(self) -> Optional[ReconciliationController]:
        return self._controller

    async def start(self) -> None:
        """Start all indexing components."""
        if self._running:
            logger.warning("SwapIndexer already running")
            return

        logger.info("Starting SwapIndexer...")
        self._start_time = datetime.now(UTC)
        config = self._config

        self._rpc = SolanaRpcClient(
            rpc_url=config.rpc_url,
            commitment=config.commitment,
            timeout=config.rpc_timeout,
            max_retries=config.rpc_max_retries,
            rate_limit_config=RateLimitConfig(max_requests=config.rpc_rate_limit),
        )
        reconstructor = SwapReconstructor(
            pool=to_pool_config(config, self._pool),
            precision=MintPrecisionCache(fetcher=self._rpc.get_token_decimals),
        )

        self._sink = EventSink(
            db=self._db,
            batch_size=config.batch_size,
            flush_interval=config.flush_interval,
            checkpoint_key=self._pool.swap_account,
        )
        cursor = await self._sink.load()
        await self._sink.start()

        self._controller = ReconciliationController(
            rpc=self._rpc,
            reconstructor=reconstructor,
            sink=self._sink,
            pool_address=self._pool.swap_account,
            page_size=config.page_size,
            max_backfill_pages=config.max_backfill_pages,
            seen=SeenSignatureCache(max_size=config.seen_cache_size),
            poll_interval=config.poll_interval if config.mode == IndexerMode.POLL else None,
            retry_delay=config.retry_delay,
            max_retry_attempts=config.max_retry_attempts,
            max_retry_elapsed=config.max_retry_elapsed,
        )
        await self._controller.start(initial_cursor=cursor)

        if config.mode == IndexerMode.LIVE:
            self._subscription = LogsSubscriptionClient(
                ws_url=config.get_ws_url(),
                mentions=self._pool.swap_account,
                commitment=config.commitment,
                on_notification=self._controller.handle_notification,
                on_connecting=self._controller.on_connecting,
                on_connect=self._controller.on_connect,
                on_disconnect=self._controller.on_disconnect,
            )
            await self._subscription.start()

        if config.api_enabled:
            app = create_app(self._sink, stats=self.get_stats)
            self._api_server = _ApiServer(
                uvicorn.Config(app, host=config.api_host, port=config.api_port, log_config=None)
            )
            self._api_task = asyncio.create_task(self._api_server.serve(), name="query-api")
            logger.info(f"Query API listening on {config.api_host}:{config.api_port}")

        self._health_task = asyncio.create_task(self._health_log_loop())

        self._running = True
        logger.info(
            "SwapIndexer started. "
            f"Pool: {self._pool.swap_account}, "
            f"Mode: {config.mode}, "
            f"Cursor: {cursor}"
        )

    async def stop(self) -> None:
        """Stop all components gracefully."""
        if not self._running:
            return

        logger.info("Stopping SwapIndexer...")
        self._running = False

        if self._health_task:
            self._health_task.cancel()
            try:
                await self._health_task
            except asyncio.CancelledError:
                pass
            self._health_task = None

        if self._subscription:
            await self._subscription.stop()

        if self._controller:
            await self._controller.stop()

        # Final flush
        if self._sink:
            await self._sink.stop()

        if self._api_server and self._api_task:
            self._api_server.should_exit = True
            await self._api_task
            self._api_task = None

        if self._rpc:
            self._rpc.close()

        logger.info(f"SwapIndexer stopped. Final stats: {self.get_stats()}")

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    async def run_until_shutdown(self) -> None:
        """Run until SIGINT/SIGTERM received."""
        loop = asyncio.get_running_loop()

        def shutdown_handler():
            logger.info("Shutdown signal received")
            self._shutdown_event.set()

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, shutdown_handler)

        try:
            await self._shutdown_event.wait()
        finally:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.remove_signal_handler(sig)
        await self.stop()

    async def _health_log_loop(self) -> None:
        """Periodically log health stats."""
        while True:
            try:
                await asyncio.sleep(self._config.health_log_interval)
                if not self._running:
                    break

                logger.info(f"Health: {self.get_stats()}")

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in health log loop: {e}")

    def get_stats(self) -> dict:
        """Get indexer statistics."""
        uptime = 0.0
        if self._start_time:
            uptime = (datetime.now(UTC) - self._start_time).total_seconds()

        stats = {"uptime_seconds": round(uptime, 1)}
        if self._controller:
            stats["reconciliation"] = self._controller.get_stats()
        if self._sink:
            stats["sink"] = self._sink.get_stats()
        if self._subscription:
            stats["live_feed"] = self._subscription.get_stats()
        if self._rpc:
            stats["rpc"] = self._rpc.get_stats()
        return stats
