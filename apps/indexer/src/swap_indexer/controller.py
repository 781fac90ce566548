"""Cursor ownership and reconciliation of live and historical swap feeds.

Live notifications, reconnect backfills and poll ticks all become items on
one work queue. A single worker task drains it, so no two transactions are
ever reconciled concurrently and the cursor and seen-set need no further
coordination.
"""

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Optional, Union

from solana_adapter.normalizer import LogNotification, SolanaNormalizer
from solana_adapter.rpc_client import RpcError, SolanaRpcClient
from swapcore.reconstructor import ReconstructionResult, SwapReconstructor
from swapcore.seen_cache import SeenSignatureCache

from swap_indexer.sink import EventSink


logger = logging.getLogger(__name__)


class FeedState(StrEnum):
    """Live feed lifecycle as seen by the controller."""
    DISCONNECTED = "disconnected"
    RECONNECTING = "reconnecting"
    BACKFILLING = "backfilling"
    CONNECTED = "connected"


class _Backfill:
    """Work item: run backfill from the cursor current at execution time."""

    def __repr__(self) -> str:
        return "<backfill>"


BACKFILL = _Backfill()

WorkItem = Union[str, _Backfill]


@dataclass
class RetryState:
    """Consecutive failed attempts since the last completed backfill."""

    attempt_count: int = 0
    first_failure_ts: float = 0.0
    last_error: str = ""

    def record(self, error: str, now: float) -> None:
        if self.attempt_count == 0:
            self.first_failure_ts = now
        self.attempt_count += 1
        self.last_error = error

    def elapsed_seconds(self, now: float) -> float:
        return now - self.first_failure_ts if self.attempt_count else 0.0


class ReconciliationController:
    """Merges live notifications and backfill into one gap-free event log.

    The cursor is the last signature up to which history is fully processed
    (swap recorded or rejected) with nothing missing. Backfill walks the
    pool's signature history newer than the cursor and processes it oldest
    first; startup and every (re)connect of the live feed trigger such a
    backfill before live notifications are trusted again.

    When a live signature cannot be reconciled, the cursor is held and the
    signature is recovered by backfilling from it. Failed backfills are
    retried up to max_retry_attempts times or until max_retry_elapsed
    seconds have passed, then wait for the next trigger with the cursor
    still held. The sink checkpoints the held cursor, so a restart re-scans
    the gap.

    Example:
        controller = ReconciliationController(
            rpc=rpc_client,
            reconstructor=reconstructor,
            sink=sink,
            pool_address=addresses.swap_account,
        )
        await controller.start(initial_cursor=await sink.load())

        subscription = LogsSubscriptionClient(
            ws_url=config.get_ws_url(),
            mentions=addresses.swap_account,
            on_notification=controller.handle_notification,
            on_connecting=controller.on_connecting,
            on_connect=controller.on_connect,
            on_disconnect=controller.on_disconnect,
        )
    """

    def __init__(
        self,
        rpc: SolanaRpcClient,
        reconstructor: SwapReconstructor,
        sink: EventSink,
        pool_address: str,
        page_size: int = 40,
        max_backfill_pages: Optional[int] = None,
        seen: Optional[SeenSignatureCache] = None,
        normalizer: Optional[SolanaNormalizer] = None,
        poll_interval: Optional[float] = None,
        retry_delay: float = 5.0,
        max_retry_attempts: int = 5,
        max_retry_elapsed: float = 300.0,
    ):
        """Initialize reconciliation controller.

        Args:
            rpc: Ledger JSON-RPC client (blocking; called via asyncio.to_thread).
            reconstructor: Turns transactions into SwapEvents.
            sink: Destination for validated events.
            pool_address: Address whose signature history is reconciled.
            page_size: Signatures requested per history page.
            max_backfill_pages: Page limit per backfill pass (None = unlimited).
            seen: Recently processed signatures; a new cache when omitted.
            normalizer: RPC payload converter.
            poll_interval: When set, run backfill every poll_interval seconds.
            retry_delay: Seconds before a failed work item is retried.
            max_retry_attempts: Consecutive failures before retries stop.
            max_retry_elapsed: Seconds since the first failure before retries stop.
        """
        self._rpc = rpc
        self._reconstructor = reconstructor
        self._sink = sink
        self._pool_address = pool_address
        self._page_size = page_size
        self._max_backfill_pages = max_backfill_pages
        self._seen = seen if seen is not None else SeenSignatureCache()
        self._normalizer = normalizer or SolanaNormalizer()
        self._poll_interval = poll_interval
        self._retry_delay = retry_delay
        self._max_retry_attempts = max_retry_attempts
        self._max_retry_elapsed = max_retry_elapsed

        # State
        self._cursor: Optional[str] = None
        self._cursor_held = False
        self._retry = RetryState()
        self._feed_state = FeedState.DISCONNECTED
        self._lock = asyncio.Lock()
        self._queue: asyncio.Queue[WorkItem] = asyncio.Queue()
        self._backfill_pending = False
        self._running = False
        self._stopping = False
        self._worker_task: Optional[asyncio.Task] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._retry_handle: Optional[asyncio.TimerHandle] = None

        # Stats
        self._processed = 0
        self._swaps = 0
        self._duplicates = 0
        self._rejections: Counter[str] = Counter()
        self._backfill_passes = 0
        self._failed_items = 0
        self._retries_exhausted = 0
        self._truncated_passes = 0
        self._disconnects = 0

    @property
    def cursor(self) -> Optional[str]:
        return self._cursor

    @property
    def cursor_held(self) -> bool:
        """True while an unreconciled signature keeps the cursor from following live progress."""
        return self._cursor_held

    @property
    def feed_state(self) -> FeedState:
        return self._feed_state

    async def start(self, initial_cursor: Optional[str] = None) -> None:
        """Set the cursor, warm the seen-set, start the worker and queue a catch-up backfill.

        Args:
            initial_cursor: Checkpointed cursor from the store, None for an empty store.
        """
        if self._running:
            logger.warning("ReconciliationController already running")
            return

        self._cursor = initial_cursor
        self._sink.set_checkpoint(initial_cursor)
        recent = await self._sink.recent_signatures(self._seen.max_size)
        # Oldest first so the newest signatures are the last to be evicted
        self._seen.update(reversed(recent))
        logger.info(
            f"Reconciliation starting from cursor {initial_cursor} "
            f"({len(self._seen)} recent signatures marked seen)"
        )

        self._running = True
        self._stopping = False
        self._worker_task = asyncio.create_task(self._worker_loop(), name="reconciliation-worker")
        if self._poll_interval is not None:
            self._poll_task = asyncio.create_task(self._poll_loop(), name="reconciliation-poll")
        # Catch up even if the live feed never connects
        self.request_backfill()

    async def stop(self) -> None:
        """Finish the in-flight item, then stop the worker and poll loop."""
        if not self._running:
            return

        self._running = False
        self._stopping = True
        self._cancel_retry()

        for task in (self._poll_task, self._worker_task):
            if task is None:
                continue
            if task is self._worker_task:
                # Wait for the current transaction; a backfill pass stops between transactions
                async with self._lock:
                    task.cancel()
            else:
                task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._poll_task = None
        self._worker_task = None
        logger.info(f"Reconciliation stopped at cursor {self._cursor}")

    # ------------------------------------------------------------------
    # Live feed callbacks (run on the event loop, must not block)
    # ------------------------------------------------------------------

    def handle_notification(self, notification: LogNotification) -> None:
        """Queue a live notification behind any in-flight work."""
        if notification.err is not None:
            logger.debug(f"Ignoring failed transaction {notification.signature}")
            return
        self._queue.put_nowait(notification.signature)

    def on_connecting(self) -> None:
        self._set_feed_state(FeedState.RECONNECTING)

    def on_connect(self, connected_at: datetime) -> None:
        """Backfill from the cursor before treating the feed as connected."""
        self._set_feed_state(FeedState.BACKFILLING)
        logger.info(f"Live feed connected at {connected_at}, backfilling from {self._cursor}")
        self.request_backfill()

    def on_disconnect(self, disconnected_at: datetime) -> None:
        self._disconnects += 1
        self._set_feed_state(FeedState.DISCONNECTED)
        logger.warning(f"Live feed lost at {disconnected_at}, cursor {self._cursor}")

    def request_backfill(self) -> None:
        """Queue a backfill unless one is already waiting."""
        if self._backfill_pending:
            return
        self._backfill_pending = True
        self._queue.put_nowait(BACKFILL)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def backfill(self, since: Optional[str]) -> int:
        """Process every pool signature newer than since, oldest first.

        Args:
            since: Exclusive lower bound; None walks the whole retained history.

        Returns:
            Number of new swap events recorded.

        Raises:
            RpcError: If a page or transaction fetch fails after retries. Work
                completed before the failure stays recorded and the cursor
                points at the last processed signature.

        When max_backfill_pages cuts the pass short, the signatures it did
        list are processed but the cursor stays at since: the older part of
        the gap was never listed, so moving past it would lose swaps.
        """
        async with self._lock:
            return await self._backfill(since)

    async def process_signature(self, signature: str) -> int:
        """Reconcile one transaction (live path).

        The cursor follows live progress only while nothing behind it is
        outstanding.

        Returns:
            Number of new swap events recorded.
        """
        async with self._lock:
            fresh = not self._seen.contains(signature)
            appended = await self._process(signature)
            if fresh and not self._cursor_held:
                self._advance_cursor(signature)
            return appended

    async def _backfill(self, since: Optional[str]) -> int:
        self._backfill_passes += 1
        signatures, truncated = await asyncio.to_thread(
            self._rpc.get_signatures_all,
            self._pool_address,
            since,
            self._page_size,
            self._max_backfill_pages,
        )
        if truncated:
            self._truncated_passes += 1
            logger.error(
                f"Backfill from {since} stopped at max_backfill_pages with {len(signatures)} signatures; "
                f"cursor held at {since} until a pass reaches it (raise or unset max_backfill_pages)"
            )

        appended = 0
        processed = 0
        for raw in reversed(signatures):
            if self._stopping:
                logger.info(f"Backfill interrupted by shutdown after {processed} transactions")
                return appended
            info = self._normalizer.normalize_signature_info(raw)
            if info.err is not None:
                # Failed transactions move no tokens
                if not self._seen.contains(info.signature):
                    self._seen.add(info.signature)
                    self._processed += 1
                    self._rejections["failed-transaction"] += 1
            else:
                appended += await self._process(info.signature)
                processed += 1
            if not truncated:
                self._advance_cursor(info.signature)

        self._cursor_held = truncated
        if signatures:
            logger.info(
                f"Backfill from {since}: {len(signatures)} signatures, {appended} new swaps, cursor {self._cursor}"
            )
        else:
            logger.debug(f"Backfill from {since}: no new signatures")
        return appended

    async def _process(self, signature: str) -> int:
        if self._seen.contains(signature):
            self._duplicates += 1
            logger.debug(f"Already processed {signature}")
            return 0

        result = await asyncio.to_thread(self._fetch_and_reconstruct, signature)

        appended = 0
        for event in result.events:
            if await self._sink.append(event):
                appended += 1
                self._swaps += 1
                logger.info(
                    f"Swap {event.signature}: {event.amount_in} {event.source_mint} -> "
                    f"{event.amount_out} {event.dest_mint} @ {event.price}"
                    + (f" (pool {event.pool_price})" if event.pool_price is not None else "")
                )
        for rejection in result.rejections:
            self._rejections[str(rejection.reason)] += 1

        self._seen.add(signature)
        self._processed += 1
        return appended

    def _fetch_and_reconstruct(self, signature: str) -> ReconstructionResult:
        """Blocking half of _process, run in a worker thread."""
        raw = self._rpc.get_transaction(signature)
        try:
            tx = self._normalizer.normalize_transaction(raw, signature=signature)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Skipping malformed transaction {signature}: {e}")
            return ReconstructionResult(signature=signature)
        return self._reconstructor.reconstruct(tx)

    def _advance_cursor(self, signature: str) -> None:
        self._cursor = signature
        self._sink.set_checkpoint(signature)

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    async def _worker_loop(self) -> None:
        """Drain the work queue, one item at a time."""
        while self._running:
            item = await self._queue.get()
            try:
                if item is BACKFILL:
                    self._backfill_pending = False
                    await self.backfill(self._cursor)
                    if not self._stopping:
                        self._retry = RetryState()
                    if self._feed_state == FeedState.BACKFILLING:
                        self._set_feed_state(FeedState.CONNECTED)
                else:
                    await self.process_signature(item)
            except asyncio.CancelledError:
                raise
            except RpcError as e:
                self._handle_failure(item, str(e))
            except Exception as e:
                logger.error(f"Error reconciling {item!r}: {e}")
                self._handle_failure(item, str(e))
            finally:
                self._queue.task_done()

    def _handle_failure(self, item: WorkItem, error: str) -> None:
        """Hold the cursor and recover through a bounded series of backfills."""
        self._failed_items += 1
        if item is not BACKFILL and not self._cursor_held:
            self._cursor_held = True
            logger.warning(f"Live reconciliation of {item} failed: {error}; cursor held at {self._cursor}")

        now = asyncio.get_running_loop().time()
        self._retry.record(error, now)
        attempts = self._retry.attempt_count
        elapsed = self._retry.elapsed_seconds(now)

        if attempts >= self._max_retry_attempts or elapsed >= self._max_retry_elapsed:
            self._retries_exhausted += 1
            logger.error(
                f"Retry exhausted after {attempts} attempts ({elapsed:.1f}s), cursor held at {self._cursor}; "
                f"waiting for the next backfill trigger. Last error: {error}"
            )
            self._retry = RetryState()
            self._cancel_retry()
            return

        logger.warning(
            f"Reconciliation of {item!r} failed: {error}; backfilling from {self._cursor} "
            f"in {self._retry_delay}s (attempt {attempts}/{self._max_retry_attempts})"
        )
        self._schedule_backfill()

    def _schedule_backfill(self) -> None:
        if not self._running or self._retry_handle is not None:
            return
        self._retry_handle = asyncio.get_running_loop().call_later(self._retry_delay, self._retry_backfill)

    def _retry_backfill(self) -> None:
        self._retry_handle = None
        self.request_backfill()

    def _cancel_retry(self) -> None:
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None

    async def _poll_loop(self) -> None:
        """Request a backfill every poll_interval seconds."""
        while self._running:
            try:
                self.request_backfill()
                await asyncio.sleep(self._poll_interval)
            except asyncio.CancelledError:
                break

    async def wait_idle(self) -> None:
        """Wait until every queued item has been handled."""
        await self._queue.join()

    def _set_feed_state(self, state: FeedState) -> None:
        if state == self._feed_state:
            return
        logger.info(f"Live feed {self._feed_state} -> {state}")
        self._feed_state = state

    def get_stats(self) -> dict:
        """Get controller statistics."""
        return {
            "feed_state": str(self._feed_state),
            "cursor": self._cursor,
            "cursor_held": self._cursor_held,
            "processed": self._processed,
            "swaps": self._swaps,
            "duplicates": self._duplicates,
            "rejections": dict(self._rejections),
            "backfill_passes": self._backfill_passes,
            "failed_items": self._failed_items,
            "retries_exhausted": self._retries_exhausted,
            "truncated_passes": self._truncated_passes,
            "disconnects": self._disconnects,
            "queue_size": self._queue.qsize(),
            "seen_size": len(self._seen),
        }
