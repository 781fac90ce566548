"""Idempotent event sink: buffered bulk writes plus the in-memory query view."""

import asyncio
import logging
from collections import deque
from datetime import datetime, UTC
from typing import Optional

from sqlalchemy.exc import InterfaceError, OperationalError, TimeoutError as PoolTimeoutError

from swap_db import CheckpointRecord, CheckpointRepository, DatabaseFactory, SwapEventRecord, SwapEventRepository
from swapcore.events import SwapEvent


logger = logging.getLogger(__name__)

# Store unreachable or busy: the same rows can succeed on a later flush
TRANSIENT_ERRORS = (OperationalError, InterfaceError, PoolTimeoutError)


class EventSink:
    """Owns the recorded swap history.

    Appended events are published to an ordered in-memory view immediately
    and buffered for durable insertion. The same sink instance is shared by
    the reconciliation controller (writer) and the query API (reader).

    Responsibilities:
    - Drop events whose (signature, instruction_index) is already recorded
    - Buffer events up to batch_size
    - Flush on batch_size reached OR flush_interval elapsed OR stop()
    - Persist the reconciliation checkpoint in the same transaction as
      the events it covers
    - Re-buffer events when the store is unavailable; when it rejects a
      batch, write row by row and drop only the rows it refuses
    - Serve query() from the view, in insertion order

    Example:
        sink = EventSink(db, batch_size=100, flush_interval=5.0)
        cursor = await sink.load()
        await sink.start()

        # In the reconciliation worker:
        await sink.append(event)

        # On shutdown:
        await sink.stop()
    """

    def __init__(
        self,
        db: DatabaseFactory,
        batch_size: int = 100,
        flush_interval: float = 5.0,
        checkpoint_key: str = "default",
    ):
        """Initialize event sink.

        Args:
            db: DatabaseFactory instance for session management.
            batch_size: Number of events to buffer before bulk insert.
            flush_interval: Maximum seconds between flushes.
            checkpoint_key: Row of reconcile_checkpoints owned by this sink.
        """
        self._db = db
        self._batch_size = batch_size
        self._flush_interval = flush_interval
        self._checkpoint_key = checkpoint_key
        self._checkpoint: Optional[str] = None
        self._checkpoint_dirty = False

        self._view: list[SwapEvent] = []
        self._keys: set[tuple[str, int]] = set()
        self._buffer: deque[SwapEvent] = deque()
        self._last_flush: datetime = datetime.now(UTC)
        self._flush_task: Optional[asyncio.Task] = None
        self._running = False
        self._lock = asyncio.Lock()

        # Stats
        self._total_written = 0
        self._flush_count = 0
        self._flush_errors = 0
        self._rejected_rows = 0
        self._duplicates = 0

    async def load(self) -> Optional[str]:
        """Rebuild the view from the durable store.

        Returns:
            The stored checkpoint when there is one (None means from the
            start of history), otherwise the signature of the last durably
            recorded event, or None when the store is empty.
        """
        records, checkpoint = await asyncio.to_thread(self._read_all)
        async with self._lock:
            self._view = [self._record_to_event(r) for r in records]
            self._keys = {event.key for event in self._view}

            if checkpoint is not None:
                cursor = checkpoint.signature
            else:
                cursor = self._view[-1].signature if self._view else None
            self._checkpoint = cursor
            self._checkpoint_dirty = False

        logger.info(
            f"Loaded {len(self._view)} swap events from store "
            f"(cursor: {cursor}, {'checkpoint' if checkpoint is not None else 'last event'})"
        )
        return cursor

    def set_checkpoint(self, signature: Optional[str]) -> None:
        """Cursor to persist with the next flush.

        Every event the cursor covers must already have been appended, so
        the checkpoint never becomes durable ahead of its events.
        """
        self._checkpoint = signature
        self._checkpoint_dirty = True

    async def recent_signatures(self, limit: int) -> list[str]:
        """Distinct signatures of the most recently stored events, newest first."""

        def read() -> list[str]:
            with self._db.get_session() as session:
                return SwapEventRepository(session).get_recent_signatures(limit)

        return await asyncio.to_thread(read)

    async def append(self, event: SwapEvent) -> bool:
        """Record an event unless its key is already recorded.

        Returns:
            True if the event was new, False for a duplicate.
        """
        async with self._lock:
            if event.key in self._keys:
                self._duplicates += 1
                logger.debug(f"Duplicate swap ignored: {event.signature}#{event.instruction_index}")
                return False

            self._keys.add(event.key)
            self._view.append(event)
            self._buffer.append(event)

            if len(self._buffer) >= self._batch_size:
                await self._flush_internal()
            return True

    def query(self, limit: int, after_signature: Optional[str] = None) -> list[SwapEvent]:
        """Most recent `limit` events in insertion order.

        If after_signature is among them, everything up to and including its
        last event is dropped.
        """
        if limit <= 0:
            return []
        recent = self._view[-limit:]
        if after_signature:
            for position in range(len(recent) - 1, -1, -1):
                if recent[position].signature == after_signature:
                    return recent[position + 1:]
        return list(recent)

    def contains(self, signature: str, instruction_index: int = 0) -> bool:
        return (signature, instruction_index) in self._keys

    def __len__(self) -> int:
        return len(self._view)

    async def flush(self) -> None:
        """Force flush buffered events to database."""
        async with self._lock:
            await self._flush_internal()

    async def _flush_internal(self) -> None:
        """Internal flush without lock (must be called with lock held)."""
        if not self._buffer and not self._checkpoint_dirty:
            return

        events = list(self._buffer)
        self._buffer.clear()
        save_checkpoint, checkpoint = self._checkpoint_dirty, self._checkpoint
        self._checkpoint_dirty = False
        self._last_flush = datetime.now(UTC)

        try:
            count = await asyncio.to_thread(self._write_batch, events, save_checkpoint, checkpoint)
            self._total_written += count
            self._flush_count += 1
            logger.debug(f"Flushed {count} swap events to database (total: {self._total_written})")
        except TRANSIENT_ERRORS as e:
            self._flush_errors += 1
            logger.error(f"Error flushing swap events to database: {e}")
            self._restore(events, save_checkpoint)
        except Exception as e:
            self._flush_errors += 1
            logger.warning(f"Store rejected a batch of {len(events)} swap events ({e}); writing row by row")
            await self._flush_rows(events, save_checkpoint, checkpoint)

    async def _flush_rows(self, events: list[SwapEvent], save_checkpoint: bool, checkpoint: Optional[str]) -> None:
        """Write events one at a time, dropping the ones the store refuses."""
        written = 0
        for position, event in enumerate(events):
            try:
                written += await asyncio.to_thread(self._write_batch, [event])
            except TRANSIENT_ERRORS as e:
                logger.error(f"Error flushing swap events to database: {e}")
                self._restore(events[position:], save_checkpoint)
                self._total_written += written
                return
            except Exception as e:
                self._rejected_rows += 1
                logger.error(f"Dropping swap the store cannot hold: {event} ({e})")

        self._total_written += written
        self._flush_count += 1
        if save_checkpoint:
            try:
                await asyncio.to_thread(self._write_batch, [], True, checkpoint)
            except Exception as e:
                logger.error(f"Error saving checkpoint {checkpoint}: {e}")
                self._checkpoint_dirty = True

    def _restore(self, events: list[SwapEvent], save_checkpoint: bool) -> None:
        """Put unwritten events back at the head of the buffer."""
        self._buffer.extendleft(reversed(events))
        if save_checkpoint:
            self._checkpoint_dirty = True

    async def start(self) -> None:
        """Start background task for periodic flushing."""
        if self._running:
            return

        self._running = True
        self._flush_task = asyncio.create_task(self._auto_flush_loop())
        logger.info(f"EventSink auto-flush started (interval={self._flush_interval}s)")

    async def stop(self) -> None:
        """Stop auto-flush and flush remaining buffer."""
        self._running = False

        if self._flush_task:
            self._flush_task.cancel()
            try:
                await self._flush_task
            except asyncio.CancelledError:
                pass
            self._flush_task = None

        # Final flush
        await self.flush()
        if self._buffer:
            logger.error(f"EventSink stopped with {len(self._buffer)} unflushed events")
        logger.info(
            f"EventSink stopped. Total written: {self._total_written}, "
            f"Flushes: {self._flush_count}"
        )

    async def _auto_flush_loop(self) -> None:
        """Background loop for periodic flushing."""
        while self._running:
            try:
                await asyncio.sleep(self._flush_interval)

                async with self._lock:
                    elapsed = (datetime.now(UTC) - self._last_flush).total_seconds()
                    if elapsed >= self._flush_interval and (self._buffer or self._checkpoint_dirty):
                        await self._flush_internal()

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in auto-flush loop: {e}")

    def _read_all(self) -> tuple[list[SwapEventRecord], Optional[CheckpointRecord]]:
        with self._db.get_session() as session:
            records = SwapEventRepository(session).get_all_ordered()
            checkpoint = CheckpointRepository(session).get(self._checkpoint_key)
            session.expunge_all()
            return records, checkpoint

    def _write_batch(
        self,
        events: list[SwapEvent],
        save_checkpoint: bool = False,
        checkpoint: Optional[str] = None,
    ) -> int:
        with self._db.get_session() as session:
            count = SwapEventRepository(session).bulk_insert(self._events_to_models(events))
            if save_checkpoint:
                CheckpointRepository(session).save(self._checkpoint_key, checkpoint)
            return count

    @staticmethod
    def _events_to_models(events: list[SwapEvent]) -> list[SwapEventRecord]:
        return [
            SwapEventRecord(
                signature=event.signature,
                instruction_index=event.instruction_index,
                timestamp=event.timestamp,
                slot=event.slot,
                source_mint=event.source_mint,
                dest_mint=event.dest_mint,
                amount_in=event.amount_in,
                amount_out=event.amount_out,
                price=event.price,
                pool_price=event.pool_price,
            )
            for event in events
        ]

    @staticmethod
    def _record_to_event(record: SwapEventRecord) -> SwapEvent:
        return SwapEvent(
            timestamp=record.timestamp,
            signature=record.signature,
            source_mint=record.source_mint,
            dest_mint=record.dest_mint,
            amount_in=record.amount_in,
            amount_out=record.amount_out,
            price=record.price,
            pool_price=record.pool_price,
            instruction_index=record.instruction_index,
            slot=record.slot,
        )

    def get_stats(self) -> dict:
        """Get sink statistics.

        Returns:
            Dict with view_size, buffer_size, total_written, flush_count,
            flush_errors, rejected_rows, duplicates, checkpoint.
        """
        return {
            "view_size": len(self._view),
            "buffer_size": len(self._buffer),
            "total_written": self._total_written,
            "flush_count": self._flush_count,
            "flush_errors": self._flush_errors,
            "rejected_rows": self._rejected_rows,
            "duplicates": self._duplicates,
            "checkpoint": self._checkpoint,
        }
