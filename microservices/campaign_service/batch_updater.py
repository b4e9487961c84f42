"""
Delivery Batch Updater

Owns the receipt queue and periodically drains it into a single bulk write
against the delivery-log store. It is the only component that writes
delivery status.

Ordering rules:
- ticks never overlap (flush runs under a lock)
- within one flush the first receipt for a delivery log wins
- entries leave the queue only after the write succeeds
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Tuple

from .models import ReceiptQueueEntry
from .protocols import (
    CampaignRepositoryProtocol,
    DeliveryLogWriteError,
    ReceiptQueueFullError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FlushResult:
    """Outcome of one flush"""
    drained: int = 0
    applied: int = 0
    skipped: int = 0
    campaign_ids: Tuple[str, ...] = ()


FlushHook = Callable[[FlushResult], Awaitable[Any]]


class DeliveryBatchUpdater:
    """Bounded receipt queue with a periodic single-writer flush"""

    def __init__(
        self,
        repository: CampaignRepositoryProtocol,
        flush_interval: float = 5.0,
        max_pending: int = 100_000,
        on_flush: Optional[FlushHook] = None,
    ):
        if flush_interval <= 0:
            raise ValueError("flush_interval must be positive")
        if max_pending < 1:
            raise ValueError("max_pending must be at least 1")

        self.repository = repository
        self.flush_interval = flush_interval
        self.max_pending = max_pending
        self.on_flush = on_flush

        self._queue: Deque[ReceiptQueueEntry] = deque()
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self._stopping = False

    @property
    def pending(self) -> int:
        return len(self._queue)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def enqueue(self, entry: ReceiptQueueEntry) -> None:
        """Append without awaiting, so it is atomic on the event loop"""
        if len(self._queue) >= self.max_pending:
            raise ReceiptQueueFullError(
                f"Receipt queue is full ({self.max_pending} pending)", pending=len(self._queue)
            )
        self._queue.append(entry)

    async def flush(self) -> FlushResult:
        """
        Drain the entries queued at call time into one bulk write.

        Raises:
            DeliveryLogWriteError: the write failed; every drained entry is still queued
        """
        async with self._lock:
            count = len(self._queue)
            if count == 0:
                return FlushResult()

            snapshot = [self._queue[i] for i in range(count)]
            batch = self._collapse(snapshot)

            try:
                written = await self.repository.bulk_apply_receipts(batch)
            except Exception as e:
                logger.error(f"Bulk receipt write failed, keeping {count} entries queued: {e}")
                raise DeliveryLogWriteError(
                    f"Failed to apply {len(batch)} receipts: {e}", retained=count
                ) from e

            # Entries enqueued during the write stay behind the snapshot
            for _ in range(count):
                self._queue.popleft()

        result = FlushResult(
            drained=count,
            applied=written.applied,
            skipped=count - written.applied,
            campaign_ids=tuple(sorted({e.campaign_id for e in batch})),
        )
        logger.info(
            f"Flushed {result.drained} receipts: {result.applied} applied, "
            f"{result.skipped} skipped, {self.pending} still pending"
        )

        if self.on_flush is not None:
            try:
                await self.on_flush(result)
            except Exception as e:
                logger.error(f"Post-flush hook failed: {e}", exc_info=True)

        return result

    @staticmethod
    def _collapse(entries: List[ReceiptQueueEntry]) -> List[ReceiptQueueEntry]:
        # First terminal write wins; later duplicates would be no-ops anyway
        seen: Dict[Any, ReceiptQueueEntry] = {}
        for entry in entries:
            seen.setdefault(entry.key, entry)
        return list(seen.values())

    # ====================
    # Periodic loop
    # ====================

    def start(self) -> None:
        """Start flushing every flush_interval seconds"""
        if self.running:
            return
        self._stopping = False
        self._task = asyncio.create_task(self._run(), name="delivery-batch-updater")
        logger.info(f"Delivery batch updater started (every {self.flush_interval}s)")

    async def _run(self) -> None:
        while not self._stopping:
            await asyncio.sleep(self.flush_interval)
            try:
                await self.flush()
            except DeliveryLogWriteError as e:
                logger.error(f"Flush tick failed, retrying next tick: {e}")
            except Exception as e:
                logger.error(f"Unexpected error in flush tick: {e}", exc_info=True)

    async def stop(self, final_flush: bool = True) -> Optional[FlushResult]:
        """Stop the loop, then drain what is left"""
        self._stopping = True
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Delivery batch updater stopped")

        if not final_flush:
            return None
        try:
            return await self.flush()
        except DeliveryLogWriteError as e:
            logger.error(f"Final flush failed, {self.pending} receipts left unapplied at shutdown: {e}")
            return None


__all__ = ["DeliveryBatchUpdater", "FlushResult", "FlushHook"]
