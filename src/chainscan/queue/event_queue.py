"""
In-memory event queue between the scanner and the monitor worker.

Carries one BlockBatch per non-empty block, in FIFO order.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Optional

import structlog

from ..models import BlockBatch

logger = structlog.get_logger()


class QueueClosed(Exception):
    """put() on a queue that no longer accepts batches."""
    pass


@dataclass
class QueueStats:
    pending: int = 0
    enqueued: int = 0
    consumed: int = 0
    discarded: int = 0
    batches_per_second: float = 0.0


class EventQueue:
    """
    FIFO queue of BlockBatch.

    With maxsize=0 the queue is unbounded. With a positive maxsize, put()
    waits for free space, which holds back the producing scanner tick.
    """

    def __init__(self, maxsize: int = 0):
        self.maxsize = maxsize
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self._enqueued = 0
        self._consumed = 0
        self._discarded = 0
        self._consumed_timestamps: list[float] = []  # For calculating batches/sec

    @property
    def closed(self) -> bool:
        return self._closed

    async def put(self, batch: BlockBatch) -> None:
        if self._closed:
            raise QueueClosed(f"Queue closed, cannot enqueue block {batch.block_number}")
        await self._queue.put(batch)
        self._enqueued += 1

    async def get(self) -> BlockBatch:
        return await self._queue.get()

    def get_nowait(self) -> Optional[BlockBatch]:
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def task_done(self) -> None:
        self._queue.task_done()
        self._consumed += 1
        now = time.time()
        self._consumed_timestamps.append(now)

        # Keep only last 60 seconds of timestamps
        cutoff = now - 60
        self._consumed_timestamps = [t for t in self._consumed_timestamps if t > cutoff]

    def close(self) -> None:
        """Stop accepting new batches. Queued batches stay available."""
        self._closed = True

    async def drain(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until the consumer has processed everything queued.

        Returns False if the timeout expired first.
        """
        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    def discard(self) -> int:
        """Drop all queued batches. Returns how many were dropped."""
        dropped = 0
        while True:
            try:
                batch = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            self._queue.task_done()
            dropped += 1
            logger.debug("Discarded queued batch", block_number=batch.block_number)
        self._discarded += dropped
        return dropped

    def qsize(self) -> int:
        return self._queue.qsize()

    def empty(self) -> bool:
        return self._queue.empty()

    def get_stats(self) -> QueueStats:
        stats = QueueStats(
            pending=self._queue.qsize(),
            enqueued=self._enqueued,
            consumed=self._consumed,
            discarded=self._discarded,
        )

        cutoff = time.time() - 60
        recent = [t for t in self._consumed_timestamps if t > cutoff]
        if len(recent) >= 2:
            duration = recent[-1] - recent[0]
            if duration > 0:
                stats.batches_per_second = len(recent) / duration

        return stats
