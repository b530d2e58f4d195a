"""
Worker: consumes block batches from the event queue and runs monitor rules.
"""

import asyncio
from typing import Optional

import structlog

from ..models import BlockBatch
from ..monitor import MonitorEngine
from .event_queue import EventQueue

logger = structlog.get_logger()


class MonitorWorker:
    """
    Dispatch stage of the pipeline.

    Lifecycle:
    1. Take the next batch from the queue
    2. Evaluate every transaction against the monitor rules
    3. Mark the batch done
    4. Repeat

    Runs as its own task so slow callbacks never hold up block fetching.
    """

    def __init__(
        self,
        worker_id: str,
        queue: EventQueue,
        engine: MonitorEngine,
        strict_ordering: bool = False,
    ):
        self.worker_id = worker_id
        self.queue = queue
        self.engine = engine
        self.strict_ordering = strict_ordering

        self._running = False
        self._batches_processed = 0
        self._transactions_processed = 0
        self._batches_dropped = 0
        self.highest_dispatched: Optional[int] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the worker loop."""
        self._running = True
        logger.info("Worker starting", worker_id=self.worker_id)

        try:
            while self._running:
                batch = await self.queue.get()
                try:
                    await self.process_batch(batch)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error(
                        "Worker error",
                        worker_id=self.worker_id,
                        block_number=batch.block_number,
                        error=str(e),
                    )
                finally:
                    self.queue.task_done()
        finally:
            self._running = False
            logger.info(
                "Worker stopped",
                worker_id=self.worker_id,
                batches_processed=self._batches_processed,
            )

    def stop(self) -> None:
        """Signal worker to stop after the current batch."""
        self._running = False

    async def process_batch(self, batch: BlockBatch) -> int:
        """Evaluate one batch. Returns the number of rule matches."""
        if self._out_of_order(batch):
            self._batches_dropped += 1
            logger.warning(
                "Dropping recovered batch behind dispatch order",
                worker_id=self.worker_id,
                block_number=batch.block_number,
                highest_dispatched=self.highest_dispatched,
            )
            return 0

        matches = 0
        for record in batch.transactions:
            matches += await self.engine.evaluate(record)

        self._batches_processed += 1
        self._transactions_processed += batch.tx_count
        if self.highest_dispatched is None or batch.block_number > self.highest_dispatched:
            self.highest_dispatched = batch.block_number

        logger.debug(
            "Batch processed",
            worker_id=self.worker_id,
            block_number=batch.block_number,
            tx_count=batch.tx_count,
            matches=matches,
            recovered=batch.recovered,
        )
        return matches

    def _out_of_order(self, batch: BlockBatch) -> bool:
        if not self.strict_ordering or self.highest_dispatched is None:
            return False
        return batch.block_number < self.highest_dispatched

    def get_stats(self) -> dict:
        return {
            "worker_id": self.worker_id,
            "running": self._running,
            "batches_processed": self._batches_processed,
            "transactions_processed": self._transactions_processed,
            "batches_dropped": self._batches_dropped,
            "highest_dispatched": self.highest_dispatched,
        }
