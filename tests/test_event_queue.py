"""
Tests for the event queue between scanner and monitor worker.
"""

import asyncio

import pytest

from chainscan.models import BlockBatch
from chainscan.queue.event_queue import EventQueue, QueueClosed


def batch(height):
    return BlockBatch(block_number=height)


class TestEventQueue:

    @pytest.mark.asyncio
    async def test_fifo_order(self):
        queue = EventQueue()
        for h in (5, 6, 7):
            await queue.put(batch(h))

        assert [(await queue.get()).block_number for _ in range(3)] == [5, 6, 7]

    @pytest.mark.asyncio
    async def test_bounded_queue_blocks_producer(self):
        queue = EventQueue(maxsize=1)
        await queue.put(batch(1))

        producer = asyncio.create_task(queue.put(batch(2)))
        await asyncio.sleep(0.01)
        assert not producer.done()

        await queue.get()
        queue.task_done()
        await asyncio.wait_for(producer, timeout=1)
        assert queue.qsize() == 1

    @pytest.mark.asyncio
    async def test_closed_queue_rejects_put(self):
        queue = EventQueue()
        await queue.put(batch(1))
        queue.close()

        with pytest.raises(QueueClosed):
            await queue.put(batch(2))
        # Already queued batches are still available
        assert (await queue.get()).block_number == 1

    @pytest.mark.asyncio
    async def test_discard(self):
        queue = EventQueue()
        for h in range(3):
            await queue.put(batch(h))

        assert queue.discard() == 3
        assert queue.empty()
        assert queue.get_stats().discarded == 3
        assert await queue.drain(timeout=0.1)

    @pytest.mark.asyncio
    async def test_drain_waits_for_consumer(self):
        queue = EventQueue()
        await queue.put(batch(1))

        assert not await queue.drain(timeout=0.01)

        await queue.get()
        queue.task_done()
        assert await queue.drain(timeout=0.1)

    @pytest.mark.asyncio
    async def test_stats(self):
        queue = EventQueue()
        await queue.put(batch(1))
        await queue.put(batch(2))
        await queue.get()
        queue.task_done()

        stats = queue.get_stats()
        assert stats.enqueued == 2
        assert stats.consumed == 1
        assert stats.pending == 1
