"""
Retry Scheduler: re-verifies block heights the scanner skipped.

Runs as its own task so the scanner never waits on retry outcomes.
"""

import asyncio
import time
from typing import Awaitable, Callable, Optional

import structlog

from ..models import BlockBatch
from ..policy import RetryAction, RetryDecision, RetryEntry, RetryPolicy

logger = structlog.get_logger()

FetchBatch = Callable[[int], Awaitable[Optional[BlockBatch]]]
Deliver = Callable[[BlockBatch], Awaitable[None]]


class RetryScheduler:
    """
    Holds skipped heights and re-fetches them according to a RetryPolicy.

    Lifecycle of an entry:
    1. add(height) creates it; the policy decides when the first check runs
    2. fetch_batch(height) is called when it is due
    3. A non-empty batch is delivered and the entry removed
    4. Otherwise the policy decides: retry now, retry later or give up
    """

    def __init__(
        self,
        policy: RetryPolicy,
        fetch_batch: FetchBatch,
        deliver: Deliver,
        chain: str = "eth",
    ):
        self.policy = policy
        self.fetch_batch = fetch_batch
        self.deliver = deliver
        self.chain = chain

        self._entries: dict[int, RetryEntry] = {}
        self._wakeup = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

        self.added = 0
        self.recovered = 0
        self.given_up = 0

    def add(self, height: int) -> bool:
        """
        Register a skipped height. Returns False if it is already pending
        or the policy gives up on it straight away.
        """
        if height in self._entries:
            return False

        entry = RetryEntry(height=height)
        self.added += 1
        if not self._schedule(entry, self._decide(entry)):
            return False

        self._entries[height] = entry
        self._wakeup.set()
        logger.info("Height scheduled for retry", chain=self.chain, height=height)
        return True

    @property
    def pending(self) -> list[int]:
        return sorted(self._entries)

    def __contains__(self, height: int) -> bool:
        return height in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name=f"retry-{self.chain}")
        return self._task

    async def stop(self) -> None:
        """Cancel the retry task and drop pending entries."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error("Retry task had failed", chain=self.chain, error=str(e))
            self._task = None

        if self._entries:
            logger.info("Dropping pending retries", chain=self.chain, heights=self.pending)
        self._entries.clear()

    async def run(self) -> None:
        """Process entries as they become due."""
        while True:
            self._wakeup.clear()
            entry = self._next_due()
            if entry is None:
                try:
                    await asyncio.wait_for(self._wakeup.wait(), timeout=self._time_until_next_due())
                except asyncio.TimeoutError:
                    pass
                continue

            try:
                await self.verify(entry)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Retry verification failed", chain=self.chain, height=entry.height)
                if self._entries.pop(entry.height, None) is not None:
                    self.given_up += 1

    async def verify(self, entry: RetryEntry) -> bool:
        """Re-fetch one entry's height. Returns True if a batch was delivered."""
        entry.attempts += 1

        try:
            batch = await self.fetch_batch(entry.height)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            batch = None
            entry.last_error = str(e)
            logger.warning(
                "Retry fetch failed",
                chain=self.chain,
                height=entry.height,
                attempts=entry.attempts,
                error=str(e),
            )

        if batch is not None and batch.tx_count > 0:
            self._entries.pop(entry.height, None)
            self.recovered += 1
            logger.info(
                "Recovered skipped block",
                chain=self.chain,
                height=entry.height,
                attempts=entry.attempts,
                tx_count=batch.tx_count,
            )
            await self.deliver(batch)
            return True

        if not self._schedule(entry, self._decide(entry)):
            self._entries.pop(entry.height, None)
        return False

    def _decide(self, entry: RetryEntry) -> RetryDecision:
        """Ask the policy. A policy that raises gives up on the entry."""
        try:
            return self.policy.decide(entry)
        except Exception:
            logger.exception("Retry policy failed", chain=self.chain, height=entry.height)
            return RetryDecision.give_up()

    def _schedule(self, entry: RetryEntry, decision: RetryDecision) -> bool:
        """Apply a policy decision. Returns False when the entry is abandoned."""
        if decision.action == RetryAction.GIVE_UP:
            self.given_up += 1
            logger.warning(
                "Giving up on skipped block",
                chain=self.chain,
                height=entry.height,
                attempts=entry.attempts,
                last_error=entry.last_error,
            )
            return False

        now = time.monotonic()
        if decision.action == RetryAction.RETRY_AFTER:
            entry.due_at = now + decision.delay
        else:
            entry.due_at = now
        return True

    def _next_due(self) -> Optional[RetryEntry]:
        now = time.monotonic()
        due = [e for e in self._entries.values() if e.due_at <= now]
        if not due:
            return None
        return min(due, key=lambda e: (e.due_at, e.height))

    def _time_until_next_due(self) -> Optional[float]:
        if not self._entries:
            return None
        next_due = min(e.due_at for e in self._entries.values())
        return max(0.0, next_due - time.monotonic())
