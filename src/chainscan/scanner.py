"""
Chain scanners: the per-tick state machine that tracks scan progress.

Each tick:
1. Pick an endpoint and fetch the chain tip
2. Resolve the target height (the "latest" sentinel becomes the tip)
3. Fetch the block at the cursor
4. ADVANCE, PAUSE, SKIP_AND_ADVANCE or ERROR_RETAINED
"""

import asyncio
from abc import ABC, abstractmethod
from collections import Counter
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

import structlog

from .config import ChainConfig, UnsupportedChainError
from .models import LATEST_BLOCK, BlockBatch, ChainType, TransactionRecord
from .monitor import MonitorEngine
from .processor import BlockProcessor

if TYPE_CHECKING:
    from .queue.event_queue import EventQueue
    from .queue.retry import RetryScheduler
    from .queue.rpc_pool import EndpointPool

logger = structlog.get_logger()


class TickOutcome(Enum):
    ADVANCE = "advance"
    PAUSE = "pause"
    SKIP_AND_ADVANCE = "skip_and_advance"
    ERROR_RETAINED = "error_retained"


class ChainScanner(ABC):
    """
    Owns the scan cursor of one chain.

    The cursor only changes inside tick(), and ticks never overlap.
    """

    chain_type: ChainType

    def __init__(
        self,
        config: ChainConfig,
        pool: "EndpointPool",
        event_queue: "EventQueue",
        engine: MonitorEngine,
        retry_scheduler: Optional["RetryScheduler"] = None,
    ):
        self.config = config
        self.pool = pool
        self.event_queue = event_queue
        self.engine = engine
        self.retry_scheduler = retry_scheduler

        self._cursor = config.begin_block
        self._lock = asyncio.Lock()
        self.outcomes: Counter = Counter()
        self.last_tip: Optional[int] = None

    @property
    def chain(self) -> str:
        return self.config.chain

    @property
    def cursor(self) -> int:
        """Next block height to fetch (LATEST_BLOCK until the first tip is known)."""
        return self._cursor

    async def tick(self) -> TickOutcome:
        """Run one scan step. Never raises for fetch or decode errors."""
        async with self._lock:
            outcome = await self._scan()
            self.outcomes[outcome] += 1
            return outcome

    @abstractmethod
    async def _scan(self) -> TickOutcome:
        ...

    @abstractmethod
    async def fetch_batch(self, height: int) -> Optional[BlockBatch]:
        """Fetch one height outside the cursor. None if it has no transactions."""
        ...

    async def dispatch(self, record: TransactionRecord) -> int:
        """Evaluate monitor rules for one transaction."""
        return await self.engine.evaluate(record)

    def notify_retry(self, height: int) -> None:
        """Hand a skipped height to the retry scheduler, if there is one."""
        if self.retry_scheduler is None:
            logger.debug("No retry policy, skipped height not retried", chain=self.chain, height=height)
            return
        try:
            self.retry_scheduler.add(height)
        except Exception:
            logger.exception("Could not schedule retry", chain=self.chain, height=height)


class EvmChainScanner(ChainScanner):
    """Scans Ethereum and every chain speaking the Ethereum JSON-RPC (BSC, Polygon, ...)."""

    chain_type = ChainType.ETH

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.processor = BlockProcessor(chain=self.chain)

    async def _scan(self) -> TickOutcome:
        height = self._cursor
        client: Any = None

        try:
            client = self.pool.next()

            tip = await client.get_block_number()
            self.last_tip = tip

            if height == LATEST_BLOCK:
                height = tip
                self._cursor = tip
                logger.info("Starting at chain tip", chain=self.chain, height=tip)

            if height > tip:
                logger.info(
                    "Chain tip is behind scan progress, pausing",
                    chain=self.chain,
                    cursor=height,
                    tip=tip,
                )
                self.pool.record(client, success=True)
                return TickOutcome.PAUSE

            block = await client.get_block(height, full_transactions=True)
            self.pool.record(client, success=True)

            if not self.processor.transactions_of(block):
                if block is None:
                    logger.info("Block does not exist", chain=self.chain, height=height, tip=tip)
                else:
                    logger.info("No transactions in block", chain=self.chain, height=height, tip=tip)

                if tip > height:
                    self._cursor = height + 1
                    self.notify_retry(height)
                    return TickOutcome.SKIP_AND_ADVANCE
                return TickOutcome.PAUSE

            batch = self.processor.process(block, height)
            await self.event_queue.put(batch)
            self._cursor = height + 1

            logger.debug(
                "Block enqueued",
                chain=self.chain,
                height=height,
                tx_count=batch.tx_count,
            )
            return TickOutcome.ADVANCE

        except asyncio.CancelledError:
            raise
        except Exception as e:
            if client is not None:
                self.pool.record(client, success=False)
            logger.error(
                "Error while scanning, will retry same height",
                chain=self.chain,
                height=height,
                error=str(e),
            )
            return TickOutcome.ERROR_RETAINED

    async def fetch_batch(self, height: int) -> Optional[BlockBatch]:
        client = self.pool.next()
        try:
            block = await client.get_block(height, full_transactions=True)
        except Exception:
            self.pool.record(client, success=False)
            raise
        self.pool.record(client, success=True)

        if not self.processor.transactions_of(block):
            return None
        return self.processor.process(block, height, recovered=True)


class UnsupportedChainScanner(ChainScanner):
    """Reserved chain family without an implementation."""

    def __init__(self, *args, **kwargs):
        raise UnsupportedChainError(f"Scanning {self.chain_type.value.upper()} is not supported yet")

    async def _scan(self) -> TickOutcome:
        raise NotImplementedError

    async def fetch_batch(self, height: int) -> Optional[BlockBatch]:
        raise NotImplementedError


class SolChainScanner(UnsupportedChainScanner):
    chain_type = ChainType.SOL


class TronChainScanner(UnsupportedChainScanner):
    chain_type = ChainType.TRON


SCANNERS: dict[ChainType, type[ChainScanner]] = {
    ChainType.ETH: EvmChainScanner,
    ChainType.SOL: SolChainScanner,
    ChainType.TRON: TronChainScanner,
}


def create_scanner(
    config: ChainConfig,
    pool: "EndpointPool",
    event_queue: "EventQueue",
    engine: MonitorEngine,
    retry_scheduler: Optional["RetryScheduler"] = None,
) -> ChainScanner:
    """Pick the scanner for config.chain_type."""
    scanner_cls = SCANNERS.get(config.chain_type)
    if scanner_cls is None:
        raise UnsupportedChainError(f"Unknown chain type: {config.chain_type}")
    return scanner_cls(config, pool, event_queue, engine, retry_scheduler)
