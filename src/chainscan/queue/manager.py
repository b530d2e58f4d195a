"""
Scan Service: orchestrates endpoint pool, scanner, event queue, retry
scheduler and monitor worker for a single chain.

This is the main entry point for running a scan.
"""

import asyncio
import signal
from typing import Optional, Sequence

import structlog

from ..abi import decode_call_data
from ..config import ChainConfig, ConfigurationError
from ..monitor import Decoder, MonitorEngine, MonitorRule
from ..scanner import ChainScanner, TickOutcome, create_scanner
from .event_queue import EventQueue
from .retry import RetryScheduler
from .rpc_pool import EndpointPool
from .worker import MonitorWorker

logger = structlog.get_logger()


class ScanService:
    """
    Manages the scan of a single chain.

    Features:
    - Validates configuration before anything starts
    - Runs the scanner on a fixed, non-overlapping period
    - Runs the monitor worker and retry scheduler as independent tasks
    - Graceful shutdown (drain or discard queued batches)
    - Stats logging
    """

    def __init__(
        self,
        config: ChainConfig,
        rules: Sequence[MonitorRule],
        pool: Optional[EndpointPool] = None,
        decoder: Decoder = decode_call_data,
    ):
        self.config = config
        self.rules = tuple(rules)
        self.decoder = decoder

        # Components, built in start()
        self.pool: Optional[EndpointPool] = pool
        self.queue: Optional[EventQueue] = None
        self.engine: Optional[MonitorEngine] = None
        self.scanner: Optional[ChainScanner] = None
        self.retry_scheduler: Optional[RetryScheduler] = None
        self.worker: Optional[MonitorWorker] = None

        # State
        self._running = False
        self._shutdown_event: Optional[asyncio.Event] = None
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return self._running

    @property
    def cursor(self) -> Optional[int]:
        return self.scanner.cursor if self.scanner else None

    def validate(self) -> None:
        """Raise ConfigurationError if the scan cannot start."""
        self.config.check(len(self.rules))
        if self.pool is not None and len(self.pool) == 0:
            raise ConfigurationError("rpcUrl cannot be empty")

    async def start(self) -> None:
        """
        Validate, wire the components and spawn the background tasks.

        Configuration errors raise here, before any scanning begins. Runtime
        scan errors never propagate out of this method.
        """
        if self._running:
            raise RuntimeError(f"Scan service for {self.config.chain} is already running")

        self.validate()

        pool = self.pool or EndpointPool.from_urls(
            self.config.rpc_urls,
            timeout=self.config.rpc_timeout,
            max_retries=self.config.rpc_max_retries,
        )
        queue = EventQueue(maxsize=self.config.max_queue_size)
        engine = MonitorEngine(self.rules, decoder=self.decoder)
        scanner = create_scanner(self.config, pool, queue, engine)

        self.pool, self.queue, self.engine, self.scanner = pool, queue, engine, scanner

        if self.config.retry_policy is not None:
            self.retry_scheduler = RetryScheduler(
                policy=self.config.retry_policy,
                fetch_batch=scanner.fetch_batch,
                deliver=queue.put,
                chain=self.config.chain,
            )
            scanner.retry_scheduler = self.retry_scheduler

        self.worker = MonitorWorker(
            worker_id=f"{self.config.chain}-monitor",
            queue=queue,
            engine=engine,
            strict_ordering=self.config.strict_ordering,
        )

        self._shutdown_event = asyncio.Event()
        self._running = True

        self._tasks = [
            asyncio.create_task(self.worker.start(), name=f"monitor-{self.config.chain}"),
            asyncio.create_task(self._scan_loop(), name=f"scan-{self.config.chain}"),
            asyncio.create_task(self._stats_logger_loop(), name=f"stats-{self.config.chain}"),
        ]
        if self.retry_scheduler is not None:
            self._tasks.append(self.retry_scheduler.start())

        logger.info(
            "Scan service started",
            chain=self.config.chain,
            chain_type=self.config.chain_type.value,
            rpc_count=len(pool),
            rules=len(self.rules),
            begin_block=self.config.begin_block,
            scan_period_ms=self.config.scan_period_ms,
            retry_policy=repr(self.config.retry_policy),
        )

    async def run(self) -> None:
        """Start, then block until a shutdown signal arrives."""
        await self.start()
        self._setup_signal_handlers()
        try:
            await self._shutdown_event.wait()
        finally:
            await self.stop()

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        try:
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, self._signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            signal.signal(signal.SIGINT, lambda s, f: self._signal_handler())
            signal.signal(signal.SIGTERM, lambda s, f: self._signal_handler())

    def _signal_handler(self) -> None:
        """Handle shutdown signal."""
        logger.info("Shutdown signal received", chain=self.config.chain)
        self.request_shutdown()

    def request_shutdown(self) -> None:
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    async def stop(self, drain_timeout: float = 10.0) -> None:
        """
        Clean shutdown: stop ticking, cancel pending retries, then drain or
        discard the queue depending on config.drain_on_stop.
        """
        if not self._running:
            return

        logger.info("Shutting down...", chain=self.config.chain)
        self._running = False
        self.request_shutdown()

        scan_task, stats_task = self._tasks[1], self._tasks[2]
        for task in (scan_task, stats_task):
            try:
                await asyncio.wait_for(task, timeout=drain_timeout)
            except asyncio.TimeoutError:
                logger.warning("Task didn't stop in time, cancelled", task=task.get_name())
            except asyncio.CancelledError:
                pass

        if self.retry_scheduler is not None:
            await self.retry_scheduler.stop()

        self.queue.close()
        if self.config.drain_on_stop:
            if not await self.queue.drain(timeout=drain_timeout):
                dropped = self.queue.discard()
                logger.warning("Queue not drained in time", chain=self.config.chain, dropped=dropped)
        else:
            dropped = self.queue.discard()
            if dropped:
                logger.info("Discarded queued batches", chain=self.config.chain, dropped=dropped)

        self.worker.stop()
        worker_task = self._tasks[0]
        worker_task.cancel()
        try:
            await worker_task
        except asyncio.CancelledError:
            pass

        await self.pool.close()
        self._tasks = []

        logger.info("Shutdown complete", chain=self.config.chain, cursor=self.cursor)

    async def _wait_for_shutdown(self, timeout: float) -> bool:
        """Sleep up to timeout seconds. Returns True if shutdown was requested."""
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def _scan_loop(self) -> None:
        """
        Tick the scanner on a fixed period.

        The next tick is scheduled only after the previous one finished, so
        a slow tick stretches the period instead of overlapping.
        """
        loop = asyncio.get_running_loop()

        while self._running:
            started = loop.time()
            outcome = await self.scanner.tick()

            if outcome == TickOutcome.ERROR_RETAINED:
                delay = self.config.error_backoff
            else:
                delay = self.config.scan_period

            remaining = max(0.0, delay - (loop.time() - started))
            if await self._wait_for_shutdown(remaining):
                break

    async def _stats_logger_loop(self) -> None:
        """Periodically log stats."""
        while self._running:
            if await self._wait_for_shutdown(self.config.stats_interval):
                break
            try:
                logger.info("Stats", **self.get_stats())
            except Exception as e:
                logger.error("Error logging stats", error=str(e))

    def get_stats(self) -> dict:
        stats = {
            "chain": self.config.chain,
            "running": self._running,
            "cursor": self.cursor,
        }

        if self.scanner is not None:
            stats["tip"] = self.scanner.last_tip
            stats["ticks"] = {o.value: self.scanner.outcomes[o] for o in TickOutcome}
        if self.queue is not None:
            queue_stats = self.queue.get_stats()
            stats["queue_pending"] = queue_stats.pending
            stats["batches_enqueued"] = queue_stats.enqueued
            stats["batches_per_sec"] = f"{queue_stats.batches_per_second:.1f}"
        if self.retry_scheduler is not None:
            stats["retry_pending"] = len(self.retry_scheduler)
            stats["retry_recovered"] = self.retry_scheduler.recovered
            stats["retry_given_up"] = self.retry_scheduler.given_up
        if self.engine is not None:
            stats["callbacks_invoked"] = self.engine.callbacks_invoked
            stats["callback_errors"] = self.engine.callback_errors
        if self.pool is not None:
            stats["endpoints"] = self.pool.get_stats()

        return stats
