"""
Tests for the chain scanner tick state machine.
"""

import pytest

from chainscan.config import UnsupportedChainError
from chainscan.models import LATEST_BLOCK, ChainType, Filter
from chainscan.monitor import MonitorEngine, MonitorRule
from chainscan.queue.event_queue import EventQueue
from chainscan.queue.rpc_pool import EndpointPool
from chainscan.rpc import RPCError
from chainscan.scanner import EvmChainScanner, TickOutcome, create_scanner

from conftest import ALICE, BOB, TOKEN, FakeRPC, make_block, make_config, make_scanner, make_tx


class TestAdvance:
    """Non-empty blocks produce one batch and move the cursor by one."""

    @pytest.mark.asyncio
    async def test_non_empty_block_is_enqueued(self, rpc):
        rpc.tip = 105
        rpc.blocks[100] = make_block(100, [make_tx(index=i) for i in range(3)])
        scanner = make_scanner(rpc)

        outcome = await scanner.tick()

        assert outcome == TickOutcome.ADVANCE
        assert scanner.cursor == 101
        assert scanner.event_queue.qsize() == 1
        batch = scanner.event_queue.get_nowait()
        assert batch.block_number == 100
        assert batch.tx_count == 3
        assert batch.recovered is False

    @pytest.mark.asyncio
    async def test_block_at_tip_is_processed(self, rpc):
        rpc.tip = 100
        rpc.blocks[100] = make_block(100, [make_tx()])
        scanner = make_scanner(rpc)

        assert await scanner.tick() == TickOutcome.ADVANCE
        assert scanner.cursor == 101

    @pytest.mark.asyncio
    async def test_consecutive_ticks_enqueue_in_height_order(self, rpc):
        rpc.tip = 110
        for h in range(100, 104):
            rpc.blocks[h] = make_block(h, [make_tx()])
        scanner = make_scanner(rpc)

        for _ in range(4):
            await scanner.tick()

        heights = [scanner.event_queue.get_nowait().block_number for _ in range(4)]
        assert heights == [100, 101, 102, 103]
        assert scanner.cursor == 104

    @pytest.mark.asyncio
    async def test_full_transactions_requested(self, rpc):
        rpc.tip = 100
        rpc.blocks[100] = make_block(100, [make_tx()])
        scanner = make_scanner(rpc)

        await scanner.tick()

        assert ("eth_getBlockByNumber", 100, True) in rpc.calls


class TestPause:
    """The cursor never moves past the tip."""

    @pytest.mark.asyncio
    async def test_cursor_ahead_of_tip_pauses(self, rpc, recording_retry):
        rpc.tip = 99
        scanner = make_scanner(rpc, retry=recording_retry)

        outcome = await scanner.tick()

        assert outcome == TickOutcome.PAUSE
        assert scanner.cursor == 100
        assert scanner.event_queue.empty()
        assert recording_retry.heights == []
        # No block fetch when the tip is behind
        assert all(call[0] == "eth_blockNumber" for call in rpc.calls)

    @pytest.mark.asyncio
    async def test_pause_is_idempotent(self, rpc):
        rpc.tip = 99
        scanner = make_scanner(rpc)

        for _ in range(5):
            assert await scanner.tick() == TickOutcome.PAUSE

        assert scanner.cursor == 100

    @pytest.mark.asyncio
    async def test_missing_block_at_tip_pauses(self, rpc, recording_retry):
        rpc.tip = 100
        scanner = make_scanner(rpc, retry=recording_retry)

        assert await scanner.tick() == TickOutcome.PAUSE
        assert scanner.cursor == 100
        assert recording_retry.heights == []

    @pytest.mark.asyncio
    async def test_empty_block_at_tip_pauses(self, rpc, recording_retry):
        rpc.tip = 100
        rpc.blocks[100] = make_block(100, [])
        scanner = make_scanner(rpc, retry=recording_retry)

        assert await scanner.tick() == TickOutcome.PAUSE
        assert scanner.cursor == 100
        assert scanner.event_queue.empty()


class TestSkip:
    """Missing or empty blocks behind the tip are skipped and retried later."""

    @pytest.mark.asyncio
    async def test_missing_block_behind_tip_skips(self, rpc, recording_retry):
        rpc.tip = 110
        scanner = make_scanner(rpc, retry=recording_retry)

        outcome = await scanner.tick()

        assert outcome == TickOutcome.SKIP_AND_ADVANCE
        assert scanner.cursor == 101
        assert recording_retry.heights == [100]
        assert scanner.event_queue.empty()

    @pytest.mark.asyncio
    async def test_empty_block_behind_tip_skips(self, rpc, recording_retry):
        rpc.tip = 101
        rpc.blocks[100] = make_block(100, [])
        scanner = make_scanner(rpc, retry=recording_retry)

        assert await scanner.tick() == TickOutcome.SKIP_AND_ADVANCE
        assert scanner.cursor == 101
        assert recording_retry.heights == [100]

    @pytest.mark.asyncio
    async def test_each_skip_notified_once(self, rpc, recording_retry):
        rpc.tip = 110
        rpc.blocks[102] = make_block(102, [make_tx()])
        scanner = make_scanner(rpc, retry=recording_retry)

        for _ in range(4):
            await scanner.tick()

        assert recording_retry.heights == [100, 101, 103]
        assert scanner.cursor == 104

    @pytest.mark.asyncio
    async def test_skip_without_retry_scheduler(self, rpc):
        rpc.tip = 110
        scanner = make_scanner(rpc)

        assert await scanner.tick() == TickOutcome.SKIP_AND_ADVANCE
        assert scanner.cursor == 101

    @pytest.mark.asyncio
    async def test_retry_registration_error_still_skips(self, rpc):
        class BrokenRetry:
            def add(self, height):
                raise RuntimeError("policy bug")

        rpc.tip = 110
        scanner = make_scanner(rpc, retry=BrokenRetry())

        assert await scanner.tick() == TickOutcome.SKIP_AND_ADVANCE
        assert scanner.cursor == 101
        assert scanner.outcomes[TickOutcome.ERROR_RETAINED] == 0


class TestErrors:
    """Fetch errors keep the cursor where it was."""

    @pytest.mark.asyncio
    async def test_tip_fetch_error_retains_cursor(self, rpc):
        rpc.error = RPCError("connection refused")
        scanner = make_scanner(rpc)

        outcome = await scanner.tick()

        assert outcome == TickOutcome.ERROR_RETAINED
        assert scanner.cursor == 100
        assert scanner.pool.endpoints[0].failed_requests == 1

    @pytest.mark.asyncio
    async def test_malformed_block_retains_cursor(self, rpc):
        rpc.tip = 105
        rpc.blocks[100] = make_block(100, [make_tx(value="not-a-number")])
        scanner = make_scanner(rpc)

        assert await scanner.tick() == TickOutcome.ERROR_RETAINED
        assert scanner.cursor == 100
        assert scanner.event_queue.empty()

    @pytest.mark.asyncio
    async def test_same_height_retried_after_recovery(self, rpc):
        rpc.tip = 105
        rpc.blocks[100] = make_block(100, [make_tx()])
        rpc.error = RPCError("timeout")
        scanner = make_scanner(rpc)

        assert await scanner.tick() == TickOutcome.ERROR_RETAINED
        rpc.error = None
        assert await scanner.tick() == TickOutcome.ADVANCE

        assert scanner.event_queue.get_nowait().block_number == 100
        assert scanner.outcomes[TickOutcome.ERROR_RETAINED] == 1
        assert scanner.outcomes[TickOutcome.ADVANCE] == 1


class TestLatestSentinel:

    @pytest.mark.asyncio
    async def test_latest_resolves_to_tip(self, rpc):
        rpc.tip = 500
        rpc.blocks[500] = make_block(500, [make_tx()])
        scanner = make_scanner(rpc, begin_block=LATEST_BLOCK)

        assert await scanner.tick() == TickOutcome.ADVANCE

        assert scanner.event_queue.get_nowait().block_number == 500
        assert scanner.cursor == 501

    @pytest.mark.asyncio
    async def test_latest_with_empty_tip_pins_cursor(self, rpc):
        rpc.tip = 500
        scanner = make_scanner(rpc, begin_block=LATEST_BLOCK)

        assert await scanner.tick() == TickOutcome.PAUSE
        assert scanner.cursor == 500

        rpc.tip = 503
        assert await scanner.tick() == TickOutcome.SKIP_AND_ADVANCE
        assert scanner.cursor == 501


class TestNormalizationBeforeFiltering:

    @pytest.mark.asyncio
    async def test_end_to_end_to_address_match(self, rpc, collector):
        rpc.tip = 105
        rpc.blocks[100] = make_block(100, [
            make_tx(to_address=BOB, index=0),
            make_tx(to_address=TOKEN, index=1),
            make_tx(to_address=ALICE, index=2),
        ])
        rule = MonitorRule(callback=collector, filter=Filter(to_address=TOKEN.lower()))
        scanner = make_scanner(rpc, rules=[rule])

        await scanner.tick()
        batch = scanner.event_queue.get_nowait()
        for record in batch.transactions:
            await scanner.dispatch(record)

        assert len(collector.records) == 1
        assert collector.records[0].transaction_index == 1
        assert scanner.cursor == 101

    @pytest.mark.asyncio
    async def test_absent_value_matches_min_zero(self, rpc, collector):
        rpc.tip = 100
        rpc.blocks[100] = make_block(100, [make_tx(value=None)])
        rule = MonitorRule(callback=collector, filter=Filter(min_value=0))
        scanner = make_scanner(rpc, rules=[rule])

        await scanner.tick()
        record = scanner.event_queue.get_nowait().transactions[0]

        assert record.value == 0
        assert await scanner.dispatch(record) == 1


class TestFetchBatch:

    @pytest.mark.asyncio
    async def test_fetch_batch_marks_recovered(self, rpc):
        rpc.blocks[90] = make_block(90, [make_tx()])
        scanner = make_scanner(rpc)

        batch = await scanner.fetch_batch(90)

        assert batch.block_number == 90
        assert batch.recovered is True
        assert scanner.cursor == 100

    @pytest.mark.asyncio
    async def test_fetch_batch_none_when_empty(self, rpc):
        rpc.blocks[90] = make_block(90, [])
        scanner = make_scanner(rpc)

        assert await scanner.fetch_batch(90) is None
        assert await scanner.fetch_batch(91) is None


class TestEndpointRotation:

    @pytest.mark.asyncio
    async def test_ticks_rotate_endpoints(self):
        first = FakeRPC(tip=99, url="http://a")
        second = FakeRPC(tip=99, url="http://b")
        config = make_config()
        scanner = EvmChainScanner(
            config,
            EndpointPool.from_clients([first, second]),
            EventQueue(),
            MonitorEngine([]),
        )

        for _ in range(3):
            await scanner.tick()

        assert len(first.calls) == 2
        assert len(second.calls) == 1


class TestCreateScanner:

    def test_eth_scanner(self, rpc):
        config = make_config()
        scanner = create_scanner(config, EndpointPool.from_clients([rpc]), EventQueue(), MonitorEngine([]))
        assert isinstance(scanner, EvmChainScanner)

    @pytest.mark.parametrize("chain_type", [ChainType.SOL, ChainType.TRON])
    def test_reserved_chains_not_supported(self, rpc, chain_type):
        config = make_config(chain_type=chain_type)
        with pytest.raises(UnsupportedChainError, match="not supported"):
            create_scanner(config, EndpointPool.from_clients([rpc]), EventQueue(), MonitorEngine([]))
