"""
Shared fakes and fixtures for the scanner tests.
"""

import pytest

from chainscan.config import ChainConfig
from chainscan.models import ChainType
from chainscan.monitor import MonitorEngine, MonitorRule
from chainscan.queue.event_queue import EventQueue
from chainscan.queue.rpc_pool import EndpointPool
from chainscan.scanner import EvmChainScanner

TOKEN = "0xdAC17F958D2ee523a2206206994597C13D831ec7"
ALICE = "0x1111111111111111111111111111111111111111"
BOB = "0x2222222222222222222222222222222222222222"
CAROL = "0x3333333333333333333333333333333333333333"


def make_tx(
    from_address=ALICE,
    to_address=BOB,
    value="0x0",
    input="0x",
    tx_hash=None,
    index=0,
):
    tx = {
        "hash": tx_hash or f"0x{index:064x}",
        "from": from_address,
        "to": to_address,
        "transactionIndex": hex(index),
        "input": input,
    }
    if value is not None:
        tx["value"] = value
    return tx


def make_block(height, transactions=()):
    return {
        "number": hex(height),
        "hash": f"0x{height:064x}",
        "transactions": list(transactions),
    }


class FakeRPC:
    """Stands in for RPCClient: a settable tip and a dict of blocks."""

    def __init__(self, tip=0, blocks=None, url="http://fake-rpc"):
        self.url = url
        self.tip = tip
        self.blocks = dict(blocks or {})
        self.error = None
        self.calls = []
        self.closed = False

    async def get_block_number(self):
        self.calls.append(("eth_blockNumber",))
        if self.error:
            raise self.error
        return self.tip

    async def get_block(self, block_number, full_transactions=True):
        self.calls.append(("eth_getBlockByNumber", block_number, full_transactions))
        if self.error:
            raise self.error
        return self.blocks.get(block_number)

    async def close(self):
        self.closed = True


class RecordingRetry:
    """Collects heights handed to the retry scheduler."""

    def __init__(self):
        self.heights = []

    def add(self, height):
        self.heights.append(height)
        return True


class Collector:
    """Monitor callback that remembers what it was called with."""

    def __init__(self):
        self.records = []

    def __call__(self, record):
        self.records.append(record)


def make_config(**overrides):
    settings = {
        "chain": "testnet",
        "chain_type": ChainType.ETH,
        "rpc_urls": ("http://fake-rpc",),
        "scan_period_ms": 500,
        "begin_block": 100,
    }
    settings.update(overrides)
    return ChainConfig(**settings)


def make_scanner(rpc, rules=(), retry=None, **config_overrides):
    config = make_config(**config_overrides)
    pool = EndpointPool.from_clients([rpc])
    queue = EventQueue()
    engine = MonitorEngine(rules, run_sync_in_thread=False)
    return EvmChainScanner(config, pool, queue, engine, retry)


@pytest.fixture
def rpc():
    return FakeRPC()


@pytest.fixture
def collector():
    return Collector()


@pytest.fixture
def recording_retry():
    return RecordingRetry()


@pytest.fixture
def catch_all_rule(collector):
    return MonitorRule(callback=collector, name="catch-all")
