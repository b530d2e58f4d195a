"""
chainscan: polls a blockchain block by block and dispatches transactions to
monitor rules.
"""

from .models import LATEST_BLOCK, BlockBatch, CallDataFilter, ChainType, Filter, TransactionRecord
from .config import ChainConfig, ConfigurationError, UnsupportedChainError
from .policy import (
    ExponentialBackoffRetryPolicy,
    FixedIntervalRetryPolicy,
    RetryAction,
    RetryDecision,
    RetryEntry,
    RetryPolicy,
)
from .rpc import RPCClient, RPCError
from .abi import AbiDecodeError, decode_call_data
from .monitor import MonitorEngine, MonitorRule, filter_matches
from .scanner import ChainScanner, EvmChainScanner, TickOutcome, create_scanner
from .queue import EndpointPool, EventQueue, MonitorWorker, RetryScheduler, ScanService
from .builder import ScanBuilder

__all__ = [
    "LATEST_BLOCK",
    "BlockBatch",
    "CallDataFilter",
    "ChainType",
    "Filter",
    "TransactionRecord",
    "ChainConfig",
    "ConfigurationError",
    "UnsupportedChainError",
    "ExponentialBackoffRetryPolicy",
    "FixedIntervalRetryPolicy",
    "RetryAction",
    "RetryDecision",
    "RetryEntry",
    "RetryPolicy",
    "RPCClient",
    "RPCError",
    "AbiDecodeError",
    "decode_call_data",
    "MonitorEngine",
    "MonitorRule",
    "filter_matches",
    "ChainScanner",
    "EvmChainScanner",
    "TickOutcome",
    "create_scanner",
    "EndpointPool",
    "EventQueue",
    "MonitorWorker",
    "RetryScheduler",
    "ScanService",
    "ScanBuilder",
]
