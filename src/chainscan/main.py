#!/usr/bin/env python3
"""
Block scanner CLI.

Usage:
    chainscan --config chain.json --to-address 0xabc...

Config file (chain.json):
{
    "chain": "mainnet",
    "chain_type": "eth",
    "rpcs": ["https://rpc1.example.com", "https://rpc2.example.com"],
    "scan_period_ms": 2000,
    "begin_block": "latest",
    "retry": {"strategy": "fixed", "interval": 5, "max_attempts": 3}
}

Or inline:
    chainscan --rpc https://rpc1.example.com --rpc https://rpc2.example.com \\
        --start-block latest --selector 0xa9059cbb

Defaults can also come from the environment (or a .env file):
    CHAINSCAN_RPC_URLS, CHAINSCAN_SCAN_PERIOD_MS, CHAINSCAN_START_BLOCK

Every matching transaction is written to stdout as one JSON line.
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Optional

import dotenv
import structlog

from .config import ChainConfig
from .models import CallDataFilter, ChainType, Filter, TransactionRecord
from .monitor import MonitorRule
from .policy import FixedIntervalRetryPolicy
from .queue import ScanService

logger = structlog.get_logger()


def configure_logging(level: str = "INFO", json_logs: bool = False) -> None:
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Poll a blockchain block by block and report transactions matching a filter"
    )

    parser.add_argument("--config", type=Path, help="Path to chain config JSON file")
    parser.add_argument(
        "--rpc",
        action="append",
        dest="rpcs",
        help="RPC URL (can be repeated)",
    )
    parser.add_argument("--chain", help="Chain identifier used in logs")
    parser.add_argument(
        "--chain-type",
        choices=[c.value for c in ChainType],
        help="Chain family (default: eth)",
    )
    parser.add_argument(
        "--scan-period",
        type=int,
        default=os.getenv("CHAINSCAN_SCAN_PERIOD_MS"),
        help="Milliseconds between ticks (min 500)",
    )
    parser.add_argument(
        "--start-block",
        default=os.getenv("CHAINSCAN_START_BLOCK"),
        help="Block to start from, or 'latest' (default: 1)",
    )

    # Filter
    parser.add_argument("--from-address", help="Only transactions sent by this address")
    parser.add_argument("--to-address", help="Only transactions sent to this address")
    parser.add_argument("--min-value", type=int, help="Minimum value in wei (inclusive)")
    parser.add_argument("--max-value", type=int, help="Maximum value in wei (inclusive)")
    parser.add_argument("--selector", help="4-byte function selector, e.g. 0xa9059cbb")
    parser.add_argument(
        "--arg-types",
        help="Comma-separated ABI types of the call arguments, e.g. address,uint256",
    )
    parser.add_argument(
        "--arg-values",
        help="Comma-separated expected argument values; leave a slot empty to match anything",
    )

    # Pipeline
    parser.add_argument("--retry-attempts", type=int, help="Re-verify skipped blocks this many times")
    parser.add_argument("--retry-interval", type=float, default=5.0, help="Seconds between retries (default: 5)")
    parser.add_argument("--queue-size", type=int, help="Max queued batches, 0 = unbounded")
    parser.add_argument(
        "--strict-ordering",
        action="store_true",
        default=None,
        help="Drop recovered batches that arrive after newer blocks",
    )
    parser.add_argument("--stats-interval", type=float, help="Seconds between stats logging")

    parser.add_argument("--log-level", default="INFO", help="Log level (default: INFO)")
    parser.add_argument("--json-logs", action="store_true", help="Render logs as JSON")

    return parser.parse_args(argv)


def build_config(args) -> ChainConfig:
    """Merge config file, environment and CLI args."""
    data: dict = {}

    if args.config:
        data = ChainConfig.from_file(args.config).model_dump()

    rpcs = args.rpcs
    if not rpcs and not data.get("rpc_urls"):
        env_rpcs = os.getenv("CHAINSCAN_RPC_URLS", "")
        rpcs = [u.strip() for u in env_rpcs.split(",") if u.strip()]
    if rpcs:
        data["rpc_urls"] = tuple(rpcs)

    overrides = {
        "chain": args.chain,
        "chain_type": args.chain_type,
        "scan_period_ms": args.scan_period,
        "begin_block": args.start_block,
        "max_queue_size": args.queue_size,
        "strict_ordering": args.strict_ordering,
        "stats_interval": args.stats_interval,
    }
    data.update({k: v for k, v in overrides.items() if v is not None})
    if data.get("chain_type") is None:
        data["chain_type"] = ChainType.ETH

    if args.retry_attempts:
        data["retry_policy"] = FixedIntervalRetryPolicy(
            interval=args.retry_interval,
            max_attempts=args.retry_attempts,
        )

    return ChainConfig(**data)


def _split(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [v.strip() for v in value.split(",")]


def build_filter(args) -> Optional[Filter]:
    call_data = None
    if args.selector:
        call_data = CallDataFilter(
            function_selector=args.selector,
            type_descriptors=tuple(t for t in _split(args.arg_types) if t),
            expected_values=tuple(v or None for v in _split(args.arg_values)),
        )

    rule_filter = Filter(
        from_address=args.from_address,
        to_address=args.to_address,
        min_value=args.min_value,
        max_value=args.max_value,
        call_data=call_data,
    )
    if rule_filter == Filter():
        return None
    return rule_filter


def print_transaction(record: TransactionRecord) -> None:
    sys.stdout.buffer.write(record.to_json() + b"\n")
    sys.stdout.flush()


async def main(argv=None) -> int:
    dotenv.load_dotenv()
    args = parse_args(argv)
    configure_logging(args.log_level, args.json_logs)

    try:
        config = build_config(args)
        service = ScanService(
            config,
            [MonitorRule(callback=print_transaction, filter=build_filter(args), name="stdout")],
        )
        await service.run()
    except ValueError as e:
        # ConfigurationError and pydantic's ValidationError
        logger.error("Invalid configuration", error=str(e))
        return 2

    return 0


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
