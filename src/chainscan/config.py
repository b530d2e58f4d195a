"""
Scan configuration.

Config file (chain.json):
{
    "chain": "mainnet",
    "chain_type": "eth",
    "rpcs": ["https://rpc1.example.com", {"url": "https://rpc2.example.com"}],
    "scan_period_ms": 5000,
    "begin_block": "latest",
    "retry": {"strategy": "fixed", "interval": 5, "max_attempts": 3}
}
"""

from pathlib import Path
from typing import Any, Optional, Union

import orjson
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import LATEST_BLOCK, ChainType
from .policy import ExponentialBackoffRetryPolicy, FixedIntervalRetryPolicy

MIN_SCAN_PERIOD_MS = 500
DEFAULT_SCAN_PERIOD_MS = 5000
DEFAULT_BEGIN_BLOCK = 1


class ConfigurationError(ValueError):
    """Invalid scan configuration. Raised before any scanning begins."""
    pass


class UnsupportedChainError(ConfigurationError):
    """The chain family is reserved but has no scanner implementation."""
    pass


class ChainConfig(BaseModel):
    """
    Settings for scanning one chain.

    Immutable after construction. The scan cursor itself lives on the
    scanner; begin_block is only its starting value.
    """
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    chain: str = Field(default="eth", description="Identifier used in logs and batches")
    chain_type: Optional[ChainType] = None
    rpc_urls: tuple[str, ...] = Field(default_factory=tuple)

    scan_period_ms: int = DEFAULT_SCAN_PERIOD_MS
    begin_block: int = DEFAULT_BEGIN_BLOCK
    retry_policy: Optional[Any] = None

    rpc_timeout: float = Field(default=10.0, description="Total timeout per RPC request, seconds")
    rpc_max_retries: int = Field(default=1, description="Attempts per RPC call inside the transport")
    error_backoff_ms: Optional[int] = Field(default=None, description="Delay after a failed tick. Defaults to scan_period_ms")
    max_queue_size: int = Field(default=0, description="0 means unbounded")
    strict_ordering: bool = False
    drain_on_stop: bool = True
    stats_interval: float = 60.0

    @field_validator("begin_block", mode="before")
    @classmethod
    def _parse_begin_block(cls, value):
        if isinstance(value, str) and value.strip().lower() == "latest":
            return LATEST_BLOCK
        return value

    @property
    def scan_period(self) -> float:
        """Scan period in seconds."""
        return self.scan_period_ms / 1000

    @property
    def error_backoff(self) -> float:
        """Delay before the next tick after a failed one, in seconds."""
        if self.error_backoff_ms is None:
            return self.scan_period
        return self.error_backoff_ms / 1000

    def check(self, rule_count: int) -> None:
        """Raise ConfigurationError if scanning cannot start with this config."""
        if not self.rpc_urls:
            raise ConfigurationError("rpcUrl cannot be empty")
        if self.chain_type is None:
            raise ConfigurationError("ChainType cannot be empty")
        if self.scan_period_ms < MIN_SCAN_PERIOD_MS:
            raise ConfigurationError(f"scanPeriod must be at least {MIN_SCAN_PERIOD_MS} ms")
        if self.chain_type == ChainType.ETH and rule_count < 1:
            raise ConfigurationError("You need to set up at least one monitor rule")
        if self.begin_block < LATEST_BLOCK:
            raise ConfigurationError(f"begin_block must be a height or latest, got {self.begin_block}")
        if self.max_queue_size < 0:
            raise ConfigurationError("max_queue_size cannot be negative")

    @classmethod
    def from_dict(cls, data: dict) -> "ChainConfig":
        """Create config from a plain dict (e.g. a parsed JSON file)."""
        data = dict(data)

        rpcs = data.pop("rpcs", None)
        if rpcs is not None:
            data["rpc_urls"] = tuple(
                r["url"] if isinstance(r, dict) else r
                for r in rpcs
            )

        retry = data.pop("retry", None)
        if retry is not None:
            data["retry_policy"] = retry_policy_from_dict(retry)

        return cls(**data)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "ChainConfig":
        with open(path, "rb") as f:
            return cls.from_dict(orjson.loads(f.read()))


def retry_policy_from_dict(config: dict):
    """Build a retry policy from {"strategy": "fixed"|"exponential", ...}."""
    config = dict(config)
    strategy = config.pop("strategy", "fixed")

    if strategy == "fixed":
        return FixedIntervalRetryPolicy(**config)
    if strategy == "exponential":
        return ExponentialBackoffRetryPolicy(**config)

    raise ConfigurationError(f"Unknown retry strategy: {strategy}")
