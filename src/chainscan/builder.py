"""
Fluent builder for a ScanService.

    service = (
        ScanBuilder()
        .set_rpc_urls(ChainType.ETH, ["https://rpc.example.com"])
        .set_scan_period(1000)
        .set_begin_block(LATEST_BLOCK)
        .add_monitor_rule(MonitorRule(callback=print, filter=Filter(to_address="0x...")))
        .build()
    )
    await service.run()
"""

from typing import Optional, Sequence

from .config import ChainConfig
from .models import ChainType, Filter
from .monitor import Callback, MonitorRule
from .queue.manager import ScanService


class ScanBuilder:
    """
    Collects settings and monitor rules, then builds a ScanService.

    Every ScanBuilder owns its own rule list, so independent scans can
    live in the same process.
    """

    def __init__(self, chain: str = "eth"):
        self._settings: dict = {"chain": chain}
        self._rules: list[MonitorRule] = []

    def set_rpc_urls(self, chain_type: ChainType, urls: Sequence[str]) -> "ScanBuilder":
        self._settings["chain_type"] = chain_type
        self._settings["rpc_urls"] = tuple(urls)
        return self

    def set_retry_policy(self, policy) -> "ScanBuilder":
        self._settings["retry_policy"] = policy
        return self

    def set_scan_period(self, scan_period_ms: int) -> "ScanBuilder":
        self._settings["scan_period_ms"] = scan_period_ms
        return self

    def set_begin_block(self, height: int) -> "ScanBuilder":
        self._settings["begin_block"] = height
        return self

    def set_option(self, name: str, value) -> "ScanBuilder":
        """Any other ChainConfig field (rpc_timeout, max_queue_size, strict_ordering, ...)."""
        if name not in ChainConfig.model_fields:
            raise AttributeError(f"ChainConfig has no field {name!r}")
        self._settings[name] = value
        return self

    def add_monitor_rule(self, rule: MonitorRule) -> "ScanBuilder":
        self._rules.append(rule)
        return self

    def add_monitor(
        self,
        callback: Callback,
        filter: Optional[Filter] = None,
        name: Optional[str] = None,
    ) -> "ScanBuilder":
        return self.add_monitor_rule(MonitorRule(callback=callback, filter=filter, name=name))

    def build_config(self) -> ChainConfig:
        return ChainConfig(**self._settings)

    def build(self) -> ScanService:
        return ScanService(self.build_config(), self._rules)

    async def start(self) -> ScanService:
        """Build and start. Configuration errors raise before scanning begins."""
        service = self.build()
        await service.start()
        return service
