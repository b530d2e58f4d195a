"""
Endpoint Pool: round-robin over the configured RPC endpoints of one chain.

No health checking: a failing endpoint fails the current tick, and the next
tick picks the next endpoint.
"""

import threading
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

import structlog

from ..rpc import RPCClient

logger = structlog.get_logger()


@dataclass
class RPCEndpoint:
    url: str
    client: Any = field(default=None, repr=False)

    # Runtime state
    total_requests: int = 0
    failed_requests: int = 0

    @property
    def failure_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.failed_requests / self.total_requests


class EndpointPool:
    """
    Round-robin pool of RPC endpoints.

    The index is guarded by a lock so several scan loops (or threads) can
    share one pool.
    """

    def __init__(self, endpoints: Sequence[RPCEndpoint]):
        if not endpoints:
            raise ValueError("EndpointPool requires at least one endpoint")
        self.endpoints = tuple(endpoints)
        self._index = 0
        self._lock = threading.Lock()

    @classmethod
    def from_urls(
        cls,
        urls: Sequence[str],
        timeout: float = 10.0,
        max_retries: int = 1,
    ) -> "EndpointPool":
        """Create pool with one RPCClient per URL."""
        return cls([
            RPCEndpoint(url=url, client=RPCClient(url, timeout=timeout, max_retries=max_retries))
            for url in urls
        ])

    @classmethod
    def from_clients(cls, clients: Sequence[Any]) -> "EndpointPool":
        """Wrap already-built clients (anything with get_block_number / get_block)."""
        return cls([
            RPCEndpoint(url=getattr(c, "url", repr(c)), client=c)
            for c in clients
        ])

    def next_endpoint(self) -> RPCEndpoint:
        with self._lock:
            endpoint = self.endpoints[self._index]
            self._index = (self._index + 1) % len(self.endpoints)
            return endpoint

    def next(self) -> Any:
        """Client of the next endpoint in round-robin order."""
        return self.next_endpoint().client

    def record(self, client: Any, success: bool = True) -> None:
        """Track a request outcome for the endpoint owning `client`."""
        with self._lock:
            for endpoint in self.endpoints:
                if endpoint.client is client:
                    endpoint.total_requests += 1
                    if not success:
                        endpoint.failed_requests += 1
                    return

    async def close(self) -> None:
        """Close clients that hold network sessions."""
        for endpoint in self.endpoints:
            close = getattr(endpoint.client, "close", None)
            if close is None:
                continue
            try:
                await close()
            except Exception as e:
                logger.warning("Failed to close RPC client", rpc_url=endpoint.url[:50], error=str(e))

    def get_stats(self) -> list[dict]:
        """Get stats for all endpoints."""
        with self._lock:
            return [
                {
                    "url": e.url[:50] + "..." if len(e.url) > 50 else e.url,
                    "total_requests": e.total_requests,
                    "failed_requests": e.failed_requests,
                    "failure_rate": f"{e.failure_rate:.1%}",
                }
                for e in self.endpoints
            ]

    def __len__(self) -> int:
        return len(self.endpoints)
