"""
RPC client for fetching blocks from EVM nodes.

Supports:
- One endpoint per client (the endpoint pool does the round-robin)
- Explicit total timeout per request
- Optional retries with backoff inside the transport
"""

import asyncio
from typing import Any, Optional

import aiohttp
import structlog

logger = structlog.get_logger()


class RPCError(Exception):
    """RPC call failed after retries."""
    pass


class RPCClient:
    """
    Async JSON-RPC client for a single EVM node.

    "Block not found" is reported as None by get_block; transport and
    JSON-RPC failures raise RPCError.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        max_retries: int = 1,
        backoff_base: float = 1.0,
    ):
        self.url = url
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.max_retries = max(1, max_retries)
        self.backoff_base = backoff_base

        self._request_id = 0
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def open(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    def _next_request_id(self) -> int:
        self._request_id += 1
        return self._request_id

    async def _call(self, method: str, params: list[Any]) -> Any:
        """Make a single RPC call with retries."""
        await self.open()

        last_error = None

        for attempt in range(self.max_retries):
            payload = {
                "jsonrpc": "2.0",
                "method": method,
                "params": params,
                "id": self._next_request_id(),
            }

            try:
                async with self._session.post(self.url, json=payload) as resp:
                    if resp.status != 200:
                        raise RPCError(f"HTTP {resp.status}: {await resp.text()}")

                    data = await resp.json(content_type=None)

                    if not isinstance(data, dict):
                        raise RPCError(f"Malformed RPC response: {data!r}")
                    if "error" in data:
                        raise RPCError(f"RPC error: {data['error']}")

                    return data.get("result")

            except (aiohttp.ClientError, asyncio.TimeoutError, RPCError) as e:
                last_error = e
                if attempt + 1 >= self.max_retries:
                    break
                wait_time = self.backoff_base * 2 ** attempt
                logger.warning(
                    "RPC call failed, retrying",
                    method=method,
                    rpc_url=self.url[:50],
                    attempt=attempt + 1,
                    max_retries=self.max_retries,
                    wait_time=wait_time,
                    error=str(e),
                )
                await asyncio.sleep(wait_time)

        raise RPCError(f"RPC call {method} failed after {self.max_retries} attempts: {last_error}")

    async def get_block_number(self) -> int:
        """Get the latest block number."""
        result = await self._call("eth_blockNumber", [])
        if not isinstance(result, str):
            raise RPCError(f"Unexpected eth_blockNumber result: {result!r}")
        return int(result, 16)

    async def get_block(self, block_number: int, full_transactions: bool = True) -> Optional[dict]:
        """Get block by number.

        Args:
            block_number: Block number to fetch
            full_transactions: If True, include full tx objects. If False, just hashes.

        Returns None when the node has no block at that height.
        """
        result = await self._call("eth_getBlockByNumber", [hex(block_number), full_transactions])
        if result is None:
            return None
        if not isinstance(result, dict):
            raise RPCError(f"Unexpected eth_getBlockByNumber result: {result!r}")
        return result

    def __repr__(self) -> str:
        return f"RPCClient({self.url[:50]!r})"
