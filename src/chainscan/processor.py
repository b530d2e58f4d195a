"""
Block processor: transforms raw RPC block data into BlockBatch.

This is where transaction fields get normalized before any filter sees them.
"""

from typing import Any, Optional

import structlog

from .models import BlockBatch, TransactionRecord

logger = structlog.get_logger()


def parse_quantity(value: Any) -> int:
    """
    Parse an RPC quantity. Accepts 0x-hex strings, decimal strings and ints.
    Missing or empty values are 0.
    """
    if value is None:
        return 0
    if isinstance(value, bool):
        raise ValueError(f"Not a quantity: {value!r}")
    if isinstance(value, int):
        return value

    text = str(value).strip()
    if not text or text.lower() == "0x":
        return 0
    if text.lower().startswith("0x"):
        return int(text, 16)
    return int(text)


def normalize_input(value: Optional[str]) -> str:
    """Call-data always carries a 0x prefix."""
    if not value:
        return "0x"
    if not value.lower().startswith("0x"):
        return "0x" + value
    return value


class BlockProcessor:
    """
    Transforms raw block data into a BlockBatch.

    Handles:
    - Missing value -> 0
    - Call-data without 0x prefix
    - Blocks returned with tx hashes only
    """

    def __init__(self, chain: str = "eth"):
        self.chain = chain

    def transactions_of(self, block: Optional[dict]) -> list:
        if not block:
            return []
        return block.get("transactions") or []

    def process(self, block: dict, height: int, recovered: bool = False) -> BlockBatch:
        """
        Process a block into a BlockBatch.

        Args:
            block: Raw block data from eth_getBlockByNumber (full transactions)
            height: Height the block was requested at
            recovered: True when produced by the retry scheduler
        """
        records = [
            self.process_transaction(tx, height)
            for tx in self.transactions_of(block)
        ]

        return BlockBatch(
            chain=self.chain,
            block_number=height,
            block_hash=block.get("hash"),
            transactions=tuple(records),
            recovered=recovered,
        )

    def process_transaction(self, tx: Any, height: int) -> TransactionRecord:
        """Build a TransactionRecord from a raw transaction object."""
        if not isinstance(tx, dict):
            # Node returned hashes only
            logger.warning("Block returned without full transactions", chain=self.chain, height=height)
            return TransactionRecord(hash=str(tx), block_number=height)

        index = tx.get("transactionIndex")

        return TransactionRecord(
            hash=tx.get("hash"),
            block_number=height,
            transaction_index=parse_quantity(index) if index is not None else None,
            from_address=tx.get("from"),
            to_address=tx.get("to"),
            value=parse_quantity(tx.get("value")),
            input=normalize_input(tx.get("input", tx.get("data"))),
            raw=tx,
        )
