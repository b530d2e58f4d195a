"""
Core data structures passed between the scanner, the event queue and the
monitor engine.

Design principles:
- One BlockBatch per fetched block (not per transaction)
- Records are immutable once built from a fetched block
- Serializable to JSON for sinks and debugging
"""

from enum import Enum
from typing import Any, Optional

import orjson
from eth_utils import is_hex
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Reserved starting height meaning "start at the current chain tip"
LATEST_BLOCK = -1

SELECTOR_HEX_LENGTH = 10  # "0x" + 4 bytes


class ChainType(str, Enum):
    ETH = "eth"
    SOL = "sol"
    TRON = "tron"


class TransactionRecord(BaseModel):
    """
    Transaction fields needed for filtering.

    value is always an int (0 when the node omitted it) and input always
    carries a "0x" prefix.
    """
    model_config = ConfigDict(frozen=True)

    hash: Optional[str] = Field(default=None, description="Transaction hash")
    block_number: int = Field(description="Height of the block containing the tx")
    transaction_index: Optional[int] = Field(default=None, description="Position inside the block")

    from_address: Optional[str] = Field(default=None, description="Sender")
    to_address: Optional[str] = Field(default=None, description="Recipient. None for contract creation")
    value: int = Field(default=0, description="Transferred amount in wei")
    input: str = Field(default="0x", description="Call-data, 0x-prefixed")

    raw: dict[str, Any] = Field(default_factory=dict, description="Transaction object as returned by the node")

    @property
    def selector(self) -> Optional[str]:
        """Lowercased 4-byte function selector, if the call-data has one."""
        if len(self.input) < SELECTOR_HEX_LENGTH:
            return None
        return self.input[:SELECTOR_HEX_LENGTH].lower()

    def to_json(self) -> bytes:
        return orjson.dumps(self.model_dump(exclude={"raw"}))


class BlockBatch(BaseModel):
    """
    All transactions of one non-empty block.

    recovered is set when the batch was produced by the retry scheduler
    after the live cursor had already moved past block_number.
    """
    model_config = ConfigDict(frozen=True)

    chain: str = Field(default="eth", description="Chain identifier")
    block_number: int = Field(description="Block height")
    block_hash: Optional[str] = Field(default=None, description="Block hash")
    transactions: tuple[TransactionRecord, ...] = Field(default_factory=tuple)
    recovered: bool = Field(default=False)

    @property
    def tx_count(self) -> int:
        return len(self.transactions)

    def to_json(self) -> bytes:
        """Serialize with compact JSON."""
        return orjson.dumps(self.model_dump(), default=str)

    @classmethod
    def from_json(cls, data: bytes) -> "BlockBatch":
        return cls.model_validate(orjson.loads(data))


def _normalize_hex(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip().lower()
    if not value:
        return None
    if not value.startswith("0x"):
        value = "0x" + value
    return value


class CallDataFilter(BaseModel):
    """
    Match on the function selector and, optionally, on decoded arguments.

    expected_values is positional; None entries match anything.
    """
    model_config = ConfigDict(frozen=True)

    function_selector: Optional[str] = Field(default=None, description="4-byte selector, e.g. 0xa9059cbb")
    type_descriptors: tuple[str, ...] = Field(default_factory=tuple, description="ABI types of the arguments")
    expected_values: tuple[Optional[str], ...] = Field(default_factory=tuple)

    @field_validator("function_selector", mode="before")
    @classmethod
    def _normalize_selector(cls, value):
        selector = _normalize_hex(value)
        if selector is not None and (len(selector) != SELECTOR_HEX_LENGTH or not is_hex(selector)):
            raise ValueError(f"function_selector must be 4 bytes of hex, got {value!r}")
        return selector

    @field_validator("expected_values", mode="before")
    @classmethod
    def _normalize_expected(cls, values):
        if values is None:
            return ()
        return tuple(None if v is None else str(v).lower() for v in values)

    @model_validator(mode="after")
    def _check_arity(self) -> "CallDataFilter":
        if len(self.expected_values) > len(self.type_descriptors):
            raise ValueError(
                f"{len(self.expected_values)} expected values but only "
                f"{len(self.type_descriptors)} type descriptors"
            )
        return self

    @property
    def has_expected_values(self) -> bool:
        return len(self.expected_values) > 0


class Filter(BaseModel):
    """All present fields are ANDed. Value bounds are inclusive."""
    model_config = ConfigDict(frozen=True)

    from_address: Optional[str] = None
    to_address: Optional[str] = None
    min_value: Optional[int] = None
    max_value: Optional[int] = None
    call_data: Optional[CallDataFilter] = None

    @field_validator("from_address", "to_address", mode="before")
    @classmethod
    def _lower_address(cls, value):
        if value is None:
            return None
        value = str(value).strip().lower()
        return value or None
