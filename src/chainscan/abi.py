"""
Call-data decoding on top of eth-abi.
"""

from typing import Any, Sequence

from eth_abi import decode
from eth_utils import is_hex, remove_0x_prefix


class AbiDecodeError(Exception):
    """Call-data could not be decoded with the given types."""
    pass


def decode_call_data(data: str, type_descriptors: Sequence[str]) -> list[Any]:
    """
    Decode ABI-encoded arguments (call-data with the selector already removed).

    Args:
        data: Hex string, with or without 0x prefix
        type_descriptors: ABI type strings, e.g. ["address", "uint256"]
    """
    hex_data = remove_0x_prefix(data or "")
    if hex_data and not is_hex(hex_data):
        raise AbiDecodeError(f"Not a hex string: {data[:20]}")

    try:
        raw = bytes.fromhex(hex_data)
        return list(decode(list(type_descriptors), raw))
    except Exception as e:
        raise AbiDecodeError(f"Failed to decode {list(type_descriptors)}: {e}") from e


def canonical_str(value: Any) -> str:
    """
    Lowercased string form of a decoded value, used for filter comparison.

    - int -> decimal digits
    - bool -> "true" / "false"
    - bytes -> 0x-prefixed hex
    - str (addresses, strings) -> lowercased
    - tuples / lists -> "[a, b]"
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(canonical_str(v) for v in value) + "]"
    return str(value).lower()
