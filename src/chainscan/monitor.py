"""
Monitor rules and filter evaluation.

Filter predicates are pure functions; the only side effect of the engine is
invoking rule callbacks.
"""

import asyncio
import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Sequence, Union

import structlog

from .abi import AbiDecodeError, canonical_str, decode_call_data
from .models import SELECTOR_HEX_LENGTH, CallDataFilter, Filter, TransactionRecord

logger = structlog.get_logger()

Callback = Callable[[TransactionRecord], Union[None, Awaitable[None]]]
Decoder = Callable[[str, Sequence[str]], list[Any]]


@dataclass(frozen=True)
class MonitorRule:
    """A filter and the callback to run on matching transactions. No filter matches everything."""
    callback: Callback
    filter: Optional[Filter] = None
    name: Optional[str] = None

    @property
    def label(self) -> str:
        return self.name or getattr(self.callback, "__name__", repr(self.callback))


def _address_matches(expected: Optional[str], actual: Optional[str]) -> bool:
    if not expected:
        return True
    if not actual:
        return False
    return expected == actual.lower()


def call_data_matches(
    record: TransactionRecord,
    call_filter: CallDataFilter,
    decoder: Decoder = decode_call_data,
) -> bool:
    """Selector match, then positional comparison of decoded arguments."""
    call_data = record.input
    if not call_data or len(call_data) < SELECTOR_HEX_LENGTH:
        return False

    if not call_filter.function_selector:
        return False
    if call_data[:SELECTOR_HEX_LENGTH].lower() != call_filter.function_selector:
        return False

    expected = call_filter.expected_values
    if not expected:
        return True

    if len(call_filter.type_descriptors) < len(expected):
        return False

    try:
        decoded = decoder(call_data[SELECTOR_HEX_LENGTH:], call_filter.type_descriptors)
    except AbiDecodeError as e:
        logger.debug("Call-data decode failed", tx_hash=record.hash, error=str(e))
        return False

    if decoded is None or len(decoded) < len(expected):
        return False

    for want, got in zip(expected, decoded):
        if want is None:
            continue
        if got is None or canonical_str(got) != want:
            return False

    return True


def filter_matches(
    record: TransactionRecord,
    rule_filter: Optional[Filter],
    decoder: Decoder = decode_call_data,
) -> bool:
    """
    Apply a filter to a record.

    Predicates run in a fixed order and stop at the first failure:
    from-address, to-address, min-value, max-value, call-data.
    """
    if rule_filter is None:
        return True

    if not _address_matches(rule_filter.from_address, record.from_address):
        return False
    if not _address_matches(rule_filter.to_address, record.to_address):
        return False
    if rule_filter.min_value is not None and record.value < rule_filter.min_value:
        return False
    if rule_filter.max_value is not None and record.value > rule_filter.max_value:
        return False
    if rule_filter.call_data is not None and not call_data_matches(record, rule_filter.call_data, decoder):
        return False

    return True


def matching_rules(
    record: TransactionRecord,
    rules: Sequence[MonitorRule],
    decoder: Decoder = decode_call_data,
) -> list[MonitorRule]:
    """Rules whose filter accepts the record, in registration order."""
    return [rule for rule in rules if filter_matches(record, rule.filter, decoder)]


class MonitorEngine:
    """
    Evaluates every registered rule against each transaction.

    Callback errors are logged and counted; they never propagate.
    Plain-function callbacks run in a worker thread so a slow callback
    does not stall the event loop.
    """

    def __init__(
        self,
        rules: Sequence[MonitorRule],
        decoder: Decoder = decode_call_data,
        run_sync_in_thread: bool = True,
    ):
        self.rules = tuple(rules)
        self.decoder = decoder
        self.run_sync_in_thread = run_sync_in_thread

        self.callbacks_invoked = 0
        self.callback_errors = 0

    async def evaluate(self, record: TransactionRecord) -> int:
        """Run callbacks of all matching rules. Returns the number of matches."""
        matched = matching_rules(record, self.rules, self.decoder)
        for rule in matched:
            await self._invoke(rule, record)
        return len(matched)

    async def _invoke(self, rule: MonitorRule, record: TransactionRecord) -> None:
        self.callbacks_invoked += 1
        try:
            if inspect.iscoroutinefunction(rule.callback) or not self.run_sync_in_thread:
                result = rule.callback(record)
            else:
                result = await asyncio.to_thread(rule.callback, record)

            if inspect.isawaitable(result):
                await result

        except asyncio.CancelledError:
            raise
        except Exception:
            self.callback_errors += 1
            logger.exception(
                "Monitor callback failed",
                rule=rule.label,
                block_number=record.block_number,
                tx_hash=record.hash,
            )
