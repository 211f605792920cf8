"""Event decoder - classifies raw logs as ERC-20 transfers, AMM swaps or unknown."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from functools import cached_property
from typing import Callable, Optional, Sequence

from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError
from eth_utils import is_address, keccak, to_checksum_address

from onchain_indexer.models.events import (
    DecodedEvent,
    RawLogRecord,
    SwapEvent,
    TransferEvent,
    UnknownEvent,
)

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class EventSchema:
    """Shape of one event: signature hash, indexed address count, data layout."""

    name: str
    signature: str
    indexed: int  # indexed arguments after topic0, all addresses here
    data_types: tuple[str, ...]

    @cached_property
    def topic0(self) -> bytes:
        return keccak(text=self.signature)


ERC20_TRANSFER = EventSchema(
    name="Transfer",
    signature="Transfer(address,address,uint256)",
    indexed=2,  # from, to
    data_types=("uint256",),
)

SWAP_V2 = EventSchema(
    name="SwapV2",
    signature="Swap(address,uint256,uint256,uint256,uint256,address)",
    indexed=2,  # sender, to
    data_types=("uint256", "uint256", "uint256", "uint256"),
)

SWAP_V3 = EventSchema(
    name="SwapV3",
    signature="Swap(address,address,int256,int256,uint160,uint128,int24)",
    indexed=2,  # sender, recipient
    data_types=("int256", "int256", "uint160", "uint128", "int24"),
)


def _address_from_topic(topic: bytes) -> str:
    return to_checksum_address(topic[-20:])


def normalize_address(address: str) -> str:
    """EIP-55 checksum form of a hex address; anything else is returned as-is."""
    if is_address(address):
        return to_checksum_address(address)
    return address


def match_schema(
    log_record: RawLogRecord, schema: EventSchema
) -> Optional[tuple[list[str], tuple]]:
    """Return (indexed addresses, data values) if the log fits the schema.

    Any mismatch (signature, topic count, malformed topic, ABI payload)
    yields None.
    """
    topics = log_record.topics
    if len(topics) != schema.indexed + 1:
        return None
    if any(len(t) != 32 for t in topics):
        return None
    if topics[0] != schema.topic0:
        return None
    try:
        values = abi_decode(list(schema.data_types), log_record.data)
    except (DecodingError, ValueError) as exc:
        log.debug(
            "%s signature matched but payload did not decode (tx=%s): %s",
            schema.name, log_record.transaction_hash, exc,
        )
        return None
    return [_address_from_topic(t) for t in topics[1:]], values


def _provenance(log_record: RawLogRecord, block_timestamp: datetime) -> dict:
    return {
        "transaction_hash": log_record.transaction_hash or "",
        "log_index": log_record.log_index or 0,
        "block_number": log_record.block_number or 0,
        "block_timestamp": block_timestamp,
    }


def _positive_or_zero(value: int) -> str:
    return str(value) if value > 0 else "0"


def try_transfer(log_record: RawLogRecord, block_timestamp: datetime) -> Optional[DecodedEvent]:
    matched = match_schema(log_record, ERC20_TRANSFER)
    if matched is None:
        return None
    (sender, recipient), (value,) = matched
    return TransferEvent(
        sender=sender,
        recipient=recipient,
        value=str(value),
        token_address=normalize_address(log_record.address),
        **_provenance(log_record, block_timestamp),
    )


def try_swap_v2(log_record: RawLogRecord, block_timestamp: datetime) -> Optional[DecodedEvent]:
    matched = match_schema(log_record, SWAP_V2)
    if matched is None:
        return None
    (sender, recipient), (a0_in, a1_in, a0_out, a1_out) = matched
    return SwapEvent(
        pool_address=normalize_address(log_record.address),
        sender=sender,
        recipient=recipient,
        amount0_in=_positive_or_zero(a0_in),
        amount1_in=_positive_or_zero(a1_in),
        amount0_out=_positive_or_zero(a0_out),
        amount1_out=_positive_or_zero(a1_out),
        **_provenance(log_record, block_timestamp),
    )


def try_swap_v3(log_record: RawLogRecord, block_timestamp: datetime) -> Optional[DecodedEvent]:
    matched = match_schema(log_record, SWAP_V3)
    if matched is None:
        return None
    # amounts are pool deltas: negative flowed into the pool, positive out of it
    (sender, recipient), (amount0, amount1, _sqrt_price, _liquidity, _tick) = matched
    return SwapEvent(
        pool_address=normalize_address(log_record.address),
        sender=sender,
        recipient=recipient,
        amount0_in=_positive_or_zero(-amount0),
        amount1_in=_positive_or_zero(-amount1),
        amount0_out=_positive_or_zero(amount0),
        amount1_out=_positive_or_zero(amount1),
        **_provenance(log_record, block_timestamp),
    )


Attempt = Callable[[RawLogRecord, datetime], Optional[DecodedEvent]]

# Order matters: the first schema that matches wins.
DEFAULT_ATTEMPTS: tuple[Attempt, ...] = (try_transfer, try_swap_v2, try_swap_v3)


class EventDecoder:
    """Maps each raw log to exactly one DecodedEvent.

    Schemas are tried in order and the first match wins. A log that fits
    none of them comes back as UnknownEvent wrapping the same record
    object, so nothing is ever dropped.
    """

    def __init__(self, attempts: Sequence[Attempt] = DEFAULT_ATTEMPTS) -> None:
        self._attempts = tuple(attempts)

    def decode(self, log_record: RawLogRecord, block_timestamp: datetime) -> DecodedEvent:
        for attempt in self._attempts:
            event = attempt(log_record, block_timestamp)
            if event is not None:
                return event
        return UnknownEvent(log=log_record)
