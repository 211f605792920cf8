"""Log records as emitted by the chain and the events decoded from them."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import ClassVar, Union


@dataclass(frozen=True)
class RawLogRecord:
    """A single log entry exactly as returned by eth_getLogs."""

    address: str
    block_number: int | None
    block_hash: str | None
    data: bytes
    topics: tuple[bytes, ...]  # 32-byte topic hashes, topic0 first
    transaction_hash: str | None
    log_index: int | None  # position within the block
    transaction_index: int | None
    removed: bool = False


@dataclass(frozen=True)
class TransferEvent:
    """ERC-20 Transfer(from, to, value)."""

    kind: ClassVar[str] = "erc20-transfer"

    sender: str
    recipient: str
    value: str  # base-10 uint256
    token_address: str
    transaction_hash: str
    log_index: int
    block_number: int
    block_timestamp: datetime


@dataclass(frozen=True)
class SwapEvent:
    """AMM swap normalized to the V2 in/out shape.

    V3 swaps report signed deltas; the decoder folds them into the same
    four amounts so both pool generations share one table.
    """

    kind: ClassVar[str] = "swap"

    pool_address: str
    sender: str
    recipient: str
    amount0_in: str
    amount1_in: str
    amount0_out: str
    amount1_out: str
    transaction_hash: str
    log_index: int
    block_number: int
    block_timestamp: datetime


@dataclass(frozen=True)
class UnknownEvent:
    """A log that matched none of the known schemas."""

    kind: ClassVar[str] = "unknown"

    log: RawLogRecord


DecodedEvent = Union[TransferEvent, SwapEvent, UnknownEvent]
