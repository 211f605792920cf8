"""Persisted row types returned by the store's read paths.

Block numbers, row ids and token amounts can exceed 53 bits, so every such
field is carried as a base-10 string. Timestamps are ISO 8601 text.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field


@dataclass
class EventLogRecord:
    """Audit-trail row, written for every log regardless of classification."""

    id: str
    block_number: str
    block_timestamp: str  # ISO 8601
    transaction_hash: str
    log_index: int
    address: str
    topics: list[str] = field(default_factory=list)  # 0x-prefixed hex
    data: str = "0x"
    created_at: str = ""


@dataclass
class TransferRecord:
    """Typed ERC-20 transfer row."""

    id: str
    block_number: str
    block_timestamp: str
    transaction_hash: str
    log_index: int
    sender: str
    recipient: str
    value: str
    token_address: str
    created_at: str = ""
    typename: str = field(default="ERC20Transfer", init=False)

    def to_dict(self) -> dict:
        d = asdict(self)
        d["__typename"] = d.pop("typename")
        return d


@dataclass
class SwapRecord:
    """Typed swap row (V2 and V3 pools share this shape)."""

    id: str
    block_number: str
    block_timestamp: str
    transaction_hash: str
    log_index: int
    pool_address: str
    sender: str
    recipient: str
    amount0_in: str
    amount1_in: str
    amount0_out: str
    amount1_out: str
    created_at: str = ""
    typename: str = field(default="Swap", init=False)

    def to_dict(self) -> dict:
        d = asdict(self)
        d["__typename"] = d.pop("typename")
        return d


@dataclass
class StoreStats:
    """Aggregate counts over the persisted tables."""

    total_events: str = "0"
    total_transfers: str = "0"
    total_swaps: str = "0"
    latest_block: str = "0"
