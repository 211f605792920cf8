"""ChainClient protocol - read access to blocks and logs."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from onchain_indexer.models.events import RawLogRecord


class ChainClient(Protocol):
    """Supplies chain height, log ranges and block timestamps."""

    async def latest_block_number(self) -> int:
        ...

    async def logs_in_range(self, from_block: int, to_block: int) -> list[RawLogRecord]:
        """All logs emitted in [from_block, to_block], in chain order."""
        ...

    async def block_timestamp(self, block_number: int) -> datetime:
        """UTC timestamp of a block."""
        ...

    async def close(self) -> None:
        ...
