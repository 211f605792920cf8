"""BlockSource protocol - drives a per-block handler over new chain history."""

from __future__ import annotations

from typing import Awaitable, Callable, Protocol

from onchain_indexer.models.events import RawLogRecord
from onchain_indexer.models.snapshots import CursorState

BlockHandler = Callable[[int, list[RawLogRecord]], Awaitable[None]]


class BlockSource(Protocol):
    """Scans forward over the chain and hands each block's logs to a handler."""

    async def run(self, handler: BlockHandler) -> None:
        """Loop until stopped. Raises once the failure threshold is reached."""
        ...

    def stop(self) -> None:
        ...

    def set_cursor(self, block_number: int) -> None:
        """Set the next block to scan (restore from persisted state)."""
        ...

    def cursor_state(self) -> CursorState:
        ...
