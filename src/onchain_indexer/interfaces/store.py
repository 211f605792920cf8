"""EventStore protocol - atomic per-block persistence plus read queries."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, Sequence, Union

from onchain_indexer.models.events import DecodedEvent
from onchain_indexer.models.records import (
    EventLogRecord,
    StoreStats,
    SwapRecord,
    TransferRecord,
)


class EventStore(Protocol):
    """Persists decoded events and serves them back to query clients."""

    # ── Lifecycle ──────────────────────────────────────────

    async def initialize(self) -> None:
        """Create tables if they don't exist."""
        ...

    async def close(self) -> None:
        ...

    async def ping(self) -> bool:
        """True if the backend answers a trivial query."""
        ...

    # ── Writes ─────────────────────────────────────────────

    async def save_block_events(
        self,
        block_number: int,
        block_timestamp: datetime,
        events: Sequence[DecodedEvent],
    ) -> None:
        """Persist every event of one block in a single transaction."""
        ...

    async def get_cursor(self) -> int | None:
        """Last block whose events were committed."""
        ...

    # ── Reads ──────────────────────────────────────────────

    async def get_recent_transfers(self, limit: int = 10) -> list[TransferRecord]:
        ...

    async def get_recent_swaps(self, limit: int = 10) -> list[SwapRecord]:
        ...

    async def get_recent_events(
        self, limit: int = 10
    ) -> list[Union[TransferRecord, SwapRecord]]:
        ...

    async def get_transfers_by_address(
        self, address: str, limit: int = 50
    ) -> list[TransferRecord]:
        ...

    async def get_swaps_by_pool(
        self, pool_address: str, limit: int = 50
    ) -> list[SwapRecord]:
        ...

    async def get_block_event_logs(self, block_number: int) -> list[EventLogRecord]:
        ...

    async def get_stats(self) -> StoreStats:
        ...
