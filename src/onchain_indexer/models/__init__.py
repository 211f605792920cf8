"""Data models for the onchain_indexer daemon."""

from onchain_indexer.models.events import (
    DecodedEvent,
    RawLogRecord,
    SwapEvent,
    TransferEvent,
    UnknownEvent,
)
from onchain_indexer.models.records import (
    EventLogRecord,
    StoreStats,
    SwapRecord,
    TransferRecord,
)
from onchain_indexer.models.config import IndexerConfig
from onchain_indexer.models.snapshots import (
    CursorState,
    HealthSnapshot,
    IndexerPhase,
    IndexerState,
    StatusSnapshot,
)

__all__ = [
    "DecodedEvent", "RawLogRecord", "SwapEvent", "TransferEvent", "UnknownEvent",
    "EventLogRecord", "StoreStats", "SwapRecord", "TransferRecord",
    "IndexerConfig",
    "CursorState", "HealthSnapshot", "IndexerPhase", "IndexerState", "StatusSnapshot",
]
