"""Runtime state and JSON-serializable status snapshots."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any


def _to_dict(obj: Any) -> dict:
    """Recursively convert a dataclass to a plain dict."""
    return asdict(obj)


class IndexerPhase(str, Enum):
    """Lifecycle of one OnchainIndexer instance."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    STOPPED = "stopped"  # terminal
    FAULTED = "faulted"  # terminal, needs an external restart


@dataclass
class CursorState:
    """Scan position of the block poller."""

    last_block_number: int  # last fully processed block
    running: bool
    error_count: int  # consecutive failed cycles


@dataclass
class IndexerState:
    last_block_number: int
    is_indexing: bool = False
    error_count: int = 0
    last_error: str | None = None


@dataclass
class StatusSnapshot:
    is_indexing: bool
    last_block_number: str
    error_count: int
    uptime_seconds: int
    last_error: str | None = None

    def to_dict(self) -> dict:
        return _to_dict(self)


@dataclass
class HealthSnapshot:
    status: str  # "healthy" | "degraded" | "unhealthy"
    indexer: StatusSnapshot
    database_connected: bool
    chain_connected: bool
    latest_chain_block: str | None = None

    def to_dict(self) -> dict:
        return _to_dict(self)
