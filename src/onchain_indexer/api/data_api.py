"""Data API - read-only query surface over the store and indexer state.

This is what a GraphQL or HTTP layer calls; every method returns
JSON-serializable data.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable

from onchain_indexer.interfaces.store import EventStore
from onchain_indexer.models.events import DecodedEvent, SwapEvent, TransferEvent
from onchain_indexer.models.snapshots import HealthSnapshot

if TYPE_CHECKING:
    from onchain_indexer.daemon import OnchainIndexer

log = logging.getLogger(__name__)

EVENT_TYPE_TRANSFER = "ERC20_TRANSFER"
EVENT_TYPE_SWAP = "SWAP"

DEGRADED_ERROR_COUNT = 5


def event_to_payload(event: DecodedEvent) -> dict[str, Any] | None:
    """Render a freshly decoded event the way the read paths render rows.

    Unknown events have no typed shape and yield None.
    """
    if isinstance(event, TransferEvent):
        return {
            "__typename": "ERC20Transfer",
            "block_number": str(event.block_number),
            "block_timestamp": event.block_timestamp.isoformat(),
            "transaction_hash": event.transaction_hash,
            "log_index": event.log_index,
            "sender": event.sender,
            "recipient": event.recipient,
            "value": event.value,
            "token_address": event.token_address,
        }
    if isinstance(event, SwapEvent):
        return {
            "__typename": "Swap",
            "block_number": str(event.block_number),
            "block_timestamp": event.block_timestamp.isoformat(),
            "transaction_hash": event.transaction_hash,
            "log_index": event.log_index,
            "pool_address": event.pool_address,
            "sender": event.sender,
            "recipient": event.recipient,
            "amount0_in": event.amount0_in,
            "amount1_in": event.amount1_in,
            "amount0_out": event.amount0_out,
            "amount1_out": event.amount1_out,
        }
    return None


class IndexerDataAPI:
    """Read queries, status, health and live events for query clients."""

    def __init__(self, store: EventStore, indexer: OnchainIndexer) -> None:
        self._store = store
        self._indexer = indexer

    # ── Queries ────────────────────────────────────────────

    async def events(self, first: int = 10, type: str | None = None) -> list[dict]:
        """Recent events of one type, or both types merged."""
        if type == EVENT_TYPE_TRANSFER:
            rows = await self._store.get_recent_transfers(first)
        elif type == EVENT_TYPE_SWAP:
            rows = await self._store.get_recent_swaps(first)
        elif type is None:
            rows = await self._store.get_recent_events(first)
        else:
            raise ValueError(f"Unknown event type: {type}")
        return [r.to_dict() for r in rows]

    async def transfers(self, first: int = 10, to: str | None = None) -> list[dict]:
        if to:
            rows = await self._store.get_transfers_by_address(to, first)
        else:
            rows = await self._store.get_recent_transfers(first)
        return [r.to_dict() for r in rows]

    async def swaps(self, first: int = 10, pool_address: str | None = None) -> list[dict]:
        if pool_address:
            rows = await self._store.get_swaps_by_pool(pool_address, first)
        else:
            rows = await self._store.get_recent_swaps(first)
        return [r.to_dict() for r in rows]

    async def stats(self) -> dict:
        stats = await self._store.get_stats()
        return {
            "total_events": stats.total_events,
            "total_transfers": stats.total_transfers,
            "total_swaps": stats.total_swaps,
            "latest_block": stats.latest_block,
        }

    def status(self) -> dict:
        return self._indexer.get_status().to_dict()

    async def health(self) -> HealthSnapshot:
        """Probe the database and chain and grade overall health."""
        database_connected = await self._store.ping()

        latest_chain_block: str | None = None
        try:
            latest_chain_block = str(await self._indexer.client.latest_block_number())
            chain_connected = True
        except Exception as exc:
            log.warning("Chain health check failed: %s", exc)
            chain_connected = False

        status_snapshot = self._indexer.get_status()
        if not database_connected or not chain_connected:
            status = "unhealthy"
        elif status_snapshot.error_count > DEGRADED_ERROR_COUNT:
            status = "degraded"
        else:
            status = "healthy"

        return HealthSnapshot(
            status=status,
            indexer=status_snapshot,
            database_connected=database_connected,
            chain_connected=chain_connected,
            latest_chain_block=latest_chain_block,
        )

    # ── Live events ────────────────────────────────────────

    def subscribe_new_events(self, callback: Callable[[dict], None]) -> Callable[[], None]:
        """Push each new transfer or swap to ``callback`` as a payload dict."""

        def _forward(event: DecodedEvent) -> None:
            payload = event_to_payload(event)
            if payload is not None:
                callback(payload)

        return self._indexer.subscribe(_forward)
