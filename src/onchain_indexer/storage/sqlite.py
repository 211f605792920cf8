"""SQLite implementation of the EventStore protocol."""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Sequence, Union

import aiosqlite

from onchain_indexer.decoding.decoder import normalize_address
from onchain_indexer.models.events import (
    DecodedEvent,
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

log = logging.getLogger(__name__)

SCHEMA = """
-- Last block whose events were committed
CREATE TABLE IF NOT EXISTS cursor (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    last_block INTEGER NOT NULL,
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);

-- Audit trail: one row per log, classified or not
CREATE TABLE IF NOT EXISTS event_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    block_number INTEGER NOT NULL,
    block_timestamp TEXT NOT NULL,
    transaction_hash TEXT NOT NULL,
    log_index INTEGER NOT NULL,
    address TEXT NOT NULL,
    topics TEXT NOT NULL DEFAULT '[]',
    data TEXT NOT NULL DEFAULT '0x',
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_event_logs_block ON event_logs(block_number);
CREATE INDEX IF NOT EXISTS idx_event_logs_tx ON event_logs(transaction_hash);
CREATE INDEX IF NOT EXISTS idx_event_logs_address ON event_logs(address);

-- ERC-20 transfers
CREATE TABLE IF NOT EXISTS erc20_transfers (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    block_number INTEGER NOT NULL,
    block_timestamp TEXT NOT NULL,
    transaction_hash TEXT NOT NULL,
    log_index INTEGER NOT NULL,
    sender TEXT NOT NULL,
    recipient TEXT NOT NULL,
    value TEXT NOT NULL,
    token_address TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_transfers_block ON erc20_transfers(block_number);
CREATE INDEX IF NOT EXISTS idx_transfers_sender ON erc20_transfers(sender);
CREATE INDEX IF NOT EXISTS idx_transfers_recipient ON erc20_transfers(recipient);
CREATE INDEX IF NOT EXISTS idx_transfers_token ON erc20_transfers(token_address);

-- AMM swaps (V2 and V3 share the in/out shape)
CREATE TABLE IF NOT EXISTS swaps (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    block_number INTEGER NOT NULL,
    block_timestamp TEXT NOT NULL,
    transaction_hash TEXT NOT NULL,
    log_index INTEGER NOT NULL,
    pool_address TEXT NOT NULL,
    sender TEXT NOT NULL,
    recipient TEXT NOT NULL,
    amount0_in TEXT NOT NULL,
    amount1_in TEXT NOT NULL,
    amount0_out TEXT NOT NULL,
    amount1_out TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_swaps_block ON swaps(block_number);
CREATE INDEX IF NOT EXISTS idx_swaps_pool ON swaps(pool_address);
CREATE INDEX IF NOT EXISTS idx_swaps_recipient ON swaps(recipient);
"""

_NEWEST_FIRST = "ORDER BY block_number DESC, log_index DESC, id DESC"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _iso(ts: datetime) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.isoformat()


class SQLiteEventStore:
    """SQLite-backed implementation of the EventStore protocol."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        if self._db is not None:
            return
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self._db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(SCHEMA)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        assert self._db is not None, "Store not initialized. Call initialize() first."
        return self._db

    async def ping(self) -> bool:
        try:
            async with self.db.execute("SELECT 1") as cur:
                return await cur.fetchone() is not None
        except Exception as exc:
            log.warning("Database ping failed: %s", exc)
            return False

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Commit everything executed inside the block, or nothing."""
        await self.db.execute("BEGIN")
        try:
            yield self.db
        except BaseException:
            await self.db.rollback()
            raise
        else:
            await self.db.commit()

    # ── Cursor ─────────────────────────────────────────────

    async def get_cursor(self) -> int | None:
        async with self.db.execute("SELECT last_block FROM cursor WHERE id=1") as cur:
            row = await cur.fetchone()
            return row["last_block"] if row else None

    # ── Block writes ───────────────────────────────────────

    async def save_block_events(
        self,
        block_number: int,
        block_timestamp: datetime,
        events: Sequence[DecodedEvent],
    ) -> None:
        """Write audit and typed rows for one block in a single transaction.

        Transfers and swaps get an audit row with empty topics/data plus a
        typed row. Unknown logs get only the audit row, keeping their raw
        topics and payload. The cursor moves to ``block_number`` in the same
        transaction. On failure nothing is committed and the error propagates
        unchanged.
        """
        ts = _iso(block_timestamp)
        try:
            async with self.transaction() as db:
                for event in events:
                    if isinstance(event, TransferEvent):
                        await _insert_event_log(
                            db, block_number, ts, event.transaction_hash,
                            event.log_index, event.token_address,
                        )
                        await _insert_transfer(db, event)
                    elif isinstance(event, SwapEvent):
                        await _insert_event_log(
                            db, block_number, ts, event.transaction_hash,
                            event.log_index, event.pool_address,
                        )
                        await _insert_swap(db, event)
                    elif isinstance(event, UnknownEvent):
                        raw = event.log
                        await _insert_event_log(
                            db, block_number, ts, raw.transaction_hash or "",
                            raw.log_index or 0, raw.address or "0x",
                            topics=["0x" + t.hex() for t in raw.topics],
                            data="0x" + raw.data.hex(),
                        )
                    else:
                        raise TypeError(f"Unsupported event type: {type(event).__name__}")

                await db.execute(
                    "INSERT INTO cursor (id, last_block, updated_at) VALUES (1, ?, ?)"
                    " ON CONFLICT(id) DO UPDATE SET last_block=excluded.last_block,"
                    " updated_at=excluded.updated_at",
                    (block_number, _now()),
                )
        except Exception as exc:
            log.error("Failed to save events for block %d: %s", block_number, exc)
            raise

        log.info("Saved %d events for block %d", len(events), block_number)

    # ── Typed reads ────────────────────────────────────────

    async def get_recent_transfers(self, limit: int = 10) -> list[TransferRecord]:
        async with self.db.execute(
            f"SELECT * FROM erc20_transfers {_NEWEST_FIRST} LIMIT ?", (limit,)
        ) as cur:
            return [_row_to_transfer(row) async for row in cur]

    async def get_recent_swaps(self, limit: int = 10) -> list[SwapRecord]:
        async with self.db.execute(
            f"SELECT * FROM swaps {_NEWEST_FIRST} LIMIT ?", (limit,)
        ) as cur:
            return [_row_to_swap(row) async for row in cur]

    async def get_recent_events(
        self, limit: int = 10
    ) -> list[Union[TransferRecord, SwapRecord]]:
        """Newest transfers and swaps merged into one list.

        Ties on (block, log index) put swaps ahead of transfers, then the
        later-inserted row first.
        """
        transfers = await self.get_recent_transfers(limit)
        swaps = await self.get_recent_swaps(limit)
        merged: list[Union[TransferRecord, SwapRecord]] = [*transfers, *swaps]
        merged.sort(
            key=lambda r: (int(r.block_number), r.log_index, r.typename, int(r.id)),
            reverse=True,
        )
        return merged[:limit]

    async def get_transfers_by_address(
        self, address: str, limit: int = 50
    ) -> list[TransferRecord]:
        address = normalize_address(address)
        async with self.db.execute(
            f"SELECT * FROM erc20_transfers WHERE sender=? OR recipient=? {_NEWEST_FIRST} LIMIT ?",
            (address, address, limit),
        ) as cur:
            return [_row_to_transfer(row) async for row in cur]

    async def get_swaps_by_pool(
        self, pool_address: str, limit: int = 50
    ) -> list[SwapRecord]:
        pool_address = normalize_address(pool_address)
        async with self.db.execute(
            f"SELECT * FROM swaps WHERE pool_address=? {_NEWEST_FIRST} LIMIT ?",
            (pool_address, limit),
        ) as cur:
            return [_row_to_swap(row) async for row in cur]

    # ── Audit trail ────────────────────────────────────────

    async def get_block_event_logs(self, block_number: int) -> list[EventLogRecord]:
        """Audit rows of one block in the order they were written."""
        async with self.db.execute(
            "SELECT * FROM event_logs WHERE block_number=? ORDER BY id", (block_number,)
        ) as cur:
            return [
                EventLogRecord(
                    id=str(row["id"]),
                    block_number=str(row["block_number"]),
                    block_timestamp=row["block_timestamp"],
                    transaction_hash=row["transaction_hash"],
                    log_index=row["log_index"],
                    address=row["address"],
                    topics=json.loads(row["topics"]),
                    data=row["data"],
                    created_at=row["created_at"],
                )
                async for row in cur
            ]

    async def get_stats(self) -> StoreStats:
        totals = {}
        for table in ("event_logs", "erc20_transfers", "swaps"):
            async with self.db.execute(f"SELECT COUNT(*) as c FROM {table}") as cur:
                row = await cur.fetchone()
                totals[table] = row["c"] if row else 0

        async with self.db.execute("SELECT MAX(block_number) as b FROM event_logs") as cur:
            row = await cur.fetchone()
            latest = row["b"] if row and row["b"] is not None else 0

        return StoreStats(
            total_events=str(totals["event_logs"]),
            total_transfers=str(totals["erc20_transfers"]),
            total_swaps=str(totals["swaps"]),
            latest_block=str(latest),
        )


# ── Row writers ────────────────────────────────────────────


async def _insert_event_log(
    db: aiosqlite.Connection,
    block_number: int,
    block_timestamp: str,
    transaction_hash: str,
    log_index: int,
    address: str,
    topics: list[str] | None = None,
    data: str = "0x",
) -> None:
    await db.execute(
        "INSERT INTO event_logs"
        " (block_number, block_timestamp, transaction_hash, log_index,"
        "  address, topics, data, created_at)"
        " VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
        (
            block_number, block_timestamp, transaction_hash, log_index,
            address or "0x", json.dumps(topics or []), data, _now(),
        ),
    )


async def _insert_transfer(db: aiosqlite.Connection, event: TransferEvent) -> None:
    await db.execute(
        "INSERT INTO erc20_transfers"
        " (block_number, block_timestamp, transaction_hash, log_index,"
        "  sender, recipient, value, token_address, created_at)"
        " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
        (
            event.block_number, _iso(event.block_timestamp), event.transaction_hash,
            event.log_index, event.sender, event.recipient, event.value,
            event.token_address, _now(),
        ),
    )


async def _insert_swap(db: aiosqlite.Connection, event: SwapEvent) -> None:
    await db.execute(
        "INSERT INTO swaps"
        " (block_number, block_timestamp, transaction_hash, log_index,"
        "  pool_address, sender, recipient,"
        "  amount0_in, amount1_in, amount0_out, amount1_out, created_at)"
        " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        (
            event.block_number, _iso(event.block_timestamp), event.transaction_hash,
            event.log_index, event.pool_address, event.sender, event.recipient,
            event.amount0_in, event.amount1_in, event.amount0_out, event.amount1_out,
            _now(),
        ),
    )


# ── Row converters ─────────────────────────────────────────


def _row_to_transfer(row: aiosqlite.Row) -> TransferRecord:
    return TransferRecord(
        id=str(row["id"]),
        block_number=str(row["block_number"]),
        block_timestamp=row["block_timestamp"],
        transaction_hash=row["transaction_hash"],
        log_index=row["log_index"],
        sender=row["sender"],
        recipient=row["recipient"],
        value=row["value"],
        token_address=row["token_address"],
        created_at=row["created_at"],
    )


def _row_to_swap(row: aiosqlite.Row) -> SwapRecord:
    return SwapRecord(
        id=str(row["id"]),
        block_number=str(row["block_number"]),
        block_timestamp=row["block_timestamp"],
        transaction_hash=row["transaction_hash"],
        log_index=row["log_index"],
        pool_address=row["pool_address"],
        sender=row["sender"],
        recipient=row["recipient"],
        amount0_in=row["amount0_in"],
        amount1_in=row["amount1_in"],
        amount0_out=row["amount0_out"],
        amount1_out=row["amount1_out"],
        created_at=row["created_at"],
    )
