"""Block poller - scans forward over the chain in bounded eth_getLogs batches."""

from __future__ import annotations

import asyncio
import functools
import logging

from onchain_indexer.interfaces.chain import ChainClient
from onchain_indexer.interfaces.poller import BlockHandler
from onchain_indexer.models.events import RawLogRecord
from onchain_indexer.models.snapshots import CursorState
from onchain_indexer.retry import DEFAULT_POLICY, RetryPolicy, with_backoff

log = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100
DEFAULT_MAX_CONSECUTIVE_ERRORS = 10


def group_by_block(logs: list[RawLogRecord]) -> dict[int, list[RawLogRecord]]:
    """Bucket logs by block number, keeping their relative order."""
    blocks: dict[int, list[RawLogRecord]] = {}
    for record in logs:
        if record.block_number is None:
            log.warning(
                "Skipping log without block number (tx=%s index=%s)",
                record.transaction_hash, record.log_index,
            )
            continue
        blocks.setdefault(record.block_number, []).append(record)
    return blocks


class BlockPoller:
    """Drives a per-block handler over every new block with logs.

    The cursor is the next block to scan. Each cycle reads the chain head,
    walks ``[cursor, head]`` in ``batch_size`` slices and calls the handler
    once per block that emitted logs, in ascending block order. Chain queries
    run under exponential backoff; handler failures are not retried here and
    fail the cycle directly.
    """

    def __init__(
        self,
        client: ChainClient,
        start_block: int,
        poll_interval: float,
        batch_size: int = DEFAULT_BATCH_SIZE,
        retry_policy: RetryPolicy = DEFAULT_POLICY,
        max_consecutive_errors: int = DEFAULT_MAX_CONSECUTIVE_ERRORS,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self._client = client
        self._current_block = start_block
        self._poll_interval = poll_interval
        self._batch_size = batch_size
        self._retry_policy = retry_policy
        self._max_consecutive_errors = max_consecutive_errors
        self._running = False
        self._error_count = 0

    @property
    def current_block(self) -> int:
        """Next block that has not been scanned yet."""
        return self._current_block

    @property
    def error_count(self) -> int:
        return self._error_count

    @property
    def is_running(self) -> bool:
        return self._running

    def set_cursor(self, block_number: int) -> None:
        """Restore the scan position from persisted state."""
        self._current_block = block_number

    def cursor_state(self) -> CursorState:
        return CursorState(
            last_block_number=self._current_block - 1,
            running=self._running,
            error_count=self._error_count,
        )

    async def run(self, handler: BlockHandler) -> None:
        """Poll until stop() is called or too many cycles fail in a row."""
        if self._running:
            log.warning("Block poller is already running")
            return

        self._running = True
        log.info(
            "Block poller started (start_block=%d, poll_interval=%.1fs, batch_size=%d)",
            self._current_block, self._poll_interval, self._batch_size,
        )

        while self._running:
            try:
                await self.poll_once(handler)
                self._error_count = 0
            except Exception as exc:
                self._error_count += 1
                log.error(
                    "Block poller cycle failed (%d consecutive): %s",
                    self._error_count, exc, exc_info=True,
                )
                if self._error_count >= self._max_consecutive_errors:
                    log.error("Too many consecutive errors, stopping block poller")
                    self._running = False
                    raise

            await asyncio.sleep(self._poll_interval)

        log.info("Block poller stopped at block %d", self._current_block)

    async def poll_once(self, handler: BlockHandler) -> None:
        """Run one cycle: scan everything between the cursor and the chain head."""
        latest = await with_backoff(self._client.latest_block_number, self._retry_policy)

        if latest < self._current_block:
            log.debug("No new blocks (head=%d, cursor=%d)", latest, self._current_block)
            return

        log.debug(
            "Processing block range %d..%d (%d blocks)",
            self._current_block, latest, latest - self._current_block + 1,
        )

        for batch_start in range(self._current_block, latest + 1, self._batch_size):
            batch_end = min(batch_start + self._batch_size - 1, latest)
            logs = await with_backoff(
                functools.partial(self._client.logs_in_range, batch_start, batch_end),
                self._retry_policy,
            )

            blocks = group_by_block(logs)
            for block_number in sorted(blocks):
                await handler(block_number, blocks[block_number])

            self._current_block = batch_end + 1
            log.debug(
                "Processed batch %d..%d (%d logs, %d blocks)",
                batch_start, batch_end, len(logs), len(blocks),
            )

        self._current_block = latest + 1

    def stop(self) -> None:
        """Ask the loop to exit; an in-flight cycle runs to completion."""
        log.info("Stopping block poller...")
        self._running = False
