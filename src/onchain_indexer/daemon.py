"""Main indexer loop - wires poller, decoder, store and bus together."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import signal
import time
from typing import Callable

from onchain_indexer.api.bus import EventBus, Listener
from onchain_indexer.chain.client import JsonRpcChainClient
from onchain_indexer.chain.poller import BlockPoller
from onchain_indexer.decoding.decoder import EventDecoder
from onchain_indexer.interfaces.chain import ChainClient
from onchain_indexer.interfaces.poller import BlockSource
from onchain_indexer.interfaces.store import EventStore
from onchain_indexer.models.config import IndexerConfig
from onchain_indexer.models.events import DecodedEvent, RawLogRecord
from onchain_indexer.models.snapshots import IndexerPhase, IndexerState, StatusSnapshot
from onchain_indexer.retry import RetryPolicy, with_backoff
from onchain_indexer.storage.sqlite import SQLiteEventStore

log = logging.getLogger(__name__)


def retry_policy_from_config(cfg: IndexerConfig) -> RetryPolicy:
    return RetryPolicy(
        max_retries=cfg.max_retries,
        base_delay=cfg.retry_base_delay,
        max_delay=cfg.retry_max_delay,
        multiplier=cfg.retry_multiplier,
    )


class OnchainIndexer:
    """Tails the chain and turns every block's logs into stored, published events.

    For each block handed over by the poller: fetch the block timestamp,
    decode every log, persist the whole set in one transaction, then publish
    each event on the bus in log order. Blocks at or below the last committed
    block are skipped, so rescanning a partly processed batch never writes
    them twice. Collaborators default to instances built from ``cfg`` and can
    be injected for tests or alternative backends.

    Lifecycle: NOT_STARTED -> RUNNING -> STOPPED | FAULTED. Both end states
    are final for an instance; recovery means building a new indexer, which
    resumes from the persisted cursor.
    """

    def __init__(
        self,
        cfg: IndexerConfig,
        *,
        client: ChainClient | None = None,
        store: EventStore | None = None,
        decoder: EventDecoder | None = None,
        bus: EventBus | None = None,
        poller: BlockSource | None = None,
    ) -> None:
        self._cfg = cfg
        self._start_time = time.monotonic()
        self._phase = IndexerPhase.NOT_STARTED
        self._retry_policy = retry_policy_from_config(cfg)

        # Core components
        self.client: ChainClient = client or JsonRpcChainClient(cfg.rpc_url, cfg.rpc_timeout)
        self.store: EventStore = store or SQLiteEventStore(cfg.db_path)
        self.decoder = decoder or EventDecoder()
        self.bus = bus or EventBus()
        self.poller: BlockSource = poller or BlockPoller(
            self.client,
            start_block=cfg.start_block,
            poll_interval=cfg.poll_interval,
            batch_size=cfg.batch_size,
            retry_policy=self._retry_policy,
            max_consecutive_errors=cfg.max_consecutive_errors,
        )

        self._state = IndexerState(last_block_number=cfg.start_block)
        self._committed_block: int | None = None  # highest block saved by the store
        self._starting = False
        self._stop_requested = False

    @property
    def phase(self) -> IndexerPhase:
        return self._phase

    async def start(self) -> None:
        """Initialize the store, restore the cursor and run until stopped or faulted."""
        if self._phase is not IndexerPhase.NOT_STARTED:
            raise RuntimeError(f"Indexer cannot be started from phase '{self._phase.value}'")
        self._starting = True

        log.info("Starting onchain indexer")
        log.info("  RPC: %s", self._cfg.rpc_url)
        log.info("  Start block: %d", self._cfg.start_block)
        log.info("  Poll interval: %.1fs", self._cfg.poll_interval)

        try:
            await self.store.initialize()

            # Resume after the last committed block
            saved_block = await self.store.get_cursor()
            self._committed_block = saved_block
            next_block = self.poller.cursor_state().last_block_number + 1
            if saved_block is not None and saved_block + 1 > next_block:
                self.poller.set_cursor(saved_block + 1)
                self._state.last_block_number = saved_block
                log.info("Restored cursor: block %d", saved_block)
        finally:
            self._starting = False

        if self._stop_requested:
            self._phase = IndexerPhase.STOPPED
            log.info("Stop requested during startup, not polling")
            return

        self._phase = IndexerPhase.RUNNING
        self._state.is_indexing = True

        try:
            await self.poller.run(self._process_block)
        except asyncio.CancelledError:
            log.info("Indexer cancelled")
            self._mark_stopped()
            raise
        except Exception as exc:
            self._phase = IndexerPhase.FAULTED
            self._state.is_indexing = False
            self._state.last_error = str(exc)
            log.error("Indexer faulted, restart required: %s", exc)
            raise

        self._mark_stopped()
        log.info("Onchain indexer stopped")

    async def stop(self) -> None:
        """Signal the indexer to stop after the in-flight cycle."""
        if self._phase is IndexerPhase.NOT_STARTED and self._starting:
            log.info("Stop requested while starting")
            self._stop_requested = True
            return
        if self._phase is not IndexerPhase.RUNNING:
            log.debug("Stop requested in phase %s, ignoring", self._phase.value)
            return
        log.info("Stop requested")
        self._mark_stopped()
        self.poller.stop()

    def _mark_stopped(self) -> None:
        if self._phase is IndexerPhase.RUNNING:
            self._phase = IndexerPhase.STOPPED
        self._state.is_indexing = False

    async def _process_block(self, block_number: int, logs: list[RawLogRecord]) -> None:
        """Decode, persist and publish one block's logs."""
        if self._committed_block is not None and block_number <= self._committed_block:
            log.debug("Block %d already committed, skipping", block_number)
            return

        try:
            log.debug("Processing block %d (%d logs)", block_number, len(logs))

            block_timestamp = await with_backoff(
                lambda: self.client.block_timestamp(block_number), self._retry_policy,
            )

            events: list[DecodedEvent] = [
                self.decoder.decode(record, block_timestamp) for record in logs
            ]

            await self.store.save_block_events(block_number, block_timestamp, events)
            self._committed_block = block_number

            for event in events:
                self.bus.publish(event)

            self._state.last_block_number = block_number
            log.debug("Block %d processed (%d events)", block_number, len(events))

        except Exception as exc:
            self._state.error_count += 1
            self._state.last_error = str(exc)
            log.error("Error processing block %d: %s", block_number, exc)
            raise

    # ── Outward surface ────────────────────────────────────

    def get_state(self) -> IndexerState:
        return dataclasses.replace(self._state)

    def get_uptime(self) -> int:
        return int(time.monotonic() - self._start_time)

    def get_status(self) -> StatusSnapshot:
        return StatusSnapshot(
            is_indexing=self._state.is_indexing,
            last_block_number=str(self._state.last_block_number),
            error_count=self._state.error_count,
            uptime_seconds=self.get_uptime(),
            last_error=self._state.last_error,
        )

    def subscribe(self, callback: Listener) -> Callable[[], None]:
        """Receive every decoded event after its block is committed."""
        return self.bus.subscribe(callback)


async def run_indexer(cfg: IndexerConfig) -> None:
    """Entry point for running the indexer until a signal or a fatal error."""
    indexer = OnchainIndexer(cfg)

    loop = asyncio.get_running_loop()

    def _signal_handler():
        asyncio.ensure_future(indexer.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    try:
        await indexer.start()
    finally:
        await indexer.store.close()
        await indexer.client.close()
        log.info("Indexer shut down (phase: %s)", indexer.phase.value)
