"""Tests 43-54, 81-82: Orchestrator lifecycle, per-block pipeline and cursor restore."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from onchain_indexer.daemon import OnchainIndexer, retry_policy_from_config
from onchain_indexer.models.events import SwapEvent, TransferEvent, UnknownEvent
from onchain_indexer.models.snapshots import IndexerPhase

from tests.conftest import make_test_config
from tests.factories import (
    BLOCK_TIME,
    make_swap_v3_log,
    make_transfer_event,
    make_transfer_log,
    make_unknown_log,
)
from tests.mocks import GENESIS_TIME, RecordingListener


async def wait_for(predicate, timeout: float = 5.0) -> None:
    """Poll ``predicate`` (sync or async) until it returns truthy."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        result = predicate()
        if asyncio.iscoroutine(result):
            result = await result
        if result:
            return
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


# ── Test 43: End-to-end block processing ──────────────────────────


async def test_block_is_decoded_persisted_and_published(indexer, mock_source, store, bus):
    """Transfer, V3 swap and unknown log in one block all land in the store."""
    listener = RecordingListener()
    indexer.subscribe(listener)
    mock_source.enqueue(
        101,
        make_transfer_log(block_number=101, log_index=0),
        make_swap_v3_log(block_number=101, log_index=1),
        make_unknown_log(block_number=101, log_index=2),
    )

    await indexer.start()

    audit = await store.get_block_event_logs(101)
    assert [a.log_index for a in audit] == [0, 1, 2]
    assert len(await store.get_recent_transfers()) == 1
    assert len(await store.get_recent_swaps()) == 1
    assert await store.get_cursor() == 101

    kinds = [type(e) for e in listener.received]
    assert kinds == [TransferEvent, SwapEvent, UnknownEvent]

    expected_ts = datetime.fromtimestamp(GENESIS_TIME + 101 * 2, tz=timezone.utc)
    assert listener.received[0].block_timestamp == expected_ts

    assert indexer.get_state().last_block_number == 101
    assert indexer.phase is IndexerPhase.STOPPED


# ── Test 44: Publish strictly after commit ────────────────────────


async def test_events_published_after_block_committed(indexer, mock_source, store):
    order: list[str] = []
    save = store.save_block_events

    async def recording_save(*args, **kwargs):
        await save(*args, **kwargs)
        order.append("committed")

    store.save_block_events = recording_save
    indexer.subscribe(lambda e: order.append("published"))
    mock_source.enqueue(
        101,
        make_transfer_log(block_number=101, log_index=0),
        make_transfer_log(block_number=101, log_index=1),
    )

    await indexer.start()

    assert order == ["committed", "published", "published"]


# ── Test 45: Persistence failure ──────────────────────────────────


async def test_persistence_failure_publishes_nothing(indexer, mock_source, store):
    listener = RecordingListener()
    indexer.subscribe(listener)

    async def failing_save(*args, **kwargs):
        raise RuntimeError("database is locked")

    store.save_block_events = failing_save
    mock_source.enqueue(101, make_transfer_log(block_number=101))

    with pytest.raises(RuntimeError, match="database is locked"):
        await indexer.start()

    assert listener.received == []
    state = indexer.get_state()
    assert state.error_count == 1
    assert state.last_error == "database is locked"
    assert state.last_block_number == 100
    assert indexer.phase is IndexerPhase.FAULTED


# ── Test 46: Timestamp retry ──────────────────────────────────────


async def test_block_timestamp_is_retried(indexer, mock_source, mock_client, store):
    mock_client.fail_timestamp = 2
    mock_source.enqueue(101, make_transfer_log(block_number=101))

    await indexer.start()

    assert mock_client.timestamp_calls == [101, 101, 101]
    assert await store.get_cursor() == 101


# ── Test 47: Poller exhaustion faults the indexer ─────────────────


async def test_source_failure_faults_indexer(indexer, mock_source):
    mock_source.error = ConnectionError("rpc down")

    with pytest.raises(ConnectionError):
        await indexer.start()

    assert indexer.phase is IndexerPhase.FAULTED
    status = indexer.get_status()
    assert status.is_indexing is False
    assert status.last_error == "rpc down"


# ── Test 48: Lifecycle guards ─────────────────────────────────────


async def test_restart_after_stop_is_rejected(indexer):
    await indexer.start()
    assert indexer.phase is IndexerPhase.STOPPED

    with pytest.raises(RuntimeError):
        await indexer.start()


async def test_stop_before_start_is_ignored(indexer, mock_source):
    await indexer.stop()
    assert indexer.phase is IndexerPhase.NOT_STARTED
    assert mock_source.stop_calls == 0


# ── Test 49: Cursor restore ───────────────────────────────────────


async def test_start_resumes_after_persisted_cursor(indexer, mock_source, store):
    await store.save_block_events(500, BLOCK_TIME, [make_transfer_event(block_number=500)])

    await indexer.start()

    assert mock_source.next_block == 501
    assert indexer.get_status().last_block_number == "500"


async def test_persisted_cursor_below_start_block_is_ignored(indexer, mock_source, store):
    await store.save_block_events(50, BLOCK_TIME, [])

    await indexer.start()

    assert mock_source.next_block == 100
    assert indexer.get_state().last_block_number == 100


# ── Test 50: Full pipeline with the real poller ───────────────────


async def test_real_poller_pipeline_and_stop(store, mock_client):
    cfg = make_test_config(start_block=100, batch_size=2, poll_interval=0.01)
    mock_client.heads = [103]
    mock_client.add_logs(
        make_transfer_log(block_number=101, log_index=0),
        make_swap_v3_log(block_number=103, log_index=0),
    )
    indexer = OnchainIndexer(cfg, client=mock_client, store=store)
    listener = RecordingListener()
    indexer.subscribe(listener)

    task = asyncio.ensure_future(indexer.start())
    await wait_for(lambda: len(listener.received) == 2)
    assert indexer.get_status().is_indexing is True
    assert indexer.phase is IndexerPhase.RUNNING

    await indexer.stop()
    await asyncio.wait_for(task, timeout=5)

    assert indexer.phase is IndexerPhase.STOPPED
    assert indexer.get_status().is_indexing is False
    assert await store.get_cursor() == 103
    assert mock_client.range_calls[:2] == [(100, 101), (102, 103)]


# ── Test 51: Cancellation ─────────────────────────────────────────


async def test_cancel_marks_stopped(store, mock_client):
    cfg = make_test_config(poll_interval=0.01)
    indexer = OnchainIndexer(cfg, client=mock_client, store=store)

    task = asyncio.ensure_future(indexer.start())
    await wait_for(lambda: mock_client.head_calls >= 1)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    assert indexer.phase is IndexerPhase.STOPPED


# ── Test 52: Status snapshot ──────────────────────────────────────


async def test_status_before_start(indexer):
    status = indexer.get_status().to_dict()
    assert status == {
        "is_indexing": False,
        "last_block_number": "100",
        "error_count": 0,
        "uptime_seconds": status["uptime_seconds"],
        "last_error": None,
    }
    assert status["uptime_seconds"] >= 0


# ── Test 53: State copies ─────────────────────────────────────────


async def test_get_state_returns_copy(indexer):
    state = indexer.get_state()
    state.error_count = 99
    assert indexer.get_state().error_count == 0


# ── Test 54: Retry policy from config ─────────────────────────────


def test_retry_policy_from_config():
    cfg = make_test_config(max_retries=5, retry_base_delay=0.5, retry_max_delay=8.0)
    policy = retry_policy_from_config(cfg)
    assert (policy.max_retries, policy.base_delay, policy.max_delay) == (5, 0.5, 8.0)


# ── Test 81: Rescanned batch after a mid-batch failure ────────────


async def test_rescan_after_failure_does_not_duplicate_blocks(store, mock_client):
    """Blocks committed before a failing block are not written or published twice."""
    cfg = make_test_config(start_block=100, batch_size=10, poll_interval=0.01, max_retries=2)
    mock_client.heads = [109]
    mock_client.add_logs(
        make_transfer_log(block_number=101, log_index=0),
        make_transfer_log(block_number=105, log_index=0),
    )
    # every backoff attempt for block 105 fails in the first cycle only
    mock_client.timestamp_failures[105] = 3

    indexer = OnchainIndexer(cfg, client=mock_client, store=store)
    listener = RecordingListener()
    indexer.subscribe(listener)

    task = asyncio.ensure_future(indexer.start())

    async def committed_105():
        return await store.get_cursor() == 105

    await wait_for(committed_105)
    await indexer.stop()
    await asyncio.wait_for(task, timeout=5)

    assert await store.get_cursor() == 105
    assert len(await store.get_block_event_logs(101)) == 1
    assert len(await store.get_block_event_logs(105)) == 1
    stats = await store.get_stats()
    assert (stats.total_events, stats.total_transfers) == ("2", "2")

    assert [e.block_number for e in listener.received] == [101, 105]
    assert mock_client.timestamp_calls.count(101) == 1
    assert mock_client.range_calls[:2] == [(100, 109), (100, 109)]
    assert indexer.get_status().error_count == 1


async def test_blocks_at_or_below_persisted_cursor_are_skipped(indexer, mock_source, store):
    """A block handed over again after restart is not reprocessed."""
    await store.save_block_events(101, BLOCK_TIME, [make_transfer_event(block_number=101)])
    listener = RecordingListener()
    indexer.subscribe(listener)
    mock_source.enqueue(101, make_transfer_log(block_number=101))
    mock_source.enqueue(102, make_transfer_log(block_number=102))

    await indexer.start()

    assert [e.block_number for e in listener.received] == [102]
    assert (await store.get_stats()).total_transfers == "2"


# ── Test 82: Stop during startup ──────────────────────────────────


async def test_stop_during_startup_is_honoured(indexer, mock_source, store):
    """A stop (signal) arriving while the store initializes prevents polling."""
    initialize = store.initialize

    async def initialize_then_signal():
        await initialize()
        await indexer.stop()

    store.initialize = initialize_then_signal
    mock_source.enqueue(101, make_transfer_log(block_number=101))

    await asyncio.wait_for(indexer.start(), timeout=5)

    assert indexer.phase is IndexerPhase.STOPPED
    assert indexer.get_status().is_indexing is False
    assert mock_source.next_block == 100
    assert await store.get_cursor() is None

    with pytest.raises(RuntimeError):
        await indexer.start()
