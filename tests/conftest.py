"""Shared fixtures for onchain_indexer tests."""

from __future__ import annotations

import pytest

from onchain_indexer.api.bus import EventBus
from onchain_indexer.api.data_api import IndexerDataAPI
from onchain_indexer.daemon import OnchainIndexer
from onchain_indexer.models.config import IndexerConfig
from onchain_indexer.storage.sqlite import SQLiteEventStore

from tests.mocks import MockBlockSource, MockChainClient

START_BLOCK = 100


def make_test_config(**overrides) -> IndexerConfig:
    """Build an IndexerConfig suitable for testing."""
    defaults = dict(
        start_block=START_BLOCK,
        poll_interval=0.01,
        batch_size=10,
        max_consecutive_errors=10,
        rpc_url="http://127.0.0.1:8545",
        rpc_timeout=5.0,
        max_retries=2,
        retry_base_delay=0.001,
        retry_max_delay=0.01,
        retry_multiplier=2.0,
        db_path=":memory:",
    )
    defaults.update(overrides)
    return IndexerConfig(**defaults)


@pytest.fixture
def test_config():
    """Default IndexerConfig for tests."""
    return make_test_config()


@pytest.fixture
async def store():
    """Initialized in-memory SQLiteEventStore."""
    s = SQLiteEventStore(":memory:")
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def mock_client():
    return MockChainClient(head=START_BLOCK)


@pytest.fixture
def mock_source():
    return MockBlockSource(start_block=START_BLOCK)


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
async def indexer(test_config, store, mock_client, mock_source, bus):
    """OnchainIndexer wired to mocks and the in-memory store."""
    return OnchainIndexer(
        test_config,
        client=mock_client,
        store=store,
        bus=bus,
        poller=mock_source,
    )


@pytest.fixture
async def data_api(store, indexer):
    return IndexerDataAPI(store, indexer)
