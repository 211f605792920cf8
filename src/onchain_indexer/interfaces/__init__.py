"""Protocol interfaces for all onchain_indexer components."""

from onchain_indexer.interfaces.chain import ChainClient
from onchain_indexer.interfaces.poller import BlockHandler, BlockSource
from onchain_indexer.interfaces.store import EventStore

__all__ = [
    "ChainClient",
    "BlockHandler", "BlockSource",
    "EventStore",
]
