"""API components - event bus and data API."""

from onchain_indexer.api.bus import EventBus
from onchain_indexer.api.data_api import IndexerDataAPI

__all__ = ["EventBus", "IndexerDataAPI"]
