"""EVM chain integration components."""

from onchain_indexer.chain.client import ChainRPCError, JsonRpcChainClient
from onchain_indexer.chain.poller import BlockPoller

__all__ = ["ChainRPCError", "JsonRpcChainClient", "BlockPoller"]
