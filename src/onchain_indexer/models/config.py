"""Configuration models for the indexer."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class IndexerConfig:
    """Complete indexer configuration."""

    # Indexer
    start_block: int = 18_000_000
    poll_interval: float = 12.0  # seconds
    batch_size: int = 100  # blocks per eth_getLogs call
    max_consecutive_errors: int = 10
    log_level: str = "info"

    # Chain
    rpc_url: str = "https://rpc-gel.inkonchain.com"
    rpc_timeout: float = 30.0  # seconds

    # Retry (per chain query)
    max_retries: int = 3
    retry_base_delay: float = 1.0  # seconds
    retry_max_delay: float = 30.0  # seconds
    retry_multiplier: float = 2.0

    # Storage
    db_path: str = "~/.onchain_indexer/events.db"
