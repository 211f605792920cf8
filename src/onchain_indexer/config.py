"""Configuration loading: TOML file + environment variables."""

from __future__ import annotations

import os
from pathlib import Path

try:
    import tomllib  # Python 3.11+
except ModuleNotFoundError:
    import tomli as tomllib  # type: ignore[no-redef]

from onchain_indexer.models.config import IndexerConfig


def load_config(
    config_path: str | Path | None = None,
    env_prefix: str = "ONCHAIN_INDEXER_",
) -> IndexerConfig:
    """Load indexer configuration from a TOML file and env vars.

    Priority (highest wins):
        1. Environment variables (ONCHAIN_INDEXER_RPC_URL, etc.)
        2. TOML config file
        3. Defaults from IndexerConfig
    """
    raw: dict = {}
    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.exists():
            with open(p, "rb") as f:
                raw = tomllib.load(f)

    cfg = IndexerConfig()

    # ── Indexer section ────────────────────────────────────
    indexer = raw.get("indexer", {})
    if (v := indexer.get("start_block")) is not None:
        cfg.start_block = int(v)
    if (v := indexer.get("poll_interval")) is not None:
        cfg.poll_interval = float(v)
    if (v := indexer.get("batch_size")) is not None:
        cfg.batch_size = int(v)
    if (v := indexer.get("max_consecutive_errors")) is not None:
        cfg.max_consecutive_errors = int(v)
    if v := indexer.get("log_level"):
        cfg.log_level = str(v)

    # ── Chain section ──────────────────────────────────────
    chain = raw.get("chain", {})
    if v := chain.get("rpc_url"):
        cfg.rpc_url = str(v)
    if (v := chain.get("rpc_timeout")) is not None:
        cfg.rpc_timeout = float(v)

    # ── Retry section ──────────────────────────────────────
    retry = raw.get("retry", {})
    if (v := retry.get("max_retries")) is not None:
        cfg.max_retries = int(v)
    if (v := retry.get("base_delay")) is not None:
        cfg.retry_base_delay = float(v)
    if (v := retry.get("max_delay")) is not None:
        cfg.retry_max_delay = float(v)
    if (v := retry.get("multiplier")) is not None:
        cfg.retry_multiplier = float(v)

    # ── Storage section ────────────────────────────────────
    storage = raw.get("storage", {})
    if v := storage.get("db_path"):
        cfg.db_path = str(v)

    # ── Environment variable overrides (highest priority) ──
    if rpc := os.environ.get(f"{env_prefix}RPC_URL"):
        cfg.rpc_url = rpc
    if start := os.environ.get(f"{env_prefix}START_BLOCK"):
        cfg.start_block = int(start)
    if interval := os.environ.get(f"{env_prefix}POLL_INTERVAL"):
        cfg.poll_interval = float(interval)
    if batch := os.environ.get(f"{env_prefix}BATCH_SIZE"):
        cfg.batch_size = int(batch)
    if db_path := os.environ.get(f"{env_prefix}DB_PATH"):
        cfg.db_path = db_path
    if level := os.environ.get(f"{env_prefix}LOG_LEVEL"):
        cfg.log_level = level

    _validate(cfg)

    # Expand ~ in paths
    if cfg.db_path != ":memory:":
        cfg.db_path = str(Path(cfg.db_path).expanduser())

    return cfg


def _validate(cfg: IndexerConfig) -> None:
    if not cfg.rpc_url:
        raise ValueError("rpc_url is required")
    if cfg.start_block < 0:
        raise ValueError(f"start_block must be >= 0, got {cfg.start_block}")
    if cfg.batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {cfg.batch_size}")
    if cfg.poll_interval < 0:
        raise ValueError(f"poll_interval must be >= 0, got {cfg.poll_interval}")
    if cfg.max_retries < 0:
        raise ValueError(f"max_retries must be >= 0, got {cfg.max_retries}")
    if cfg.retry_base_delay < 0 or cfg.retry_max_delay < 0:
        raise ValueError("retry delays must be >= 0")
    if cfg.retry_multiplier < 1:
        raise ValueError(f"retry multiplier must be >= 1, got {cfg.retry_multiplier}")
    if cfg.rpc_timeout <= 0:
        raise ValueError(f"rpc_timeout must be > 0, got {cfg.rpc_timeout}")
    if cfg.max_consecutive_errors < 1:
        raise ValueError(
            f"max_consecutive_errors must be >= 1, got {cfg.max_consecutive_errors}"
        )
