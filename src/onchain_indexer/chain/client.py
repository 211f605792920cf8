"""JSON-RPC chain client - eth_blockNumber / eth_getLogs / eth_getBlockByNumber over httpx."""

from __future__ import annotations

import itertools
import logging
from datetime import datetime, timezone
from typing import Any

import httpx
from eth_utils import to_bytes, to_int

from onchain_indexer.models.events import RawLogRecord

log = logging.getLogger(__name__)


class ChainRPCError(RuntimeError):
    """The node answered with a JSON-RPC error object."""

    def __init__(self, method: str, code: int | None, message: str) -> None:
        super().__init__(f"{method} RPC error {code}: {message}")
        self.method = method
        self.code = code
        self.message = message


def _opt_int(value: str | int | None) -> int | None:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    return to_int(hexstr=value)


def parse_log(raw: dict[str, Any]) -> RawLogRecord:
    """Convert one eth_getLogs entry into a RawLogRecord."""
    data = raw.get("data") or "0x"
    return RawLogRecord(
        address=raw.get("address", ""),
        block_number=_opt_int(raw.get("blockNumber")),
        block_hash=raw.get("blockHash"),
        data=to_bytes(hexstr=data),
        topics=tuple(to_bytes(hexstr=t) for t in raw.get("topics") or []),
        transaction_hash=raw.get("transactionHash"),
        log_index=_opt_int(raw.get("logIndex")),
        transaction_index=_opt_int(raw.get("transactionIndex")),
        removed=bool(raw.get("removed", False)),
    )


class JsonRpcChainClient:
    """Reads chain height, logs and block timestamps from an EVM JSON-RPC node.

    Transport failures surface as httpx exceptions and node-side failures as
    ChainRPCError. Neither is retried here; callers wrap calls in
    ``with_backoff``.
    """

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._rpc_url = rpc_url
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout, connect=10))
        self._ids = itertools.count(1)

    async def close(self) -> None:
        await self._client.aclose()

    async def _call(self, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        resp = await self._client.post(self._rpc_url, json=payload)
        resp.raise_for_status()
        body = resp.json()
        if body.get("error") is not None:
            err = body["error"]
            if isinstance(err, dict):
                raise ChainRPCError(method, err.get("code"), str(err.get("message", "")))
            raise ChainRPCError(method, None, str(err))
        return body.get("result")

    async def latest_block_number(self) -> int:
        return to_int(hexstr=await self._call("eth_blockNumber", []))

    async def logs_in_range(self, from_block: int, to_block: int) -> list[RawLogRecord]:
        result = await self._call(
            "eth_getLogs",
            [{"fromBlock": hex(from_block), "toBlock": hex(to_block)}],
        )
        logs = [parse_log(entry) for entry in result or []]
        log.debug("eth_getLogs %d..%d returned %d logs", from_block, to_block, len(logs))
        return logs

    async def block_timestamp(self, block_number: int) -> datetime:
        block = await self._call("eth_getBlockByNumber", [hex(block_number), False])
        if block is None:
            raise ChainRPCError("eth_getBlockByNumber", None, f"block {block_number} not found")
        seconds = to_int(hexstr=block["timestamp"])
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
