"""Tier 2 fixtures: real JsonRpcChainClient against a local fake JSON-RPC node."""

from __future__ import annotations

import pytest
from aiohttp import web

from onchain_indexer.chain.client import JsonRpcChainClient
from onchain_indexer.models.events import RawLogRecord

from tests.mocks import GENESIS_TIME

NODE_HOST = "127.0.0.1"
NODE_PORT = 9199


def log_to_json(record: RawLogRecord) -> dict:
    """Render a RawLogRecord the way an Ethereum node returns it from eth_getLogs."""
    return {
        "address": record.address,
        "blockNumber": hex(record.block_number),
        "blockHash": record.block_hash,
        "data": "0x" + record.data.hex(),
        "topics": ["0x" + t.hex() for t in record.topics],
        "transactionHash": record.transaction_hash,
        "logIndex": hex(record.log_index),
        "transactionIndex": hex(record.transaction_index or 0),
        "removed": record.removed,
    }


class FakeNode:
    """In-memory chain answering eth_blockNumber, eth_getLogs and eth_getBlockByNumber."""

    def __init__(self) -> None:
        self.head = 0
        self.logs: list[dict] = []
        self.requests: list[dict] = []
        self.rpc_errors: list[dict] = []  # next responses carry these error objects
        self.http_errors: list[int] = []  # next responses use these status codes

    def add_logs(self, *records: RawLogRecord) -> None:
        self.logs.extend(log_to_json(r) for r in records)

    def calls(self, method: str) -> list[dict]:
        return [r for r in self.requests if r["method"] == method]

    def dispatch(self, method: str, params: list):
        if method == "eth_blockNumber":
            return hex(self.head)
        if method == "eth_getLogs":
            lo = int(params[0]["fromBlock"], 16)
            hi = int(params[0]["toBlock"], 16)
            return [e for e in self.logs if lo <= int(e["blockNumber"], 16) <= hi]
        if method == "eth_getBlockByNumber":
            number = int(params[0], 16)
            if number > self.head:
                return None
            return {
                "number": hex(number),
                "timestamp": hex(GENESIS_TIME + number * 2),
                "transactions": [],
            }
        raise KeyError(method)

    async def handle(self, request: web.Request) -> web.Response:
        body = await request.json()
        self.requests.append(body)

        if self.http_errors:
            return web.Response(status=self.http_errors.pop(0), text="unavailable")

        reply = {"jsonrpc": "2.0", "id": body.get("id")}
        if self.rpc_errors:
            reply["error"] = self.rpc_errors.pop(0)
            return web.json_response(reply)
        try:
            reply["result"] = self.dispatch(body["method"], body.get("params", []))
        except KeyError:
            reply["error"] = {"code": -32601, "message": "the method does not exist"}
        return web.json_response(reply)


@pytest.fixture
async def fake_node():
    """Local JSON-RPC server. Returns (rpc_url, node)."""
    node = FakeNode()
    app = web.Application()
    app.router.add_post("/", node.handle)

    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, NODE_HOST, NODE_PORT)
    await site.start()
    yield f"http://{NODE_HOST}:{NODE_PORT}/", node
    await runner.cleanup()


@pytest.fixture
async def chain_client(fake_node):
    """Real JsonRpcChainClient pointed at the fake node."""
    url, _ = fake_node
    client = JsonRpcChainClient(url, timeout=5)
    yield client
    await client.close()
