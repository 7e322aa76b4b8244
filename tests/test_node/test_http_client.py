"""Tests for HttpNodeClient against a local aiohttp gateway.

The gateway mimics the node's JSON API: ``POST /{Method}`` answering
``{"value": "<json>"}`` for JSON queries and plain objects for peer queries.
"""

import asyncio
import json
from decimal import Decimal

import pytest
import pytest_asyncio
from aiohttp import test_utils, web

from bakerd.config import NodeSettings
from bakerd.exceptions import MalformedResponseError, NodeUnavailableError
from bakerd.node.http_client import HttpNodeClient

HASH = "994dbdd7f9493286ed05706e154c3366d83281a76bdb7a058a5f4c7859a9f9a8"
ALICE = "3ZFGxLtnUUSJGW2WqjMh1DDjxyq5rnytCwkSqxFTpsWSFdQnNn"


def json_value(doc: object) -> dict:
    """Wrap a document the way the node wraps JsonResponse payloads."""
    return {"value": json.dumps(doc)}


class Gateway:
    """Records requests and serves canned responses per method."""

    def __init__(self) -> None:
        self.responses: dict[str, object] = {}
        self.requests: list[tuple[str, dict, str | None]] = []

    async def handle(self, request: web.Request) -> web.StreamResponse:
        method = request.match_info["method"]
        self.requests.append((method, await request.json(), request.headers.get("authentication")))
        response = self.responses.get(method)
        if callable(response):
            return await response(request)
        if isinstance(response, web.StreamResponse):
            return response
        if response is None:
            return web.Response(status=404, text=f"no such method {method}")
        return web.json_response(response)


@pytest_asyncio.fixture
async def gateway():
    gw = Gateway()
    app = web.Application()
    app.router.add_post("/{method}", gw.handle)
    server = test_utils.TestServer(app)
    await server.start_server()
    gw.url = str(server.make_url("/"))  # type: ignore[attr-defined]
    yield gw
    await server.close()


@pytest_asyncio.fixture
async def client(gateway):
    c = HttpNodeClient(NodeSettings(uri=gateway.url, token="s3cret", timeout=0.5))  # type: ignore[arg-type]
    await c.connect()
    yield c
    await c.close()


class TestQueries:
    @pytest.mark.asyncio
    async def test_consensus_status_sends_token(self, gateway, client) -> None:
        gateway.responses["GetConsensusStatus"] = json_value({
            "lastFinalizedBlock": HASH,
            "lastFinalizedBlockHeight": 2840311,
        })

        status = await client.get_consensus_status()

        assert status.last_finalized_height == 2840311
        assert gateway.requests == [("GetConsensusStatus", {}, "s3cret")]

    @pytest.mark.asyncio
    async def test_blocks_at_height_request_body(self, gateway, client) -> None:
        gateway.responses["GetBlocksAtHeight"] = json_value([HASH])

        hashes = await client.get_blocks_at_height(2840312)

        assert hashes == [HASH]
        _, body, _ = gateway.requests[0]
        assert body == {"block_height": "2840312", "from_genesis_index": 0}

    @pytest.mark.asyncio
    async def test_unknown_account_is_none(self, gateway, client) -> None:
        gateway.responses["GetAccountInfo"] = json_value(None)

        assert await client.get_account_info(HASH, ALICE) is None
        _, body, _ = gateway.requests[0]
        assert body == {"block_hash": HASH, "address": ALICE}

    @pytest.mark.asyncio
    async def test_account_info(self, gateway, client) -> None:
        gateway.responses["GetAccountInfo"] = json_value({
            "accountAmount": "1000",
            "accountBaker": {"stakedAmount": "750"},
        })

        balance = await client.get_account_info(HASH, ALICE)

        assert balance is not None
        assert balance.available_amount == Decimal("250")

    @pytest.mark.asyncio
    async def test_peer_queries_are_plain_json(self, gateway, client) -> None:
        gateway.responses["PeerUptime"] = {"value": "250"}
        gateway.responses["PeerStats"] = {"peerstats": [{"latency": "12"}]}

        assert await client.get_peer_uptime() == 250
        stats = await client.get_peer_stats()
        assert stats.peer_count == 1
        assert gateway.requests[1][1] == {"include_bootstrappers": False}


class TestErrorMapping:
    @pytest.mark.asyncio
    async def test_timeout_is_unavailable(self, gateway, client) -> None:
        async def slow(request: web.Request) -> web.Response:
            await asyncio.sleep(1)
            return web.json_response(json_value({}))

        gateway.responses["GetConsensusStatus"] = slow

        with pytest.raises(NodeUnavailableError, match="no answer"):
            await client.get_consensus_status()

    @pytest.mark.asyncio
    async def test_server_error_is_unavailable(self, gateway, client) -> None:
        gateway.responses["GetBlockInfo"] = web.Response(status=500, text="internal")

        with pytest.raises(NodeUnavailableError, match="500"):
            await client.get_block_info(HASH)

    @pytest.mark.asyncio
    async def test_connection_refused_is_unavailable(self) -> None:
        c = HttpNodeClient(NodeSettings(uri="http://127.0.0.1:1", timeout=0.5))
        try:
            with pytest.raises(NodeUnavailableError):
                await c.get_consensus_status()
        finally:
            await c.close()

    @pytest.mark.asyncio
    async def test_non_json_body_is_malformed(self, gateway, client) -> None:
        gateway.responses["GetBlockSummary"] = web.Response(text="<html>oops</html>")

        with pytest.raises(MalformedResponseError):
            await client.get_block_summary(HASH, 0)

    @pytest.mark.asyncio
    async def test_invalid_json_document_is_malformed(self, gateway, client) -> None:
        gateway.responses["GetBirkParameters"] = {"value": "{not json"}

        with pytest.raises(MalformedResponseError, match="invalid JSON"):
            await client.get_birk_parameters(HASH)

    @pytest.mark.asyncio
    async def test_missing_value_wrapper_is_malformed(self, gateway, client) -> None:
        gateway.responses["GetConsensusStatus"] = {"lastFinalizedBlockHeight": 1}

        with pytest.raises(MalformedResponseError, match="expected a JSON response"):
            await client.get_consensus_status()
