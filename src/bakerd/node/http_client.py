"""Node client implementation over the node's JSON gateway, via aiohttp.

Each query is a ``POST {uri}/{Method}`` carrying the request message as JSON
and the node's ``authentication`` token header. Queries whose schema is
defined as a JSON document come back wrapped as ``{"value": "<json>"}`` and
are decoded twice; the peer queries come back as plain JSON objects.

Every call is bounded by the configured timeout. Timeouts and connection
errors become NodeUnavailableError, undecodable bodies MalformedResponseError.
"""

import asyncio
import json
from typing import Any

import aiohttp

from bakerd.config import NodeSettings
from bakerd.exceptions import MalformedResponseError, NodeUnavailableError
from bakerd.logging import get_logger
from bakerd.node.client import NodeClient
from bakerd.node.types import (
    AccountBalance,
    BirkParameters,
    BlockInfo,
    BlockSummary,
    ConsensusStatus,
    NodeInfo,
    PeerStats,
    parse_block_hashes,
)

logger = get_logger(__name__)


class HttpNodeClient(NodeClient):
    """Concrete node client using an aiohttp session."""

    def __init__(self, settings: NodeSettings) -> None:
        self._settings = settings
        self._base_url = settings.uri.rstrip("/")
        self._session: aiohttp.ClientSession | None = None

    async def connect(self) -> None:
        """Create the HTTP session. Connections are opened lazily per request."""
        if self._session is not None:
            return
        self._session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self._settings.timeout),
            headers={"authentication": self._settings.token.get_secret_value()},
        )
        logger.info("node_client_ready", uri=self._base_url, timeout=self._settings.timeout)

    async def close(self) -> None:
        """Close the HTTP session. Must be called to avoid leaking connections."""
        if self._session is not None:
            await self._session.close()
            self._session = None
            logger.info("node_client_closed")

    # ──────────────────────────────────────────────
    # Consensus and blocks
    # ──────────────────────────────────────────────

    async def get_consensus_status(self) -> ConsensusStatus:
        return ConsensusStatus.from_json(await self._call_json("GetConsensusStatus", {}))

    async def get_blocks_at_height(self, height: int) -> list[str]:
        doc = await self._call_json(
            "GetBlocksAtHeight",
            {"block_height": str(height), "from_genesis_index": 0},
        )
        return parse_block_hashes(doc)

    async def get_block_info(self, block_hash: str) -> BlockInfo:
        doc = await self._call_json("GetBlockInfo", {"block_hash": block_hash})
        if doc is None:
            raise MalformedResponseError(f"BlockInfo: unknown block {block_hash}")
        return BlockInfo.from_json(doc)

    async def get_block_summary(self, block_hash: str, slot_time_ms: int) -> BlockSummary:
        doc = await self._call_json("GetBlockSummary", {"block_hash": block_hash})
        return BlockSummary.from_json(doc, slot_time_ms)

    # ──────────────────────────────────────────────
    # Accounts and committee
    # ──────────────────────────────────────────────

    async def get_account_info(self, block_hash: str, address: str) -> AccountBalance | None:
        doc = await self._call_json(
            "GetAccountInfo", {"block_hash": block_hash, "address": address}
        )
        if doc is None:
            return None
        return AccountBalance.from_json(doc)

    async def get_birk_parameters(self, block_hash: str) -> BirkParameters:
        doc = await self._call_json("GetBirkParameters", {"block_hash": block_hash})
        return BirkParameters.from_json(doc)

    # ──────────────────────────────────────────────
    # Node and peers
    # ──────────────────────────────────────────────

    async def get_node_info(self) -> NodeInfo:
        return NodeInfo.from_json(await self._call("NodeInfo", {}))

    async def get_peer_uptime(self) -> int:
        doc = await self._call("PeerUptime", {})
        try:
            return int(doc["value"])
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedResponseError(f"PeerUptime: unexpected response {doc!r}") from e

    async def get_peer_stats(self) -> PeerStats:
        return PeerStats.from_json(
            await self._call("PeerStats", {"include_bootstrappers": False})
        )

    # ──────────────────────────────────────────────
    # Transport
    # ──────────────────────────────────────────────

    async def _call_json(self, method: str, body: dict) -> Any:
        """Call a method answering with a JsonResponse and decode its document."""
        response = await self._call(method, body)
        if not isinstance(response, dict) or not isinstance(response.get("value"), str):
            raise MalformedResponseError(f"{method}: expected a JSON response, got {response!r}")
        try:
            return json.loads(response["value"])
        except json.JSONDecodeError as e:
            raise MalformedResponseError(f"{method}: invalid JSON document") from e

    async def _call(self, method: str, body: dict) -> Any:
        """POST one query and return the decoded JSON body."""
        if self._session is None:
            await self.connect()
        assert self._session is not None

        url = f"{self._base_url}/{method}"
        try:
            async with self._session.post(url, json=body) as response:
                if response.status >= 400:
                    text = await response.text()
                    raise NodeUnavailableError(
                        f"{method}: node answered {response.status}: {text[:200]}"
                    )
                return await response.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise NodeUnavailableError(
                f"{method}: no answer within {self._settings.timeout}s"
            ) from e
        except aiohttp.ContentTypeError as e:
            raise MalformedResponseError(f"{method}: response is not JSON") from e
        except json.JSONDecodeError as e:
            raise MalformedResponseError(f"{method}: response is not JSON") from e
        except aiohttp.ClientError as e:
            raise NodeUnavailableError(f"{method}: {e}") from e
