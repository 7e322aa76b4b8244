"""Shared test fixtures for the baker daemon."""

from decimal import Decimal

import pytest
import pytest_asyncio

from bakerd.config import AppSettings, IngestionSettings, NodeSettings, StorageSettings
from bakerd.exceptions import NodeUnavailableError
from bakerd.ingestion.pipeline import IngestionPipeline
from bakerd.ingestion.reconciliation import ReconciliationEngine
from bakerd.models import RewardEvent, RewardKind
from bakerd.node.client import NodeClient
from bakerd.node.types import (
    AccountBalance,
    BirkBaker,
    BirkParameters,
    BlockInfo,
    BlockSummary,
    ConsensusStatus,
    NodeInfo,
    PeerStats,
)
from bakerd.storage.database import Database
from bakerd.storage.store import Store

SEED_HEIGHT = 100
SEED_SLOT_MS = 1_651_978_740_000
SLOT_MS = 2_000


def block_hash(height: int) -> str:
    """Deterministic 64-hex block hash for a height."""
    return f"{height:064x}"


class FakeNode(NodeClient):
    """In-memory chain answering the node queries used by the daemon.

    Failures are injected per method name through ``failures``.
    """

    def __init__(self) -> None:
        self.finalized_height = SEED_HEIGHT
        self.hashes: dict[int, list[str]] = {SEED_HEIGHT: [block_hash(SEED_HEIGHT)]}
        self.infos: dict[str, BlockInfo] = {}
        self.summaries: dict[str, BlockSummary] = {}
        self.balances: dict[tuple[str, str], AccountBalance] = {}
        self.birk: dict[str, BirkParameters] = {}
        self.birk_unavailable: set[str] = set()
        self.failures: dict[str, Exception] = {}
        self.calls: list[tuple] = []

    def add_block(
        self,
        height: int,
        rewards: list[tuple[str, str, RewardKind]] | None = None,
        balances: dict[str, tuple[str, str]] | None = None,
        lottery: dict[str, str] | None = None,
        baker: int | None = 1,
        finalize: bool = True,
    ) -> str:
        """Append a block and make the node report it.

        ``rewards`` are (address, amount, kind), ``balances`` map an address to
        (available, staked) and ``lottery`` an address to its lottery power.
        """
        h = block_hash(height)
        slot_ms = SEED_SLOT_MS + (height - SEED_HEIGHT) * SLOT_MS
        self.hashes[height] = [h]
        self.infos[h] = BlockInfo(hash=h, height=height, slot_time_ms=slot_ms, baker=baker, finalized=True)
        self.summaries[h] = BlockSummary(
            reward_events=[
                RewardEvent(address, Decimal(amount), slot_ms, kind)
                for address, amount, kind in rewards or []
            ]
        )
        for address, (available, staked) in (balances or {}).items():
            self.balances[(h, address)] = AccountBalance(Decimal(available), Decimal(staked))
        self.birk[h] = BirkParameters(
            bakers=[
                BirkBaker(account=address, baker_id=i, lottery_power=Decimal(power))
                for i, (address, power) in enumerate((lottery or {}).items())
            ]
        )
        if finalize:
            self.finalized_height = max(self.finalized_height, height)
        return h

    def _enter(self, method: str, *args: object) -> None:
        self.calls.append((method, *args))
        if method in self.failures:
            raise self.failures[method]

    async def connect(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def get_consensus_status(self) -> ConsensusStatus:
        self._enter("get_consensus_status")
        return ConsensusStatus(
            last_finalized_block=block_hash(self.finalized_height),
            last_finalized_height=self.finalized_height,
        )

    async def get_blocks_at_height(self, height: int) -> list[str]:
        self._enter("get_blocks_at_height", height)
        return list(self.hashes.get(height, []))

    async def get_block_info(self, block_hash: str) -> BlockInfo:
        self._enter("get_block_info", block_hash)
        return self.infos[block_hash]

    async def get_block_summary(self, block_hash: str, slot_time_ms: int) -> BlockSummary:
        self._enter("get_block_summary", block_hash)
        return self.summaries.get(block_hash, BlockSummary(reward_events=[]))

    async def get_account_info(self, block_hash: str, address: str) -> AccountBalance | None:
        self._enter("get_account_info", block_hash, address)
        return self.balances.get((block_hash, address))

    async def get_birk_parameters(self, block_hash: str) -> BirkParameters:
        self._enter("get_birk_parameters", block_hash)
        if block_hash in self.birk_unavailable:
            raise NodeUnavailableError(f"GetBirkParameters: timeout for {block_hash}")
        return self.birk.get(block_hash, BirkParameters(bakers=[]))

    async def get_node_info(self) -> NodeInfo:
        self._enter("get_node_info")
        return NodeInfo(
            node_id="b5fa7d4d0c8ef3e4",
            baker_id=7,
            is_baker_committee=True,
            is_finalizer_committee=False,
            peer_type="Node",
        )

    async def get_peer_uptime(self) -> int:
        self._enter("get_peer_uptime")
        return 250

    async def get_peer_stats(self) -> PeerStats:
        self._enter("get_peer_stats")
        return PeerStats(peer_count=2, avg_latency=15.0)


@pytest.fixture
def ingestion_settings() -> IngestionSettings:
    """Seed at a low height so tests can build short chains on top of it."""
    return IngestionSettings(
        seed_height=SEED_HEIGHT,
        seed_hash=block_hash(SEED_HEIGHT),
        seed_slot_time_ms=SEED_SLOT_MS,
        seed_baker=2,
        max_blocks_per_run=1000,
    )


@pytest.fixture
def mock_settings(tmp_path, ingestion_settings) -> AppSettings:
    """Return AppSettings with a temporary database and a local node."""
    return AppSettings(
        log_level="DEBUG",
        node=NodeSettings(uri="http://node.test:10000", token="test-token", timeout=1.0),  # type: ignore[arg-type]
        storage=StorageSettings(db_path=str(tmp_path / "bakerd.db")),
        ingestion=ingestion_settings,
    )


@pytest_asyncio.fixture
async def database(tmp_path):
    db = Database(str(tmp_path / "bakerd.db"))
    await db.connect()
    yield db
    await db.close()


@pytest.fixture
def store(database) -> Store:
    return Store(database)


@pytest.fixture
def node() -> FakeNode:
    return FakeNode()


@pytest.fixture
def reconciler(node, store) -> ReconciliationEngine:
    return ReconciliationEngine(node, store)


@pytest.fixture
def pipeline(node, store, reconciler, ingestion_settings) -> IngestionPipeline:
    return IngestionPipeline(node, store, reconciler, ingestion_settings)
