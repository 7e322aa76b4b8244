"""Block ingestion pipeline -- walks finalized heights into the local store.

Each run reads the persisted watermark W, asks the node for the last finalized
height F and ingests heights W+1..min(F, W+max_blocks_per_run) in strictly
increasing order. For every height, all node queries are issued first and the
results are then committed in a single transaction together with the new
watermark: either the whole height is stored or none of it is.

A run stops at the first failure. Heights committed before the failure stay
committed and the next run resumes from the advanced watermark, so restarts
and retries never duplicate or skip a height.
"""

from collections.abc import Iterator
from dataclasses import dataclass, field

from bakerd.config import IngestionSettings
from bakerd.exceptions import AmbiguousHeightError, MalformedResponseError, NodeError
from bakerd.ingestion.reconciliation import ReconciliationEngine
from bakerd.logging import get_logger
from bakerd.models import Block, Watermark
from bakerd.node.client import NodeClient
from bakerd.storage.store import Store

logger = get_logger(__name__)


@dataclass
class HeightCursor:
    """Restartable cursor over an inclusive range of heights.

    ``position`` is the next height to ingest. It only moves past a height
    once the consumer asks for the next one, i.e. after the height was
    committed, so a cursor rebuilt from the stored watermark always resumes
    where the previous one stopped.
    """

    start: int
    end: int
    position: int = field(init=False)

    def __post_init__(self) -> None:
        self.position = self.start

    @classmethod
    def after(cls, watermark: Watermark, finalized_height: int, max_blocks: int) -> "HeightCursor":
        return cls(
            start=watermark.height + 1,
            end=min(finalized_height, watermark.height + max_blocks),
        )

    @property
    def remaining(self) -> int:
        return max(0, self.end - self.position + 1)

    def __iter__(self) -> Iterator[int]:
        while self.position <= self.end:
            height = self.position
            yield height
            self.position = height + 1


@dataclass(frozen=True)
class IngestionReport:
    """Outcome of one pipeline run."""

    start_height: int
    target_height: int
    processed: int
    watermark: Watermark

    @property
    def reached_target(self) -> bool:
        return self.watermark.height >= self.target_height


class IngestionPipeline:
    """Brings the stored blocks up to date with the node's finalized chain.

    Args:
        node: Node query client.
        store: Local store.
        reconciler: Account reconciliation engine.
        settings: Seed block and per-run limits.
    """

    name = "block_fetcher"

    def __init__(
        self,
        node: NodeClient,
        store: Store,
        reconciler: ReconciliationEngine,
        settings: IngestionSettings,
    ) -> None:
        self._node = node
        self._store = store
        self._reconciler = reconciler
        self._settings = settings

    async def execute(self) -> None:
        """Job entry point for the scheduler."""
        await self.run()

    async def run(self) -> IngestionReport:
        """Ingest every finalized height above the watermark, up to the per-run limit."""
        watermark = await self.ensure_watermark()

        try:
            await self._reconciler.settle_pending(watermark)
        except NodeError as e:
            logger.warning("settle_pending_failed", height=watermark.height, error=str(e))

        status = await self._node.get_consensus_status()
        finalized = status.last_finalized_height
        if watermark.height >= finalized:
            logger.debug("ingestion_up_to_date", height=watermark.height, finalized=finalized)
            return IngestionReport(
                start_height=watermark.height + 1,
                target_height=finalized,
                processed=0,
                watermark=watermark,
            )

        cursor = HeightCursor.after(watermark, finalized, self._settings.max_blocks_per_run)
        processed = 0
        try:
            for height in cursor:
                ingested = await self.ingest_height(height)
                if ingested is None:
                    logger.info("block_not_yet_available", height=height)
                    break
                watermark = ingested
                processed += 1
        except Exception:
            logger.info(
                "ingestion_run_aborted",
                processed=processed,
                watermark=watermark.height,
                failed_height=cursor.position,
            )
            raise

        report = IngestionReport(
            start_height=cursor.start,
            target_height=cursor.end,
            processed=processed,
            watermark=watermark,
        )
        logger.info(
            "ingestion_run_complete",
            start_height=report.start_height,
            target_height=report.target_height,
            finalized=finalized,
            processed=processed,
            watermark=watermark.height,
            reached_target=report.reached_target,
        )
        return report

    async def ensure_watermark(self) -> Watermark:
        """Return the stored watermark, bootstrapping it on first start.

        The bootstrap watermark is the highest stored block, or the configured
        seed block when the store is empty (the seed is then stored too).
        """
        watermark = await self._store.get_watermark()
        if watermark is not None:
            return watermark

        async with self._store.transaction():
            watermark = await self._store.get_watermark()
            if watermark is None:
                block = await self._store.get_last_block()
                if block is None:
                    block = self._seed_block()
                    await self._store.upsert_block(block)
                watermark = Watermark(height=block.height, block_hash=block.hash)
                await self._store.set_watermark(watermark)

        logger.info("watermark_bootstrapped", height=watermark.height, block_hash=watermark.block_hash)
        return watermark

    async def ingest_height(self, height: int) -> Watermark | None:
        """Fetch and commit one height.

        Returns the watermark after the commit, or None when the node has no
        block at this height yet. Re-ingesting a committed height leaves the
        store unchanged.
        """
        hashes = await self._node.get_blocks_at_height(height)
        if not hashes:
            return None
        if len(hashes) > 1:
            raise AmbiguousHeightError(height, hashes)
        block_hash = hashes[0]

        info = await self._node.get_block_info(block_hash)
        if info.height != height or info.hash != block_hash:
            raise MalformedResponseError(
                f"BlockInfo: asked for {block_hash} at height {height}, "
                f"got {info.hash} at height {info.height}"
            )
        if not info.finalized:
            raise MalformedResponseError(
                f"BlockInfo: block {block_hash} at height {height} is not finalized"
            )

        block = info.to_block()
        summary = await self._node.get_block_summary(block_hash, block.slot_time_ms)
        updates = await self._reconciler.prepare(block, summary.recipients)

        watermark = Watermark(height=height, block_hash=block_hash)
        async with self._store.transaction():
            await self._store.upsert_block(block)

            account_ids: dict[str, int] = {}
            rewards = 0
            for event in summary.reward_events:
                if event.account not in account_ids:
                    account_ids[event.account] = await self._store.upsert_account(event.account)
                if await self._store.insert_reward(account_ids[event.account], block_hash, event):
                    rewards += 1

            await self._reconciler.apply(updates)

            current = await self._store.get_watermark()
            if current is None or height >= current.height:
                await self._store.set_watermark(watermark)
            else:
                watermark = current

        logger.info(
            "block_ingested",
            height=height,
            hash=block_hash,
            baker=block.baker,
            rewards=rewards,
            accounts=len(updates),
            pending=sum(1 for u in updates if u.lottery_power is None),
        )
        return watermark

    def _seed_block(self) -> Block:
        return Block(
            height=self._settings.seed_height,
            hash=self._settings.seed_hash,
            slot_time_ms=self._settings.seed_slot_time_ms,
            baker=self._settings.seed_baker,
        )
