"""Typed SQLite read/write abstraction for the daemon's local state.

Provides Store with typed methods for blocks, accounts, rewards, the ingestion
watermark, prices and status reports. All SQL is isolated behind this
interface.

Write methods only run inside ``Store.transaction()`` so that everything one
height produces (block, accounts, rewards, watermark) commits or rolls back as
a unit. Read methods may run anywhere.

CRITICAL: All amounts stored as TEXT in SQLite, restored as Decimal on read.
"""

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict
from decimal import Decimal

from bakerd.exceptions import BlockConflictError, WatermarkRegressionError
from bakerd.logging import get_logger
from bakerd.models import (
    Account,
    AccountReward,
    AccountState,
    AccountUpdate,
    Block,
    NodeStatus,
    Pair,
    Price,
    ResourceStatus,
    RewardEvent,
    RewardKind,
    StatusReport,
    Watermark,
)
from bakerd.storage.database import Database

logger = get_logger(__name__)

_COUNTABLE_TABLES = frozenset(
    {"blocks", "accounts", "account_rewards", "pairs", "prices", "statuses"}
)

_ACCOUNT_COLUMNS = (
    "id, address, available_amount, staked_amount, lottery_power, state, updated_height"
)


class Store:
    """Async SQLite store for ingested blocks and derived account state.

    Wraps Database with typed read/write methods.

    Usage:
        async with Database("data/bakerd.db") as database:
            store = Store(database)
            async with store.transaction():
                await store.upsert_block(block)
                await store.set_watermark(Watermark(block.height, block.hash))
    """

    def __init__(self, database: Database) -> None:
        self._database = database

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["Store"]:
        """Atomic boundary. Commits on success, rolls back on any exception."""
        async with self._database.transaction():
            yield self

    # ──────────────────────────────────────────────
    # Blocks
    # ──────────────────────────────────────────────

    async def upsert_block(self, block: Block) -> bool:
        """Insert a block, or do nothing if the identical block is stored.

        Returns True when a row was inserted. Raises BlockConflictError when a
        stored block has the same height or hash but different content.
        """
        rows = await self._database.fetchall(
            "SELECT height, hash, slot_time_ms, baker FROM blocks WHERE height = ? OR hash = ?",
            (block.height, block.hash),
        )
        for row in rows:
            stored = _row_to_block(row)
            if stored != block:
                raise BlockConflictError(
                    f"block {block.hash} at height {block.height} conflicts with "
                    f"stored block {stored.hash} at height {stored.height}"
                )
        if rows:
            return False

        await self._database.execute(
            "INSERT INTO blocks (height, hash, slot_time_ms, baker) VALUES (?, ?, ?, ?)",
            (block.height, block.hash, block.slot_time_ms, block.baker),
        )
        return True

    async def get_last_block(self) -> Block | None:
        """Return the stored block with the highest height."""
        row = await self._database.fetchone(
            "SELECT height, hash, slot_time_ms, baker FROM blocks ORDER BY height DESC LIMIT 1"
        )
        return _row_to_block(row) if row else None

    async def get_block(self, height: int) -> Block | None:
        row = await self._database.fetchone(
            "SELECT height, hash, slot_time_ms, baker FROM blocks WHERE height = ?",
            (height,),
        )
        return _row_to_block(row) if row else None

    async def get_blocks(
        self,
        baker: int | None = None,
        since_ms: int | None = None,
        limit: int = 100,
    ) -> list[Block]:
        """Query blocks, optionally filtered by baker and slot time.

        Returns list of Block ordered by height DESC.
        """
        conditions: list[str] = []
        params: list = []

        if baker is not None:
            conditions.append("baker = ?")
            params.append(baker)
        if since_ms is not None:
            conditions.append("slot_time_ms >= ?")
            params.append(since_ms)

        where = f"WHERE {' AND '.join(conditions)} " if conditions else ""
        params.append(limit)
        rows = await self._database.fetchall(
            f"SELECT height, hash, slot_time_ms, baker FROM blocks {where}"
            f"ORDER BY height DESC LIMIT ?",
            params,
        )
        return [_row_to_block(row) for row in rows]

    # ──────────────────────────────────────────────
    # Accounts
    # ──────────────────────────────────────────────

    async def upsert_account(self, address: str) -> int:
        """Create the account if it is unknown. Returns its id either way."""
        await self._database.execute(
            "INSERT INTO accounts (address) VALUES (?) ON CONFLICT (address) DO NOTHING",
            (address,),
        )
        row = await self._database.fetchone("SELECT id FROM accounts WHERE address = ?", (address,))
        assert row is not None
        return row[0]

    async def update_account(self, update: AccountUpdate) -> bool:
        """Write amounts, lottery power and state of an account in one statement.

        A None lottery power keeps the stored one. The update is skipped when
        the account already reflects a newer height. Returns True when written.
        """
        written = await self._database.execute(
            "UPDATE accounts SET "
            "available_amount = ?, staked_amount = ?, "
            "lottery_power = COALESCE(?, lottery_power), "
            "state = ?, updated_height = ? "
            "WHERE address = ? AND updated_height <= ?",
            (
                str(update.available_amount),
                str(update.staked_amount),
                str(update.lottery_power) if update.lottery_power is not None else None,
                update.state.value,
                update.height,
                update.address,
                update.height,
            ),
        )
        if not written:
            logger.debug("account_update_skipped", address=update.address, height=update.height)
        return written > 0

    async def get_account(self, address: str) -> Account | None:
        row = await self._database.fetchone(
            f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE address = ?", (address,)
        )
        return _row_to_account(row) if row else None

    async def get_pending_accounts(self) -> list[Account]:
        rows = await self._database.fetchall(
            f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE state = ? ORDER BY id",
            (AccountState.PENDING.value,),
        )
        return [_row_to_account(row) for row in rows]

    # ──────────────────────────────────────────────
    # Rewards
    # ──────────────────────────────────────────────

    async def insert_reward(self, account_id: int, block_hash: str, event: RewardEvent) -> bool:
        """Insert a reward, ignoring a duplicate (account, block, kind).

        Returns True when a row was inserted.
        """
        inserted = await self._database.execute(
            "INSERT INTO account_rewards (account_id, block_hash, amount, epoch_ms, kind) "
            "VALUES (?, ?, ?, ?, ?) "
            "ON CONFLICT (account_id, block_hash, kind) DO NOTHING",
            (account_id, block_hash, str(event.amount), event.epoch_ms, event.kind.value),
        )
        return inserted > 0

    async def get_rewards(self, account_id: int, limit: int = 100) -> list[AccountReward]:
        """Rewards of an account, newest first."""
        rows = await self._database.fetchall(
            "SELECT id, account_id, block_hash, amount, epoch_ms, kind FROM account_rewards "
            "WHERE account_id = ? ORDER BY epoch_ms DESC, id DESC LIMIT ?",
            (account_id, limit),
        )
        return [
            AccountReward(
                id=row[0],
                account_id=row[1],
                block_hash=row[2],
                amount=Decimal(row[3]),
                epoch_ms=row[4],
                kind=RewardKind(row[5]),
            )
            for row in rows
        ]

    # ──────────────────────────────────────────────
    # Watermark
    # ──────────────────────────────────────────────

    async def get_watermark(self) -> Watermark | None:
        row = await self._database.fetchone(
            "SELECT height, block_hash FROM ingestion_state WHERE id = 1"
        )
        return Watermark(height=row[0], block_hash=row[1]) if row else None

    async def set_watermark(self, watermark: Watermark) -> None:
        """Advance the watermark. It never moves to a lower height.

        Raises WatermarkRegressionError for a lower height and
        BlockConflictError for the same height with a different hash.
        """
        current = await self.get_watermark()
        if current is not None:
            if watermark.height < current.height:
                raise WatermarkRegressionError(
                    f"watermark would move from {current.height} back to {watermark.height}"
                )
            if watermark.height == current.height and watermark.block_hash != current.block_hash:
                raise BlockConflictError(
                    f"watermark at height {current.height} is {current.block_hash}, "
                    f"not {watermark.block_hash}"
                )

        await self._database.execute(
            "INSERT INTO ingestion_state (id, height, block_hash) VALUES (1, ?, ?) "
            "ON CONFLICT (id) DO UPDATE SET height = excluded.height, block_hash = excluded.block_hash",
            (watermark.height, watermark.block_hash),
        )

    # ──────────────────────────────────────────────
    # Prices
    # ──────────────────────────────────────────────

    async def upsert_price(self, price: Price) -> None:
        """Insert or replace the latest price of a pair, creating the pair if needed."""
        await self._database.execute(
            "INSERT INTO pairs (base, quote) VALUES (?, ?) ON CONFLICT (base, quote) DO NOTHING",
            (price.pair.base, price.pair.quote),
        )
        row = await self._database.fetchone(
            "SELECT id FROM pairs WHERE base = ? AND quote = ?",
            (price.pair.base, price.pair.quote),
        )
        assert row is not None
        await self._database.execute(
            "INSERT OR REPLACE INTO prices "
            "(pair_id, bid, ask, daily_change_relative, high, low, updated_at_ms) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                row[0],
                str(price.bid),
                str(price.ask),
                str(price.daily_change_relative),
                str(price.high),
                str(price.low),
                price.updated_at_ms,
            ),
        )

    async def get_price(self, base: str, quote: str) -> Price | None:
        row = await self._database.fetchone(
            "SELECT pairs.base, pairs.quote, bid, ask, daily_change_relative, high, low, "
            "updated_at_ms FROM prices JOIN pairs ON pairs.id = prices.pair_id "
            "WHERE pairs.base = ? AND pairs.quote = ?",
            (base.upper(), quote.upper()),
        )
        if row is None:
            return None
        return Price(
            pair=Pair(row[0], row[1]),
            bid=Decimal(row[2]),
            ask=Decimal(row[3]),
            daily_change_relative=Decimal(row[4]),
            high=Decimal(row[5]),
            low=Decimal(row[6]),
            updated_at_ms=row[7],
        )

    # ──────────────────────────────────────────────
    # Status reports
    # ──────────────────────────────────────────────

    async def insert_status(self, report: StatusReport) -> int:
        """Store a status report. Returns its id."""
        report_id = await self._database.insert(
            "INSERT INTO statuses (timestamp_ms, resources, node) VALUES (?, ?, ?)",
            (
                report.timestamp_ms,
                json.dumps(asdict(report.resources)),
                json.dumps(asdict(report.node)) if report.node is not None else None,
            ),
        )
        assert report_id is not None
        return report_id

    async def get_last_status(self) -> StatusReport | None:
        row = await self._database.fetchone(
            "SELECT timestamp_ms, resources, node FROM statuses ORDER BY id DESC LIMIT 1"
        )
        if row is None:
            return None
        return StatusReport(
            timestamp_ms=row[0],
            resources=ResourceStatus(**json.loads(row[1])),
            node=NodeStatus(**json.loads(row[2])) if row[2] is not None else None,
        )

    async def garbage_collect_statuses(self, keep: int) -> int:
        """Delete all but the ``keep`` most recent status reports.

        Returns the number of deleted reports.
        """
        deleted = await self._database.execute(
            "DELETE FROM statuses WHERE id NOT IN "
            "(SELECT id FROM statuses ORDER BY id DESC LIMIT ?)",
            (keep,),
        )
        if deleted:
            logger.debug("statuses_collected", deleted=deleted, kept=keep)
        return deleted

    # ──────────────────────────────────────────────
    # Introspection
    # ──────────────────────────────────────────────

    async def count_rows(self, table: str) -> int:
        if table not in _COUNTABLE_TABLES:
            raise ValueError(f"Unknown table: {table}")
        row = await self._database.fetchone(f"SELECT COUNT(*) FROM {table}")
        return row[0] if row else 0


def _row_to_block(row: tuple) -> Block:
    return Block(height=row[0], hash=row[1], slot_time_ms=row[2], baker=row[3])


def _row_to_account(row: tuple) -> Account:
    return Account(
        id=row[0],
        address=row[1],
        available_amount=Decimal(row[2]),
        staked_amount=Decimal(row[3]),
        lottery_power=Decimal(row[4]),
        state=AccountState(row[5]),
        updated_height=row[6],
    )
