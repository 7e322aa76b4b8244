"""Async SQLite database manager for the daemon's local state.

Uses aiosqlite with WAL mode and a single connection in autocommit mode.
Transactions are explicit (BEGIN IMMEDIATE / COMMIT / ROLLBACK) and serialized
by an asyncio.Lock: a reader from another task waits for the open transaction
to finish, so uncommitted rows are never visible outside the task that owns
the transaction.

sqlite constraint violations surface as ConsistencyError, every other engine
failure as StorageError.
"""

import asyncio
import os
import sqlite3
from collections.abc import AsyncIterator, Iterable, Iterator
from contextlib import asynccontextmanager, contextmanager
from typing import Any, Self

import aiosqlite

from bakerd.exceptions import ConsistencyError, StorageError
from bakerd.logging import get_logger

logger = get_logger(__name__)

# Each migration brings the schema from version N-1 to N.
_MIGRATIONS: dict[int, str] = {
    1: """
CREATE TABLE IF NOT EXISTS blocks (
    id INTEGER PRIMARY KEY,
    height INTEGER NOT NULL UNIQUE CHECK (height >= 0),
    hash TEXT NOT NULL UNIQUE,
    slot_time_ms INTEGER NOT NULL CHECK (slot_time_ms >= 0),
    baker INTEGER NOT NULL CHECK (baker >= 0)
);

CREATE TABLE IF NOT EXISTS accounts (
    id INTEGER PRIMARY KEY,
    address TEXT NOT NULL UNIQUE,
    available_amount TEXT NOT NULL DEFAULT '0',
    staked_amount TEXT NOT NULL DEFAULT '0',
    lottery_power TEXT NOT NULL DEFAULT '0',
    state TEXT NOT NULL DEFAULT 'pending' CHECK (state IN ('settled', 'pending')),
    updated_height INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS account_rewards (
    id INTEGER PRIMARY KEY,
    account_id INTEGER NOT NULL REFERENCES accounts(id),
    block_hash TEXT NOT NULL REFERENCES blocks(hash),
    amount TEXT NOT NULL,
    epoch_ms INTEGER NOT NULL,
    kind TEXT NOT NULL,
    UNIQUE (account_id, block_hash, kind)
);

CREATE TABLE IF NOT EXISTS ingestion_state (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    height INTEGER NOT NULL,
    block_hash TEXT NOT NULL REFERENCES blocks(hash)
);

CREATE INDEX IF NOT EXISTS idx_blocks_baker_slot
    ON blocks(baker, slot_time_ms);

CREATE INDEX IF NOT EXISTS idx_accounts_state
    ON accounts(state);

CREATE INDEX IF NOT EXISTS idx_rewards_account_epoch
    ON account_rewards(account_id, epoch_ms);
""",
    2: """
CREATE TABLE IF NOT EXISTS pairs (
    id INTEGER PRIMARY KEY,
    base TEXT NOT NULL,
    quote TEXT NOT NULL,
    UNIQUE (base, quote)
);

CREATE TABLE IF NOT EXISTS prices (
    pair_id INTEGER PRIMARY KEY REFERENCES pairs(id),
    bid TEXT NOT NULL,
    ask TEXT NOT NULL,
    daily_change_relative TEXT NOT NULL,
    high TEXT NOT NULL,
    low TEXT NOT NULL,
    updated_at_ms INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS statuses (
    id INTEGER PRIMARY KEY,
    timestamp_ms INTEGER NOT NULL,
    resources TEXT NOT NULL,
    node TEXT
);
""",
}

SCHEMA_VERSION = max(_MIGRATIONS)


class Database:
    """Async SQLite connection manager with an explicit transaction boundary.

    Manages the database lifecycle including migrations, WAL mode
    configuration, and clean resource cleanup.

    Usage:
        async with Database("data/bakerd.db") as database:
            async with database.transaction():
                await database.execute("INSERT ...", (...))
            row = await database.fetchone("SELECT ...")
    """

    def __init__(self, db_path: str = "data/bakerd.db") -> None:
        self._db_path = db_path
        self._connection: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()
        self._tx_owner: asyncio.Task | None = None

    @property
    def db(self) -> aiosqlite.Connection:
        """Access the raw aiosqlite connection.

        Raises RuntimeError if not connected.
        """
        if self._connection is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._connection

    @property
    def in_transaction(self) -> bool:
        """True when the calling task owns the open transaction."""
        return self._tx_owner is not None and self._tx_owner is asyncio.current_task()

    async def connect(self) -> None:
        """Open the connection, configure pragmas, and apply pending migrations.

        Creates the parent directory if it does not exist.
        """
        db_dir = os.path.dirname(self._db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        with _translate_errors():
            self._connection = await aiosqlite.connect(self._db_path, isolation_level=None)
            await self._connection.execute("PRAGMA journal_mode=WAL")
            await self._connection.execute("PRAGMA synchronous=NORMAL")
            await self._connection.execute("PRAGMA foreign_keys=ON")

        await self._migrate()
        logger.info("database_connected", db_path=self._db_path, schema_version=SCHEMA_VERSION)

    async def close(self) -> None:
        """Close the database connection if open."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("database_closed", db_path=self._db_path)

    # ──────────────────────────────────────────────
    # Transactions
    # ──────────────────────────────────────────────

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Self]:
        """Run the enclosed statements as one atomic unit.

        Commits when the block exits normally. Rolls back on any exception,
        including task cancellation, and re-raises it.
        """
        if self.in_transaction:
            raise RuntimeError("Nested transactions are not supported")

        async with self._lock:
            self._tx_owner = asyncio.current_task()
            try:
                with _translate_errors():
                    await self.db.execute("BEGIN IMMEDIATE")
                try:
                    yield self
                except BaseException:
                    await self._rollback()
                    raise
                else:
                    try:
                        with _translate_errors():
                            await self.db.execute("COMMIT")
                    except StorageError:
                        await self._rollback()
                        raise
            finally:
                self._tx_owner = None

    async def _rollback(self) -> None:
        try:
            await self.db.execute("ROLLBACK")
        except sqlite3.Error as e:
            # No transaction left to roll back (sqlite may already have aborted it)
            logger.warning("rollback_failed", error=str(e))

    # ──────────────────────────────────────────────
    # Statements
    # ──────────────────────────────────────────────

    async def execute(self, sql: str, params: Iterable[Any] = ()) -> int:
        """Execute a write statement inside the caller's transaction.

        Returns the number of affected rows. Raises RuntimeError outside a
        transaction.
        """
        self._require_transaction()
        with _translate_errors():
            cursor = await self.db.execute(sql, tuple(params))
            return cursor.rowcount

    async def insert(self, sql: str, params: Iterable[Any] = ()) -> int | None:
        """Execute an INSERT inside the caller's transaction and return the new rowid.

        Returns None when the statement inserted nothing (conflict ignored).
        """
        self._require_transaction()
        with _translate_errors():
            cursor = await self.db.execute(sql, tuple(params))
            return cursor.lastrowid if cursor.rowcount > 0 else None

    async def fetchone(self, sql: str, params: Iterable[Any] = ()) -> tuple | None:
        async with self._reader():
            with _translate_errors():
                cursor = await self.db.execute(sql, tuple(params))
                row = await cursor.fetchone()
        return tuple(row) if row is not None else None

    async def fetchall(self, sql: str, params: Iterable[Any] = ()) -> list[tuple]:
        async with self._reader():
            with _translate_errors():
                cursor = await self.db.execute(sql, tuple(params))
                rows = await cursor.fetchall()
        return [tuple(row) for row in rows]

    @asynccontextmanager
    async def _reader(self) -> AsyncIterator[None]:
        """Readers outside the owning task wait for the open transaction."""
        if self.in_transaction:
            yield
        else:
            async with self._lock:
                yield

    def _require_transaction(self) -> None:
        if not self.in_transaction:
            raise RuntimeError("Write statements must run inside Database.transaction()")

    # ──────────────────────────────────────────────
    # Migrations
    # ──────────────────────────────────────────────

    async def schema_version(self) -> int:
        row = await self.fetchone("SELECT MAX(version) FROM schema_version")
        return row[0] if row and row[0] is not None else 0

    async def _migrate(self) -> None:
        """Apply every migration newer than the stored schema version."""
        with _translate_errors():
            await self.db.execute(
                "CREATE TABLE IF NOT EXISTS schema_version (version INTEGER PRIMARY KEY)"
            )
        current = await self.schema_version()

        for version in sorted(v for v in _MIGRATIONS if v > current):
            async with self.transaction():
                for statement in _split_statements(_MIGRATIONS[version]):
                    await self.execute(statement)
                await self.execute("INSERT INTO schema_version (version) VALUES (?)", (version,))
            logger.info("schema_migrated", version=version)

    async def __aenter__(self) -> Self:
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        """Async context manager exit."""
        await self.close()


def _split_statements(script: str) -> list[str]:
    # executescript() commits implicitly, so migrations run statement by statement
    return [s.strip() for s in script.split(";") if s.strip()]


@contextmanager
def _translate_errors() -> Iterator[None]:
    try:
        yield
    except sqlite3.IntegrityError as e:
        raise ConsistencyError(f"constraint violated: {e}") from e
    except sqlite3.Error as e:
        raise StorageError(f"storage engine failure: {e}") from e
