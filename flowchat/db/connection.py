"""Async SQLite connection wrapper with WAL mode, schema, migrations and checkpoints.

One shared connection per database. Every statement and every transaction
runs under the connection's lock, so a transaction is never interleaved with
another coroutine's reads or writes on the same handle.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager

import aiosqlite
import sqlite_vec

from flowchat.db.schema import SCHEMA_SQL, run_migrations

logger = logging.getLogger(__name__)


class Transaction:
    """Statement surface handed out inside Database.transaction()."""

    def __init__(self, connection: aiosqlite.Connection) -> None:
        self._conn = connection

    async def execute(self, sql: str, params: tuple | None = None) -> aiosqlite.Cursor:
        """Run one statement. The returned cursor is closed; only rowcount is meaningful."""
        cursor = await self._conn.execute(sql, params or ())
        await cursor.close()
        return cursor

    async def executemany(self, sql: str, params: Iterable[tuple]) -> aiosqlite.Cursor:
        cursor = await self._conn.executemany(sql, params)
        await cursor.close()
        return cursor

    async def fetchone(self, sql: str, params: tuple | None = None) -> aiosqlite.Row | None:
        async with self._conn.execute(sql, params or ()) as cursor:
            return await cursor.fetchone()

    async def fetchall(self, sql: str, params: tuple | None = None) -> list[aiosqlite.Row]:
        async with self._conn.execute(sql, params or ()) as cursor:
            return list(await cursor.fetchall())


class Database:
    """Thin async wrapper around aiosqlite with WAL mode and auto-schema."""

    def __init__(self, connection: aiosqlite.Connection) -> None:
        self._conn = connection
        self._lock = asyncio.Lock()
        self._closed = False

    @classmethod
    async def connect(cls, path: str = "flow_chat.db") -> "Database":
        """Create a connection with WAL mode, foreign keys, sqlite-vec, schema and migrations."""
        conn = await aiosqlite.connect(path)
        conn.row_factory = aiosqlite.Row
        for pragma in ("journal_mode=WAL", "foreign_keys=ON", "busy_timeout=5000"):
            async with conn.execute(f"PRAGMA {pragma}"):
                pass
        await conn.enable_load_extension(True)
        await conn.load_extension(sqlite_vec.loadable_path())
        await conn.enable_load_extension(False)
        db = cls(conn)
        await db._ensure_schema()
        await run_migrations(db)
        logger.info("Database initialized at %s", path)
        return db

    async def _ensure_schema(self) -> None:
        """Create tables if they don't exist. Idempotent."""
        async with self._locked():
            await self._conn.executescript(SCHEMA_SQL)
            await self._conn.commit()

    @asynccontextmanager
    async def _locked(self) -> AsyncIterator[None]:
        async with self._lock:
            if self._closed:
                raise StorageUnavailableError("Database connection is closed")
            try:
                yield
            except aiosqlite.IntegrityError as e:
                await self._conn.rollback()
                raise ConstraintViolationError(str(e)) from e

    async def execute(self, sql: str, params: tuple | None = None) -> aiosqlite.Cursor:
        """Execute a single SQL statement and commit.

        The cursor is closed before it is returned, so no statement stays
        open on the shared connection; rowcount is still readable.
        """
        async with self._locked():
            cursor = await self._conn.execute(sql, params or ())
            await cursor.close()
            await self._conn.commit()
            return cursor

    async def fetchone(self, sql: str, params: tuple | None = None) -> aiosqlite.Row | None:
        """Execute and return a single row."""
        async with self._locked():
            async with self._conn.execute(sql, params or ()) as cursor:
                return await cursor.fetchone()

    async def fetchall(self, sql: str, params: tuple | None = None) -> list[aiosqlite.Row]:
        """Execute and return all rows."""
        async with self._locked():
            async with self._conn.execute(sql, params or ()) as cursor:
                return list(await cursor.fetchall())

    @asynccontextmanager
    async def transaction(self, *, checkpoint: bool = False) -> AsyncIterator[Transaction]:
        """Run a block of statements as one IMMEDIATE transaction.

        Commits when the block exits normally, rolls back on any exception.
        With checkpoint=True the WAL is checkpointed after the commit, before
        the lock is released.
        """
        async with self._locked():
            async with self._conn.execute("BEGIN IMMEDIATE"):
                pass
            try:
                yield Transaction(self._conn)
            except BaseException:
                await self._conn.rollback()
                raise
            await self._conn.commit()
            if checkpoint:
                await self._checkpoint()

    async def checkpoint(self) -> None:
        """Force the write-ahead log into the main database file."""
        async with self._locked():
            await self._checkpoint()

    async def _checkpoint(self) -> None:
        # The pragma returns a status row; the cursor must be drained and
        # closed or a later VACUUM sees a statement in progress.
        async with self._conn.execute("PRAGMA wal_checkpoint(FULL)") as cursor:
            await cursor.fetchall()

    async def backup(self, target_path: str) -> None:
        """Copy the whole database into a new file (an opaque archive for backup tooling).

        target_path must not exist yet.
        """
        async with self._locked():
            async with self._conn.execute("VACUUM INTO ?", (str(target_path),)):
                pass

    async def close(self) -> None:
        """Close the database connection."""
        async with self._lock:
            if self._closed:
                return
            self._closed = True
            await self._conn.close()
            logger.info("Database closed")


class DatabaseHandle:
    """Shared handle whose Database becomes available once initialize() completes.

    Callers that may run before startup finishes await wait_until_ready();
    get() raises StorageUnavailableError instead of blocking.
    """

    def __init__(self) -> None:
        self._db: Database | None = None
        self._ready = asyncio.Event()
        self._init_lock = asyncio.Lock()

    @property
    def is_ready(self) -> bool:
        return self._db is not None

    async def initialize(self, path: str = "flow_chat.db") -> Database:
        async with self._init_lock:
            if self._db is not None:
                logger.warning("Database connection already initialized")
                return self._db
            self._db = await Database.connect(path)
            self._ready.set()
            return self._db

    async def wait_until_ready(self) -> Database:
        await self._ready.wait()
        if self._db is None:
            raise StorageUnavailableError("Database closed while waiting")
        return self._db

    def get(self) -> Database:
        if self._db is None:
            raise StorageUnavailableError("Database not initialized")
        return self._db

    async def close(self) -> None:
        if self._db is None:
            return
        await self._db.close()
        self._db = None
        self._ready.clear()


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class StorageError(Exception):
    """Base class for failures reported by the storage layer."""


class StorageUnavailableError(StorageError):
    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Storage unavailable: {reason}")


class ConstraintViolationError(StorageError):
    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"Constraint violation: {detail}")
