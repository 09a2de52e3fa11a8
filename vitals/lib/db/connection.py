"""SQLite connections for the registry, alert and reading tables.

The ingest service calls init_db() at startup and every get_db() then shares
one long-lived connection, so a burst of readings never pays for reconnects.
The web server never calls it; its requests borrow connections from a small
pool instead. close_db() shuts down whichever is open.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from functools import cache
from pathlib import Path
from typing import Any, cast

import aiosqlite

from vitals.lib.config import get_settings
from vitals.lib.db.types import SQLParams
from vitals.lib.exceptions import DatabaseError, DatabaseNotConnectedError
from vitals.logging import get_logger

_logger = get_logger("lib.db")

# SQL templates directory
SQL_DIR = Path(__file__).resolve().parent.parent / "sql"

# Schema templates, applied in order by init_db()
SCHEMA_TEMPLATES = (
    "init_device_table.sql",
    "init_sensor_setting_table.sql",
    "init_alert_table.sql",
    "init_reading_table.sql",
)


@cache
def load_template(name: str) -> str:
    """Load and cache a SQL template file.

    Raises:
        FileNotFoundError: If the template file does not exist, with a message
            indicating the expected location.
    """
    path = SQL_DIR / name
    if not path.exists():
        raise FileNotFoundError(f"SQL template not found: {path}")
    return path.read_text()


def _dict_factory(
    cursor: aiosqlite.Cursor, row: tuple[Any, ...]
) -> dict[str, Any]:
    """Convert a row to a dictionary using column names."""
    desc: tuple[Any, ...] = cursor.description or ()
    return {col[0]: row[idx] for idx, col in enumerate(desc)}


class Database:
    """One aiosqlite connection returning rows as dicts.

    Writes commit immediately unless they run inside transaction().
    """

    def __init__(self, db_path: str | None = None):
        self._db_path = db_path or get_settings().db_path
        self._connection: aiosqlite.Connection | None = None
        self._in_transaction = False
        self._transaction_lock = asyncio.Lock()

    async def connect(self) -> None:
        """Open the database connection."""
        if self._connection is None:
            self._connection = await aiosqlite.connect(
                self._db_path,
                timeout=get_settings().db_timeout_sec,
            )
            self._connection.row_factory = _dict_factory  # type: ignore[assignment]

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Context manager for database transactions.

        All operations within the context are committed together on success,
        or rolled back if an exception occurs. Transactions on the same
        connection are serialized.

        Usage:
            async with db.transaction():
                await db.execute("INSERT INTO ...")
                await db.execute("INSERT INTO ...")
        """
        if self._connection is None:
            raise DatabaseNotConnectedError()
        async with self._transaction_lock:
            self._in_transaction = True
            await self._connection.execute("BEGIN")
            try:
                yield
                await self._connection.commit()
            except Exception:
                await self._connection.rollback()
                raise
            finally:
                self._in_transaction = False

    async def execute(self, sql: str, params: SQLParams = ()) -> int:
        """Execute a SQL statement.

        Auto-commits unless inside a transaction() context.

        Returns:
            Number of rows affected by the statement.
        """
        if self._connection is None:
            raise DatabaseNotConnectedError()
        cursor = await self._connection.execute(sql, params)
        if not self._in_transaction:
            await self._connection.commit()
        return cursor.rowcount

    async def insert(self, sql: str, params: SQLParams = ()) -> int:
        """Execute an INSERT and return the new row id.

        Auto-commits unless inside a transaction() context.
        """
        if self._connection is None:
            raise DatabaseNotConnectedError()
        cursor = await self._connection.execute(sql, params)
        if not self._in_transaction:
            await self._connection.commit()
        if cursor.lastrowid is None:
            raise DatabaseError("Insert did not produce a row id")
        return cursor.lastrowid

    async def executemany(
        self, sql: str, params_seq: Sequence[SQLParams]
    ) -> None:
        """Execute a SQL statement with multiple parameter sets.

        Auto-commits unless inside a transaction() context.
        """
        if self._connection is None:
            raise DatabaseNotConnectedError()
        await self._connection.executemany(sql, params_seq)
        if not self._in_transaction:
            await self._connection.commit()

    async def executescript(self, sql: str) -> None:
        """Execute multiple SQL statements."""
        if self._connection is None:
            raise DatabaseNotConnectedError()
        await self._connection.executescript(sql)

    async def fetchone(
        self, sql: str, params: SQLParams = ()
    ) -> dict[str, Any] | None:
        """Fetch a single row."""
        if self._connection is None:
            raise DatabaseNotConnectedError()
        async with self._connection.execute(sql, params) as cursor:
            row = await cursor.fetchone()
            return cast(dict[str, Any] | None, row)

    async def fetchall(
        self, sql: str, params: SQLParams = ()
    ) -> list[dict[str, Any]]:
        """Fetch all rows."""
        if self._connection is None:
            raise DatabaseNotConnectedError()
        async with self._connection.execute(sql, params) as cursor:
            rows = await cursor.fetchall()
            return cast(list[dict[str, Any]], rows)


class ConnectionPool:
    """Connections shared by web requests, at most max_size open at once."""

    def __init__(self, max_size: int = 5) -> None:
        self._max_size = max_size
        self._connections: list[Database] = []
        self._semaphore: asyncio.Semaphore | None = None

    def _get_semaphore(self) -> asyncio.Semaphore:
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self._max_size)
        return self._semaphore

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[Database]:
        """Borrow a connection, opening one if none is idle."""
        async with self._get_semaphore():
            conn = self._connections.pop() if self._connections else Database()
            try:
                if conn._connection is None:
                    await conn.connect()
                yield conn
            except Exception:
                # Reconnects on its next use
                await conn.close()
                raise
            finally:
                self._connections.append(conn)

    async def close(self) -> None:
        """Close every idle connection; the pool stays usable."""
        for conn in self._connections:
            await conn.close()
        count = len(self._connections)
        self._connections = []
        self._semaphore = None
        if count:
            _logger.info("Closed %d pooled connections", count)


# Module singletons
_persistent: Database | None = None
_pool = ConnectionPool()


@asynccontextmanager
async def get_db() -> AsyncIterator[Database]:
    """Get a database connection.

    Uses persistent connection if init_db() was called, otherwise uses pool.
    """
    if _persistent is not None:
        yield _persistent
    else:
        async with _pool.acquire() as db:
            yield db


async def create_schema(db: Database) -> None:
    """Create all tables and indexes if they do not exist yet."""
    for name in SCHEMA_TEMPLATES:
        await db.executescript(load_template(name))


async def init_db() -> None:
    """Initialize database with persistent connection and schema.

    Call this once at startup for the ingest service. For the web server
    (no init_db), get_db() uses the connection pool instead.
    """
    global _persistent
    if _persistent is None:
        _persistent = Database()
        await _persistent.connect()
        _logger.info(
            "Opened persistent database connection: %s", get_settings().db_path
        )

    # Lets the web server read while the ingest service writes
    await _persistent.execute("PRAGMA journal_mode=WAL")
    await create_schema(_persistent)


async def close_db() -> None:
    """Close the persistent connection and connection pool."""
    global _persistent
    if _persistent is not None:
        await _persistent.close()
        _logger.info("Closed persistent database connection")
        _persistent = None

    await _pool.close()
