"""
Database wrapper for the checkpoint engine.

This module provides a thin wrapper around aiosqlite. All statements share one
connection guarded by a lock; ``transaction()`` holds that lock for the whole
transaction so no other statement can interleave with it.
"""

import aiosqlite
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional, List, AsyncIterator, Union
import asyncio

from ..utils.errors import DatabaseError
from ..utils.logging import get_logger


logger = get_logger("checkpoint-cms.storage.database")


class Database:
    """Async SQLite database wrapper."""

    def __init__(
        self,
        db_path: Union[Path, str],
        timeout: float = 30.0,
        journal_mode: str = "WAL",
        synchronous: str = "NORMAL"
    ):
        """
        Initialize database wrapper.

        Args:
            db_path: Path to SQLite database file
            timeout: Seconds to wait on a locked database
            journal_mode: SQLite journal mode
            synchronous: SQLite synchronous setting
        """
        self.db_path = Path(db_path)
        self.timeout = timeout
        self.journal_mode = journal_mode
        self.synchronous = synchronous
        self._connection: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    async def connect(self) -> None:
        """Open database connection."""
        if self._connection is not None:
            return
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._connection = await aiosqlite.connect(
                self.db_path,
                timeout=self.timeout,
                isolation_level=None  # Autocommit; transactions are explicit
            )
            await self._connection.execute(f"PRAGMA journal_mode={self.journal_mode}")
            await self._connection.execute(f"PRAGMA synchronous={self.synchronous}")
        except aiosqlite.Error as e:
            self._connection = None
            raise DatabaseError(f"Failed to open database {self.db_path}: {e}", cause=e) from e
        logger.debug("database_connected", path=str(self.db_path))

    async def close(self) -> None:
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    async def _ensure_connection(self) -> aiosqlite.Connection:
        if self._connection is None:
            await self.connect()
        return self._connection

    async def execute(self, sql: str, parameters: tuple = ()) -> aiosqlite.Cursor:
        """
        Execute SQL statement.

        Args:
            sql: SQL statement
            parameters: Query parameters

        Returns:
            Cursor object
        """
        async with self._lock:
            connection = await self._ensure_connection()
            try:
                return await connection.execute(sql, parameters)
            except aiosqlite.Error as e:
                raise DatabaseError(f"Statement failed: {e}", cause=e) from e

    async def executemany(self, sql: str, parameters: List[tuple]) -> aiosqlite.Cursor:
        """Execute SQL statement with multiple parameter sets."""
        async with self._lock:
            connection = await self._ensure_connection()
            try:
                return await connection.executemany(sql, parameters)
            except aiosqlite.Error as e:
                raise DatabaseError(f"Statement failed: {e}", cause=e) from e

    async def executescript(self, script: str) -> None:
        """Execute a multi-statement script (schema creation)."""
        async with self._lock:
            connection = await self._ensure_connection()
            try:
                await connection.executescript(script)
            except aiosqlite.Error as e:
                raise DatabaseError(f"Script failed: {e}", cause=e) from e

    async def fetchone(self, sql: str, parameters: tuple = ()) -> Optional[tuple]:
        """
        Execute query and fetch one result.

        Args:
            sql: SQL query
            parameters: Query parameters

        Returns:
            Single row or None
        """
        async with self._lock:
            connection = await self._ensure_connection()
            try:
                cursor = await connection.execute(sql, parameters)
                return await cursor.fetchone()
            except aiosqlite.Error as e:
                raise DatabaseError(f"Query failed: {e}", cause=e) from e

    async def fetchall(self, sql: str, parameters: tuple = ()) -> List[tuple]:
        """
        Execute query and fetch all results.

        Args:
            sql: SQL query
            parameters: Query parameters

        Returns:
            List of rows
        """
        async with self._lock:
            connection = await self._ensure_connection()
            try:
                cursor = await connection.execute(sql, parameters)
                return list(await cursor.fetchall())
            except aiosqlite.Error as e:
                raise DatabaseError(f"Query failed: {e}", cause=e) from e

    @asynccontextmanager
    async def transaction(self, immediate: bool = True) -> AsyncIterator[aiosqlite.Connection]:
        """
        Run statements atomically.

        Yields the raw connection. Everything executed on it commits together,
        or rolls back if the block raises. SQLite errors raised inside the
        block surface as ``DatabaseError``.
        """
        async with self._lock:
            connection = await self._ensure_connection()
            try:
                await connection.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
            except aiosqlite.Error as e:
                raise DatabaseError(f"Failed to begin transaction: {e}", cause=e) from e
            try:
                yield connection
            except aiosqlite.Error as e:
                await connection.rollback()
                raise DatabaseError(f"Transaction failed: {e}", cause=e) from e
            except BaseException:
                await connection.rollback()
                raise
            try:
                await connection.commit()
            except aiosqlite.Error as e:
                await connection.rollback()
                raise DatabaseError(f"Commit failed: {e}", cause=e) from e

    @property
    def connection(self) -> Optional[aiosqlite.Connection]:
        """Get raw connection object."""
        return self._connection

    async def __aenter__(self):
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()
