"""
Checkpoint ledger.

One linear, gapless sequence of versions per context, persisted in the
``versions`` table. Version numbers are allocated inside the same
transaction that inserts the row, so a version is either fully written with
its number or not at all.

Numbering restarts at 1 once every version of a context has been deleted:
``delete_all_versions`` followed by ``create_version`` yields a new
version 1 unrelated to the old one.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
import json
import sqlite3

from ..models import Snapshot, Version, VersionSummary
from ..storage.codec import SnapshotCodec
from ..storage.database import Database
from ..utils.errors import DatabaseError, NotFoundError, PersistError
from ..utils.logging import get_logger, log_function_call


logger = get_logger("checkpoint-cms.checkpoint.store")


VERSIONS_SCHEMA = """
CREATE TABLE IF NOT EXISTS versions (
    context TEXT NOT NULL,
    number INTEGER NOT NULL,
    description TEXT NOT NULL,
    snapshot_blob BLOB NOT NULL,
    content_hash TEXT NOT NULL,
    change_count INTEGER NOT NULL DEFAULT 0,
    change_summary TEXT NOT NULL DEFAULT '{}',
    modifications TEXT NOT NULL DEFAULT '[]',
    created_by TEXT,
    created_at TEXT NOT NULL,
    PRIMARY KEY (context, number)
);

CREATE INDEX IF NOT EXISTS idx_versions_created
    ON versions(context, created_at);
"""


class CheckpointStore:
    """Durable ledger of versions."""

    def __init__(self, db: Database, codec: Optional[SnapshotCodec] = None):
        self.db = db
        self.codec = codec or SnapshotCodec()

    async def initialize(self) -> None:
        await self.db.executescript(VERSIONS_SCHEMA)

    @log_function_call(logger)
    async def create_version(
        self,
        context: str,
        snapshot: Snapshot,
        description: str,
        change_count: int = 0,
        change_summary: Optional[Dict[str, Any]] = None,
        modifications: Optional[List[Dict[str, Any]]] = None,
        created_by: Optional[str] = None
    ) -> int:
        """
        Persist ``snapshot`` as the next version of ``context``.

        ``modifications`` is the log of edits applied on top of ``snapshot``,
        as plain dictionaries.

        Returns:
            The assigned version number

        Raises:
            PersistError: Nothing was written
        """
        if snapshot.context != context:
            raise PersistError(
                f"Snapshot belongs to context '{snapshot.context}', not '{context}'"
            )

        try:
            blob = self.codec.encode(snapshot)
            summary = json.dumps(change_summary or {}, sort_keys=True, default=str)
            edits = json.dumps(modifications or [], sort_keys=True, default=str)
        except (TypeError, ValueError) as e:
            raise PersistError(f"Snapshot could not be encoded: {e}", cause=e) from e

        created_at = datetime.utcnow().isoformat()

        try:
            async with self.db.transaction() as conn:
                cursor = await conn.execute(
                    "SELECT COALESCE(MAX(number), 0) + 1 FROM versions WHERE context = ?",
                    (context,)
                )
                number = (await cursor.fetchone())[0]
                await conn.execute(
                    """
                    INSERT INTO versions (
                        context, number, description, snapshot_blob, content_hash,
                        change_count, change_summary, modifications, created_by, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        context,
                        number,
                        description,
                        blob,
                        snapshot.content_hash,
                        change_count,
                        summary,
                        edits,
                        created_by,
                        created_at,
                    )
                )
        except (DatabaseError, sqlite3.Error) as e:
            raise PersistError(
                f"Failed to persist version for context '{context}': {e}", cause=e
            ) from e

        logger.info(
            "version_created",
            context=context,
            number=number,
            description=description,
            created_by=created_by,
            entities=len(snapshot),
            blob_bytes=len(blob),
            content_hash=snapshot.content_hash
        )
        return number

    async def get_version(self, context: str, number: int) -> Snapshot:
        """
        Load the snapshot stored as ``number``.

        Raises:
            NotFoundError: If the version does not exist
        """
        return (await self.get_version_record(context, number)).snapshot

    async def get_version_record(self, context: str, number: int) -> Version:
        """Load a version with its metadata."""
        row = await self.db.fetchone(
            """
            SELECT description, snapshot_blob, change_count, change_summary, created_at,
                   modifications, created_by
            FROM versions WHERE context = ? AND number = ?
            """,
            (context, number)
        )
        if row is None:
            raise NotFoundError(context, number)

        try:
            snapshot = self.codec.decode(row[1])
        except Exception as e:
            raise DatabaseError(
                f"Version {number} of context '{context}' is unreadable: {e}", cause=e
            ) from e

        return Version(
            context=context,
            number=number,
            description=row[0],
            snapshot=snapshot,
            created_at=datetime.fromisoformat(row[4]),
            change_count=row[2],
            change_summary=json.loads(row[3]),
            modifications=json.loads(row[5]),
            created_by=row[6],
        )

    async def list_versions(self, context: str, limit: Optional[int] = None) -> List[VersionSummary]:
        """Version metadata, newest first."""
        sql = """
            SELECT number, description, created_at, change_count, content_hash, created_by
            FROM versions WHERE context = ?
            ORDER BY number DESC
        """
        params: tuple = (context,)
        if limit is not None:
            sql += " LIMIT ?"
            params = (context, limit)

        rows = await self.db.fetchall(sql, params)
        return [
            VersionSummary(
                context=context,
                number=row[0],
                description=row[1],
                created_at=datetime.fromisoformat(row[2]),
                change_count=row[3],
                content_hash=row[4],
                created_by=row[5],
            )
            for row in rows
        ]

    async def version_numbers(self, context: str) -> List[int]:
        """All version numbers of ``context``, oldest first."""
        rows = await self.db.fetchall(
            "SELECT number FROM versions WHERE context = ? ORDER BY number",
            (context,)
        )
        return [row[0] for row in rows]

    async def latest_version(self, context: str) -> Optional[int]:
        row = await self.db.fetchone(
            "SELECT MAX(number) FROM versions WHERE context = ?", (context,)
        )
        return row[0] if row else None

    async def count_versions(self, context: str) -> int:
        row = await self.db.fetchone(
            "SELECT COUNT(*) FROM versions WHERE context = ?", (context,)
        )
        return row[0] if row else 0

    async def delete_versions(self, context: str, numbers: Iterable[int]) -> int:
        """Delete specific versions atomically. Returns the number removed."""
        numbers = sorted(set(numbers))
        if not numbers:
            return 0

        async with self.db.transaction() as conn:
            cursor = await conn.executemany(
                "DELETE FROM versions WHERE context = ? AND number = ?",
                [(context, n) for n in numbers]
            )
            deleted = cursor.rowcount

        logger.info("versions_deleted", context=context, numbers=numbers, count=deleted)
        return deleted

    async def delete_all_versions(self, context: str) -> int:
        """
        Remove every version of ``context`` in one statement.

        The next ``create_version`` for the context is numbered 1 again.
        """
        cursor = await self.db.execute("DELETE FROM versions WHERE context = ?", (context,))
        deleted = cursor.rowcount
        logger.warning("all_versions_deleted", context=context, count=deleted)
        return deleted

    async def contexts(self) -> List[str]:
        rows = await self.db.fetchall("SELECT DISTINCT context FROM versions ORDER BY context")
        return [row[0] for row in rows]
