"""
Live content storage.

``ContentStore`` is the boundary the engine consumes: it reads every active
entity of one kind for a context and writes single entities back. Writes are
upserts; writing ``TOMBSTONE`` soft-removes an entity.

``SQLiteContentStore`` keeps one row per stored revision in
``content_entities``. Legacy data may hold several active rows for the same
logical id; readers see all of them and resolve duplicates themselves.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, List, Optional, Union
import json
import uuid

from ..models import ContentEntity, ContentKind
from ..utils.logging import get_logger, log_function_call
from .database import Database


logger = get_logger("checkpoint-cms.storage.content")


class _Tombstone:
    """Marker value meaning "soft-remove this entity"."""

    _instance: Optional['_Tombstone'] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "TOMBSTONE"

    def __bool__(self) -> bool:
        return False


TOMBSTONE = _Tombstone()


class ContentStore(ABC):
    """Durable storage for live content entities."""

    async def initialize(self) -> None:
        """Prepare storage (create schema). Default is a no-op."""

    @abstractmethod
    async def read(self, context: str, kind: ContentKind) -> List[ContentEntity]:
        """Return every active row of ``kind`` in ``context``, oldest insert first."""

    @abstractmethod
    async def write(
        self,
        context: str,
        kind: ContentKind,
        entity_id: str,
        value: Union[Any, _Tombstone]
    ) -> None:
        """Upsert one entity, or soft-remove it when ``value`` is ``TOMBSTONE``."""

    @abstractmethod
    async def insert(self, context: str, kind: ContentKind, value: Any) -> str:
        """Create a new entity and return its store-assigned id."""


CONTENT_SCHEMA = """
CREATE TABLE IF NOT EXISTS content_entities (
    row_id INTEGER PRIMARY KEY AUTOINCREMENT,
    context TEXT NOT NULL,
    kind TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    active INTEGER NOT NULL DEFAULT 1
);

CREATE INDEX IF NOT EXISTS idx_content_entities_key
    ON content_entities(context, kind, entity_id);

CREATE INDEX IF NOT EXISTS idx_content_entities_active
    ON content_entities(context, kind, active);
"""


class SQLiteContentStore(ContentStore):
    """ContentStore backed by the ``content_entities`` table."""

    def __init__(self, db: Database):
        self.db = db

    async def initialize(self) -> None:
        await self.db.executescript(CONTENT_SCHEMA)

    @log_function_call(logger)
    async def read(self, context: str, kind: ContentKind) -> List[ContentEntity]:
        rows = await self.db.fetchall(
            """
            SELECT entity_id, value, updated_at FROM content_entities
            WHERE context = ? AND kind = ? AND active = 1
            ORDER BY row_id
            """,
            (context, kind.value)
        )
        return [
            ContentEntity(
                context=context,
                kind=kind,
                id=row[0],
                value=json.loads(row[1]),
                updated_at=datetime.fromisoformat(row[2]),
            )
            for row in rows
        ]

    @log_function_call(logger)
    async def write(
        self,
        context: str,
        kind: ContentKind,
        entity_id: str,
        value: Union[Any, _Tombstone]
    ) -> None:
        now = datetime.utcnow().isoformat()

        async with self.db.transaction() as conn:
            if value is TOMBSTONE:
                await conn.execute(
                    """
                    UPDATE content_entities SET active = 0, updated_at = ?
                    WHERE context = ? AND kind = ? AND entity_id = ? AND active = 1
                    """,
                    (now, context, kind.value, entity_id)
                )
                return

            encoded = json.dumps(value)
            cursor = await conn.execute(
                """
                SELECT row_id FROM content_entities
                WHERE context = ? AND kind = ? AND entity_id = ?
                ORDER BY active DESC, updated_at DESC, row_id DESC
                LIMIT 1
                """,
                (context, kind.value, entity_id)
            )
            row = await cursor.fetchone()

            if row is None:
                await conn.execute(
                    """
                    INSERT INTO content_entities
                        (context, kind, entity_id, value, updated_at, active)
                    VALUES (?, ?, ?, ?, ?, 1)
                    """,
                    (context, kind.value, entity_id, encoded, now)
                )
                return

            # One surviving row per id; older duplicates are retired
            await conn.execute(
                "UPDATE content_entities SET value = ?, updated_at = ?, active = 1 WHERE row_id = ?",
                (encoded, now, row[0])
            )
            await conn.execute(
                """
                UPDATE content_entities SET active = 0
                WHERE context = ? AND kind = ? AND entity_id = ? AND active = 1 AND row_id != ?
                """,
                (context, kind.value, entity_id, row[0])
            )

    @log_function_call(logger)
    async def insert(self, context: str, kind: ContentKind, value: Any) -> str:
        entity_id = uuid.uuid4().hex
        await self.append_row(context, kind, entity_id, value)
        logger.debug("entity_inserted", context=context, kind=kind.value, entity_id=entity_id)
        return entity_id

    async def append_row(
        self,
        context: str,
        kind: ContentKind,
        entity_id: str,
        value: Any,
        updated_at: Optional[datetime] = None
    ) -> None:
        """
        Append a raw row without touching existing rows for the same id.

        Used to import legacy data, which may contain duplicate ids.
        """
        await self.db.execute(
            """
            INSERT INTO content_entities (context, kind, entity_id, value, updated_at, active)
            VALUES (?, ?, ?, ?, ?, 1)
            """,
            (
                context,
                kind.value,
                entity_id,
                json.dumps(value),
                (updated_at or datetime.utcnow()).isoformat(),
            )
        )
