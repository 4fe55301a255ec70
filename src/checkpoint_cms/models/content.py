"""
Content models.

This module defines live content entities, the immutable snapshots captured
from them, and the numbered versions that hold those snapshots.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple
from enum import Enum
import copy
import hashlib
import json


class ContentKind(Enum):
    """Kinds of tracked content, in snapshot order."""
    TEXT = "text"
    TEAM_MEMBER = "team_member"
    LISTING = "listing"
    MEDIA = "media"

    @property
    def is_record(self) -> bool:
        """Record kinds hold objects and merge partial updates field by field."""
        return self is not ContentKind.TEXT

    @property
    def order(self) -> int:
        return _KIND_ORDER[self]

    @classmethod
    def parse(cls, value: Any) -> 'ContentKind':
        if isinstance(value, cls):
            return value
        return cls(value)


_KIND_ORDER = {kind: index for index, kind in enumerate(ContentKind)}

RECORD_KINDS = [kind.value for kind in ContentKind if kind.is_record]

EntityKey = Tuple[ContentKind, str]


def canonical_json(data: Any) -> str:
    """Serialize with sorted keys and no insignificant whitespace."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


@dataclass(frozen=True)
class ContentEntity:
    """One piece of live content: a text field or a structured record."""
    context: str
    kind: ContentKind
    id: str
    value: Any
    updated_at: Optional[datetime] = field(default=None, compare=False)

    @property
    def key(self) -> EntityKey:
        return (self.kind, self.id)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "context": self.context,
            "kind": self.kind.value,
            "id": self.id,
            "value": self.value,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ContentEntity':
        """Create from dictionary."""
        updated_at = data.get("updated_at")
        return cls(
            context=data["context"],
            kind=ContentKind(data["kind"]),
            id=str(data["id"]),
            value=data["value"],
            updated_at=datetime.fromisoformat(updated_at) if updated_at else None,
        )


def _sort_key(entity: ContentEntity) -> Tuple[int, str]:
    return (entity.kind.order, entity.id)


@dataclass(frozen=True)
class Snapshot:
    """
    Fully materialized, point-in-time copy of every entity in a context.

    Entities are held in a deterministic order (kind, then id) and their
    values are private deep copies, so two captures of identical content
    produce equal snapshots with equal ``content_hash``.
    """
    context: str
    entities: Tuple[ContentEntity, ...]
    captured_at: datetime = field(default_factory=datetime.utcnow, compare=False)

    @classmethod
    def build(
        cls,
        context: str,
        entities: Iterable[ContentEntity],
        captured_at: Optional[datetime] = None
    ) -> 'Snapshot':
        """Create a snapshot from arbitrary entities (copied and sorted)."""
        materialized = []
        for entity in entities:
            if entity.context != context:
                raise ValueError(
                    f"Entity {entity.kind.value}/{entity.id} belongs to "
                    f"context '{entity.context}', not '{context}'"
                )
            materialized.append(ContentEntity(
                context=context,
                kind=entity.kind,
                id=entity.id,
                value=copy.deepcopy(entity.value),
                updated_at=entity.updated_at,
            ))
        materialized.sort(key=_sort_key)
        return cls(
            context=context,
            entities=tuple(materialized),
            captured_at=captured_at or datetime.utcnow(),
        )

    def __len__(self) -> int:
        return len(self.entities)

    def keys(self) -> List[EntityKey]:
        return [e.key for e in self.entities]

    def entity_map(self) -> Dict[EntityKey, ContentEntity]:
        return {e.key: e for e in self.entities}

    def get(self, kind: ContentKind, entity_id: str) -> Optional[ContentEntity]:
        for entity in self.entities:
            if entity.kind is kind and entity.id == entity_id:
                return entity
        return None

    def values(self) -> Dict[str, Dict[str, Any]]:
        """Nested ``{kind: {id: value}}`` view, values deep-copied."""
        result: Dict[str, Dict[str, Any]] = {}
        for entity in self.entities:
            result.setdefault(entity.kind.value, {})[entity.id] = copy.deepcopy(entity.value)
        return result

    def canonical_payload(self) -> List[Dict[str, Any]]:
        """Content-only representation; timestamps do not participate."""
        return [
            {"kind": e.kind.value, "id": e.id, "value": e.value}
            for e in self.entities
        ]

    @property
    def content_hash(self) -> str:
        """SHA-256 of the canonical content payload."""
        return hashlib.sha256(
            canonical_json(self.canonical_payload()).encode("utf-8")
        ).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "context": self.context,
            "captured_at": self.captured_at.isoformat(),
            "entities": [e.to_dict() for e in self.entities],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Snapshot':
        """Create from dictionary."""
        return cls.build(
            context=data["context"],
            entities=[ContentEntity.from_dict(e) for e in data["entities"]],
            captured_at=datetime.fromisoformat(data["captured_at"]),
        )


@dataclass
class VersionSummary:
    """Version metadata without its snapshot, as returned by listings."""
    context: str
    number: int
    description: str
    created_at: datetime
    change_count: int = 0
    content_hash: Optional[str] = None
    created_by: Optional[str] = None

    @property
    def is_baseline(self) -> bool:
        return self.number == 1

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "context": self.context,
            "number": self.number,
            "description": self.description,
            "created_at": self.created_at.isoformat(),
            "change_count": self.change_count,
            "content_hash": self.content_hash,
            "is_baseline": self.is_baseline,
            "created_by": self.created_by,
        }


@dataclass
class Version:
    """A numbered checkpoint: description plus the full pre-edit snapshot."""
    context: str
    number: int
    description: str
    snapshot: Snapshot
    created_at: datetime = field(default_factory=datetime.utcnow)
    change_count: int = 0
    change_summary: Dict[str, Any] = field(default_factory=dict)
    modifications: List[Dict[str, Any]] = field(default_factory=list)
    created_by: Optional[str] = None

    @property
    def content_hash(self) -> str:
        return self.snapshot.content_hash

    @property
    def is_baseline(self) -> bool:
        return self.number == 1

    def summary(self) -> VersionSummary:
        return VersionSummary(
            context=self.context,
            number=self.number,
            description=self.description,
            created_at=self.created_at,
            change_count=self.change_count,
            content_hash=self.content_hash,
            created_by=self.created_by,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "context": self.context,
            "number": self.number,
            "description": self.description,
            "created_at": self.created_at.isoformat(),
            "change_count": self.change_count,
            "change_summary": self.change_summary,
            "modifications": self.modifications,
            "created_by": self.created_by,
            "content_hash": self.content_hash,
            "snapshot": self.snapshot.to_dict(),
        }
