"""
Change-tracking models.

A PendingChangeSet buffers the edits made in one editing context until they
are saved. Entities are identified by ``(kind, id)`` since ids are only
unique within a kind.
"""

from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple, FrozenSet
from enum import Enum
import copy
import uuid

from .content import ContentKind, EntityKey


class ChangeOp(Enum):
    """Edit operations accepted by the tracker."""
    UPDATE = "update"
    CREATE = "create"
    DELETE = "delete"
    UNDELETE = "undelete"

    @classmethod
    def parse(cls, value: Any) -> 'ChangeOp':
        if isinstance(value, cls):
            return value
        return cls(value)


def _key_str(key: EntityKey) -> str:
    return f"{key[0].value}/{key[1]}"


@dataclass
class TrackedChange:
    """One accepted ``track_change`` call, kept for descriptions and summaries."""
    context: str
    kind: ContentKind
    id: str
    op: ChangeOp
    old_value: Any = None
    new_value: Any = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "context": self.context,
            "kind": self.kind.value,
            "id": self.id,
            "op": self.op.value,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "metadata": self.metadata,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class PendingChangeSet:
    """
    Mutable buffer of uncommitted edits for one context.

    ``modified`` maps a key to a partial update (record kinds) or a full
    replacement value (scalar kinds). ``added`` maps a provisional key to the
    full new record. ``deleted`` holds keys to soft-remove. A key lives in at
    most one of the three.
    """
    context: str
    modified: Dict[EntityKey, Any] = field(default_factory=dict)
    added: Dict[EntityKey, Any] = field(default_factory=dict)
    deleted: Set[EntityKey] = field(default_factory=set)
    changes: List[TrackedChange] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.utcnow)
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def change_count(self) -> int:
        return len(self.modified) + len(self.added) + len(self.deleted)

    def is_empty(self) -> bool:
        return self.change_count == 0

    def location_of(self, key: EntityKey) -> Optional[str]:
        if key in self.modified:
            return "modified"
        if key in self.added:
            return "added"
        if key in self.deleted:
            return "deleted"
        return None

    def view(self) -> 'PendingChangeSetView':
        """Return a read-only copy detached from further edits."""
        return PendingChangeSetView(
            context=self.context,
            modified=MappingProxyType(copy.deepcopy(self.modified)),
            added=MappingProxyType(copy.deepcopy(self.added)),
            deleted=frozenset(self.deleted),
            changes=tuple(copy.deepcopy(self.changes)),
            started_at=self.started_at,
            session_id=self.session_id,
        )


@dataclass(frozen=True)
class PendingChangeSetView:
    """Immutable view of a PendingChangeSet."""
    context: str
    modified: Mapping[EntityKey, Any]
    added: Mapping[EntityKey, Any]
    deleted: FrozenSet[EntityKey]
    changes: Tuple[TrackedChange, ...] = ()
    started_at: Optional[datetime] = None
    session_id: Optional[str] = None

    @property
    def change_count(self) -> int:
        return len(self.modified) + len(self.added) + len(self.deleted)

    def is_empty(self) -> bool:
        return self.change_count == 0

    def keys(self) -> List[EntityKey]:
        return list(self.modified) + list(self.added) + list(self.deleted)

    def restricted_to(self, keys: Set[EntityKey]) -> 'PendingChangeSetView':
        """Copy holding only entries for ``keys``, without the change log."""
        return PendingChangeSetView(
            context=self.context,
            modified=MappingProxyType({k: v for k, v in self.modified.items() if k in keys}),
            added=MappingProxyType({k: v for k, v in self.added.items() if k in keys}),
            deleted=frozenset(k for k in self.deleted if k in keys),
            started_at=self.started_at,
            session_id=self.session_id,
        )

    def summary(self) -> Dict[str, Any]:
        """Counts and keys per bucket, stored alongside saved versions."""
        return {
            "modified": sorted(_key_str(k) for k in self.modified),
            "added": sorted(_key_str(k) for k in self.added),
            "deleted": sorted(_key_str(k) for k in self.deleted),
            "edits": len(self.changes),
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "context": self.context,
            "modified": {_key_str(k): v for k, v in self.modified.items()},
            "added": {_key_str(k): v for k, v in self.added.items()},
            "deleted": sorted(_key_str(k) for k in self.deleted),
            "change_count": self.change_count,
            "changes": [c.to_dict() for c in self.changes],
        }

    @classmethod
    def empty(cls, context: str) -> 'PendingChangeSetView':
        return cls(
            context=context,
            modified=MappingProxyType({}),
            added=MappingProxyType({}),
            deleted=frozenset(),
        )
