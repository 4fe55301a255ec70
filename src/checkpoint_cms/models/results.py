"""
Result types returned by save and restore.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .content import ContentKind


@dataclass
class EntityWriteStatus:
    """Outcome of writing one entity to the content store."""
    kind: ContentKind
    id: str
    op: str
    ok: bool
    error: Optional[str] = None
    assigned_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        result = {
            "kind": self.kind.value,
            "id": self.id,
            "op": self.op,
            "ok": self.ok,
        }
        if self.error is not None:
            result["error"] = self.error
        if self.assigned_id is not None:
            result["assigned_id"] = self.assigned_id
        return result


@dataclass
class SaveResult:
    """Outcome of a save."""
    context: str
    version_number: Optional[int]
    change_count: int
    description: Optional[str] = None
    statuses: List[EntityWriteStatus] = field(default_factory=list)
    pruned: List[int] = field(default_factory=list)
    prune_error: Optional[str] = None

    @property
    def nothing_to_save(self) -> bool:
        return self.version_number is None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "context": self.context,
            "version_number": self.version_number,
            "change_count": self.change_count,
            "nothing_to_save": self.nothing_to_save,
            "description": self.description,
            "statuses": [s.to_dict() for s in self.statuses],
            "pruned": self.pruned,
            "prune_error": self.prune_error,
        }


@dataclass
class RestoreResult:
    """Outcome of a restore."""
    context: str
    version_number: int
    elements_restored: int
    elements_removed: int
    elapsed_ms: float
    from_cache: bool
    content_hash: str
    discarded_changes: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "context": self.context,
            "version_number": self.version_number,
            "elements_restored": self.elements_restored,
            "elements_removed": self.elements_removed,
            "elapsed_ms": round(self.elapsed_ms, 3),
            "from_cache": self.from_cache,
            "content_hash": self.content_hash,
            "discarded_changes": self.discarded_changes,
        }
