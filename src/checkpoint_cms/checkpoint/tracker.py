"""
Change tracking.

Buffers uncommitted edits per context. Every edit is validated before the
pending change set is touched, and the set keeps these rules:

- a key is in at most one of modified, added and deleted
- deleting a key drops any pending modification of it
- a key that was added stays in added, however often it is edited
- record kinds merge updates field by field; text replaces the value
"""

from typing import Any, Dict, Iterable, Optional, Set
import copy

from ..models import (
    ChangeOp,
    ContentKind,
    EntityKey,
    PendingChangeSet,
    PendingChangeSetView,
    TrackedChange,
)
from ..utils.errors import ValidationError
from ..utils.logging import get_logger
from ..utils.notifications import EventBus, EventCategory
from ..utils.validators import ContentValidator, context_name_validator, entity_id_validator


logger = get_logger("checkpoint-cms.checkpoint.tracker")


def merge_value(kind: ContentKind, existing: Any, update: Any) -> Any:
    """Apply ``update`` on top of ``existing`` for the given kind."""
    if kind.is_record:
        merged = copy.deepcopy(existing) if isinstance(existing, dict) else {}
        merged.update(copy.deepcopy(update))
        return merged
    return copy.deepcopy(update)


class ChangeTracker:
    """Holds one PendingChangeSet per context."""

    def __init__(
        self,
        validator: Optional[ContentValidator] = None,
        events: Optional[EventBus] = None
    ):
        self.validator = validator
        self.events = events
        self._sets: Dict[str, PendingChangeSet] = {}
        self._failed: Dict[str, Set[EntityKey]] = {}
        self._context_validator = context_name_validator()
        self._id_validator = entity_id_validator()

    async def track_change(
        self,
        context: str,
        kind: Any,
        entity_id: str,
        old_value: Any = None,
        new_value: Any = None,
        op: Any = ChangeOp.UPDATE,
        metadata: Optional[Dict[str, Any]] = None
    ) -> PendingChangeSetView:
        """
        Merge one edit into the context's pending change set.

        Args:
            context: Editing context (page)
            kind: ContentKind or its value
            entity_id: Entity id; for ``create`` a provisional id chosen by the caller
            old_value: Value before the edit, kept in the change log only
            new_value: Full value (create, text update) or partial record update
            op: ChangeOp or its value
            metadata: Free-form caller data stored in the change log

        Returns:
            Read-only view of the updated change set

        Raises:
            ValidationError: If the edit is invalid. The change set is unchanged.
        """
        try:
            kind = ContentKind.parse(kind)
        except ValueError as e:
            raise ValidationError("kind", kind, "must be a known content kind") from e
        try:
            op = ChangeOp.parse(op)
        except ValueError as e:
            raise ValidationError("op", op, "must be one of update, create, delete, undelete") from e

        self._context_validator.validate(context)
        self._id_validator.validate(entity_id)

        if op in (ChangeOp.UPDATE, ChangeOp.CREATE):
            if new_value is None:
                raise ValidationError("new_value", new_value, f"{op.value} requires a value")
            if self.validator is not None:
                self.validator.validate(kind.value, new_value)

        key: EntityKey = (kind, entity_id)
        existing = self._sets.get(context)
        location = existing.location_of(key) if existing else None

        if op is ChangeOp.UPDATE and location == "deleted":
            raise ValidationError("id", entity_id, "entity is marked for deletion; undelete it first")
        if op is ChangeOp.CREATE and location in ("modified", "deleted"):
            raise ValidationError("id", entity_id, "id already refers to an existing entity")

        pending = self._sets.setdefault(context, PendingChangeSet(context=context))

        if op is ChangeOp.UPDATE:
            if location == "added":
                pending.added[key] = merge_value(kind, pending.added[key], new_value)
            else:
                pending.modified[key] = merge_value(kind, pending.modified.get(key), new_value)
        elif op is ChangeOp.CREATE:
            pending.added[key] = copy.deepcopy(new_value)
        elif op is ChangeOp.DELETE:
            if location == "added":
                del pending.added[key]
            else:
                pending.modified.pop(key, None)
                pending.deleted.add(key)
        elif op is ChangeOp.UNDELETE:
            pending.deleted.discard(key)

        pending.changes.append(TrackedChange(
            context=context,
            kind=kind,
            id=entity_id,
            op=op,
            old_value=copy.deepcopy(old_value),
            new_value=copy.deepcopy(new_value),
            metadata=dict(metadata or {}),
        ))

        logger.debug(
            "change_tracked",
            context=context,
            kind=kind.value,
            entity_id=entity_id,
            op=op.value,
            pending=pending.change_count
        )

        if self.events:
            await self.events.emit(
                "change_tracked",
                EventCategory.TRACKING,
                {
                    "context": context,
                    "kind": kind.value,
                    "id": entity_id,
                    "op": op.value,
                    "pending": pending.change_count,
                },
                source="tracker"
            )

        return pending.view()

    def get_pending_change_set(self, context: str) -> PendingChangeSetView:
        """Read-only copy of the pending edits (empty when there are none)."""
        pending = self._sets.get(context)
        if pending is None:
            return PendingChangeSetView.empty(context)
        return pending.view()

    def has_pending_changes(self, context: str) -> bool:
        pending = self._sets.get(context)
        return pending is not None and not pending.is_empty()

    def clear(self, context: str) -> int:
        """Discard all pending edits for ``context``. Returns how many were dropped."""
        pending = self._sets.pop(context, None)
        self._failed.pop(context, None)
        count = pending.change_count if pending else 0
        if count:
            logger.info("pending_changes_cleared", context=context, discarded=count)
        return count

    def discard_applied(
        self,
        context: str,
        applied: PendingChangeSetView,
        succeeded: Iterable[EntityKey]
    ) -> int:
        """
        Remove entries that ``applied`` carried and that were written.

        An entry edited again after ``applied`` was taken no longer equals the
        applied value and is kept. When the set was cleared and a new editing
        session started meanwhile, nothing is removed. Returns the number of
        entries still pending.
        """
        done: Set[EntityKey] = set(succeeded)
        failed = self._failed.get(context)
        if failed is not None:
            failed -= done
            if not failed:
                del self._failed[context]

        pending = self._sets.get(context)
        if pending is None:
            return 0
        if pending.session_id != applied.session_id:
            return pending.change_count

        for key in done:
            if key in applied.modified and pending.modified.get(key) == applied.modified[key]:
                del pending.modified[key]
            elif key in applied.added and pending.added.get(key) == applied.added[key]:
                del pending.added[key]
            elif key in applied.deleted and key in pending.deleted:
                pending.deleted.discard(key)

        consumed = len(applied.changes)
        pending.changes = pending.changes[consumed:]

        if pending.is_empty():
            del self._sets[context]
            self._failed.pop(context, None)
            return 0
        return pending.change_count

    def mark_failed(self, context: str, keys: Iterable[EntityKey]) -> None:
        """Remember entries whose write failed after their version was saved."""
        keys = set(keys)
        if keys:
            self._failed.setdefault(context, set()).update(keys)

    def failed_keys(self, context: str) -> Set[EntityKey]:
        """Failed entries that are still pending."""
        pending = self._sets.get(context)
        failed = self._failed.get(context, set())
        if pending is None:
            return set()
        return {k for k in failed if pending.location_of(k) is not None}

    def contexts(self) -> Set[str]:
        """Contexts with pending edits."""
        return {ctx for ctx, pending in self._sets.items() if not pending.is_empty()}
