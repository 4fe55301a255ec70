"""
Save orchestration.

Commit protocol for one context, run under the context's single-writer lock:

    IDLE -> CAPTURING -> PERSISTING -> APPLYING -> IDLE

The version written in PERSISTING holds the live state captured just before
the pending edits are applied, so restoring it undoes exactly those edits.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple

from ..checkpoint.capture import StateCapture
from ..checkpoint.locks import ContextLocks
from ..checkpoint.pruner import Pruner
from ..checkpoint.store import CheckpointStore
from ..checkpoint.tracker import ChangeTracker, merge_value
from ..models import (
    ContentKind,
    EntityKey,
    EntityWriteStatus,
    PendingChangeSetView,
    SaveResult,
    Snapshot,
)
from ..storage.content_store import ContentStore, TOMBSTONE
from ..utils.errors import (
    ApplyError,
    CaptureError,
    CheckpointCMSError,
    PersistError,
    ValidationError,
)
from ..utils.logging import get_logger, get_metrics_logger
from ..utils.notifications import EventBus, EventCategory, EventPriority


logger = get_logger("checkpoint-cms.managers.save")

DEFAULT_DESCRIPTION_TEMPLATE = "Auto-save: {count} changes - {timestamp}"


class SaveState(Enum):
    """Save state machine."""
    IDLE = "idle"
    CAPTURING = "capturing"
    PERSISTING = "persisting"
    APPLYING = "applying"


def _ordered(keys) -> List[EntityKey]:
    return sorted(keys, key=lambda k: (k[0].order, k[1]))


class SaveOrchestrator:
    """Commits pending edits as a new version and applies them."""

    def __init__(
        self,
        capture: StateCapture,
        tracker: ChangeTracker,
        store: CheckpointStore,
        content_store: ContentStore,
        pruner: Pruner,
        locks: ContextLocks,
        events: Optional[EventBus] = None,
        description_template: str = DEFAULT_DESCRIPTION_TEMPLATE
    ):
        self.capture = capture
        self.tracker = tracker
        self.store = store
        self.content_store = content_store
        self.pruner = pruner
        self.locks = locks
        self.events = events
        self.description_template = description_template
        self._states: Dict[str, SaveState] = {}

    def state(self, context: str) -> SaveState:
        return self._states.get(context, SaveState.IDLE)

    def _enter(self, context: str, state: SaveState) -> None:
        self._states[context] = state
        logger.debug("save_state", context=context, state=state.value)

    def describe(self, change_count: int, when: Optional[datetime] = None) -> str:
        """Generated description for saves without one."""
        when = when or datetime.utcnow()
        return self.description_template.format(
            count=change_count,
            timestamp=when.strftime("%Y-%m-%d %H:%M:%S"),
        )

    async def save(
        self,
        context: str,
        description: Optional[str] = None,
        author: Optional[str] = None
    ) -> SaveResult:
        """
        Commit the pending change set of ``context``.

        The version stores the full edit log and ``author`` as ``created_by``.

        Returns:
            SaveResult; ``nothing_to_save`` is set when there were no edits

        Raises:
            ConcurrencyError: A save or restore is already running
            CaptureError: Live state could not be read; nothing changed
            ValidationError: Every pending entry updates a record missing from
                live content; nothing changed
            PersistError: The version could not be written; nothing changed
            ApplyError: The version was written but some edits were not;
                the failed edits stay pending for ``retry_failed``
        """
        async with self.locks.hold(context, "save"):
            pending = self.tracker.get_pending_change_set(context)
            if pending.is_empty():
                logger.info("nothing_to_save", context=context)
                return SaveResult(context=context, version_number=None, change_count=0)

            description = (description or "").strip() or self.describe(pending.change_count)

            try:
                self._enter(context, SaveState.CAPTURING)
                pre_edit = await self.capture.capture(context)
                self._check_targets(pending, pre_edit)

                self._enter(context, SaveState.PERSISTING)
                number = await self.store.create_version(
                    context,
                    pre_edit,
                    description,
                    change_count=pending.change_count,
                    change_summary=pending.summary(),
                    modifications=[c.to_dict() for c in pending.changes],
                    created_by=author,
                )

                self._enter(context, SaveState.APPLYING)
                statuses = await self._apply(context, pending, pre_edit)
            except (CaptureError, ValidationError, PersistError) as e:
                logger.error(
                    "save_aborted",
                    context=context,
                    state=self.state(context).value,
                    error=str(e)
                )
                await self._emit_failed(context, e, version_number=None)
                raise
            finally:
                self._enter(context, SaveState.IDLE)

            return await self._finish(context, pending, statuses, number, description)

    def _check_targets(self, pending: PendingChangeSetView, pre_edit: Snapshot) -> None:
        """Refuse a save whose every entry updates a record that does not exist."""
        live = pre_edit.entity_map()
        missing = [k for k in _ordered(pending.modified) if k[0].is_record and k not in live]
        if missing and len(missing) == pending.change_count:
            raise ValidationError(
                ", ".join(f"{k.value}/{i}" for k, i in missing),
                None,
                "entity does not exist in live content",
            )

    async def retry_failed(self, context: str) -> SaveResult:
        """
        Re-apply the edits that failed in the last save of ``context``.

        No new version is created; the version written by that save already
        records the state before them.
        """
        async with self.locks.hold(context, "retry"):
            failed = self.tracker.failed_keys(context)
            if not failed:
                logger.info("nothing_to_retry", context=context)
                return SaveResult(context=context, version_number=None, change_count=0)

            pending = self.tracker.get_pending_change_set(context).restricted_to(failed)
            number = await self.store.latest_version(context)

            try:
                self._enter(context, SaveState.CAPTURING)
                live = await self.capture.capture(context)
                self._enter(context, SaveState.APPLYING)
                statuses = await self._apply(context, pending, live)
            finally:
                self._enter(context, SaveState.IDLE)

            logger.info("retrying_failed_writes", context=context, entries=len(failed))
            return await self._finish(context, pending, statuses, number, None)

    async def _finish(
        self,
        context: str,
        pending: PendingChangeSetView,
        statuses: List[EntityWriteStatus],
        number: Optional[int],
        description: Optional[str]
    ) -> SaveResult:
        succeeded = [(s.kind, s.id) for s in statuses if s.ok]
        failed = [(s.kind, s.id) for s in statuses if not s.ok]

        self.tracker.discard_applied(context, pending, succeeded)
        self.tracker.mark_failed(context, failed)

        pruned, prune_error = await self._prune(context)

        if failed:
            error = ApplyError(
                f"Version {number} saved, but {len(failed)} of {len(statuses)} edits were not applied",
                statuses=statuses,
                version_number=number,
            )
            logger.error(
                "save_partially_applied",
                context=context,
                version_number=number,
                failed=[f"{k.value}/{i}" for k, i in failed],
                succeeded=len(succeeded)
            )
            await self._emit_failed(context, error, version_number=number)
            raise error

        result = SaveResult(
            context=context,
            version_number=number,
            change_count=pending.change_count,
            description=description,
            statuses=statuses,
            pruned=pruned,
            prune_error=prune_error,
        )

        logger.info(
            "changes_saved",
            context=context,
            version_number=number,
            change_count=pending.change_count,
            pruned=pruned
        )
        get_metrics_logger().log_count("save", 1, {"context": context})

        if self.events:
            await self.events.emit(
                "changes_saved",
                EventCategory.CHECKPOINT,
                result.to_dict(),
                source="save"
            )
        return result

    async def _apply(
        self,
        context: str,
        pending: PendingChangeSetView,
        base: Snapshot
    ) -> List[EntityWriteStatus]:
        """
        Write every pending entry. Failures are recorded, not raised, so every
        entry is attempted.
        """
        statuses: List[EntityWriteStatus] = []
        live = base.entity_map()

        for key in _ordered(pending.modified):
            kind, entity_id = key
            if kind.is_record:
                current = live.get(key)
                if current is None:
                    statuses.append(EntityWriteStatus(
                        kind, entity_id, "update", ok=False,
                        error="entity does not exist in live content"
                    ))
                    continue
                value = merge_value(kind, current.value, pending.modified[key])
            else:
                value = pending.modified[key]
            statuses.append(await self._write(context, kind, entity_id, "update", value))

        for key in pending.added:
            kind, entity_id = key
            try:
                assigned = await self.content_store.insert(context, kind, pending.added[key])
            except Exception as e:
                logger.error("entity_insert_failed", context=context, kind=kind.value, entity_id=entity_id, error=str(e))
                statuses.append(EntityWriteStatus(kind, entity_id, "create", ok=False, error=str(e)))
            else:
                statuses.append(EntityWriteStatus(kind, entity_id, "create", ok=True, assigned_id=assigned))

        for key in _ordered(pending.deleted):
            kind, entity_id = key
            statuses.append(await self._write(context, kind, entity_id, "delete", TOMBSTONE))

        return statuses

    async def _write(self, context: str, kind: ContentKind, entity_id: str, op: str, value) -> EntityWriteStatus:
        try:
            await self.content_store.write(context, kind, entity_id, value)
        except Exception as e:
            logger.error(
                "entity_write_failed",
                context=context,
                kind=kind.value,
                entity_id=entity_id,
                op=op,
                error=str(e)
            )
            return EntityWriteStatus(kind, entity_id, op, ok=False, error=str(e))
        return EntityWriteStatus(kind, entity_id, op, ok=True)

    async def _prune(self, context: str) -> Tuple[List[int], Optional[str]]:
        try:
            pruned = await self.pruner.enforce(context)
        except CheckpointCMSError as e:
            logger.error("prune_failed", context=context, error=str(e))
            return [], str(e)

        if pruned and self.events:
            await self.events.emit(
                "versions_pruned",
                EventCategory.CHECKPOINT,
                {"context": context, "pruned": pruned},
                source="pruner"
            )
        return pruned, None

    async def _emit_failed(self, context: str, error: CheckpointCMSError, version_number: Optional[int]) -> None:
        if not self.events:
            return
        await self.events.emit(
            "save_failed",
            EventCategory.ERROR,
            {
                "context": context,
                "version_number": version_number,
                "error": error.to_dict()["error"],
            },
            priority=EventPriority.HIGH,
            source="save"
        )
