"""
Restore engine.

Restore protocol for one context, run under the context's single-writer lock:

    IDLE -> FETCHING -> APPLYING -> IDLE

After a successful restore the live content of the context equals the
version's snapshot: every snapshot entity is written back and live entities
the snapshot does not contain are soft-removed. Uncommitted edits are
discarded.
"""

from enum import Enum
from typing import Dict, List, Optional
import copy
import time

from ..checkpoint.capture import StateCapture
from ..checkpoint.locks import ContextLocks
from ..checkpoint.store import CheckpointStore
from ..checkpoint.tracker import ChangeTracker
from ..models import EntityWriteStatus, RestoreResult
from ..storage.cache import SnapshotCache
from ..storage.content_store import ContentStore, TOMBSTONE
from ..utils.errors import ApplyError
from ..utils.logging import get_logger, get_metrics_logger
from ..utils.notifications import EventBus, EventCategory


logger = get_logger("checkpoint-cms.managers.restore")


class RestoreState(Enum):
    """Restore state machine."""
    IDLE = "idle"
    FETCHING = "fetching"
    APPLYING = "applying"


class RestoreEngine:
    """Writes a stored version back to live content."""

    def __init__(
        self,
        cache: SnapshotCache,
        store: CheckpointStore,
        content_store: ContentStore,
        capture: StateCapture,
        tracker: ChangeTracker,
        locks: ContextLocks,
        events: Optional[EventBus] = None
    ):
        self.cache = cache
        self.store = store
        self.content_store = content_store
        self.capture = capture
        self.tracker = tracker
        self.locks = locks
        self.events = events
        self._states: Dict[str, RestoreState] = {}

    def state(self, context: str) -> RestoreState:
        return self._states.get(context, RestoreState.IDLE)

    def _enter(self, context: str, state: RestoreState) -> None:
        self._states[context] = state
        logger.debug("restore_state", context=context, state=state.value)

    async def restore(self, context: str, number: int) -> RestoreResult:
        """
        Make the live content of ``context`` equal to version ``number``.

        Callers should confirm with the user first when
        ``has_pending_changes(context)`` is true; those edits are discarded
        once every write succeeded. A failed restore keeps them, and the live
        content is then only partly restored: repeat the restore (or call
        ``clear``) before saving, or a later save applies the old edits on top
        of the half-restored state.

        Raises:
            ConcurrencyError: A save or restore is already running
            NotFoundError: The version does not exist
            CaptureError: Live state could not be read; nothing changed
            ApplyError: Some writes failed; repeating the restore is safe
        """
        async with self.locks.hold(context, "restore"):
            start = time.perf_counter()
            try:
                self._enter(context, RestoreState.FETCHING)
                snapshot, from_cache = await self.cache.fetch(context, number, self.store.get_version)

                self._enter(context, RestoreState.APPLYING)
                live = await self.capture.capture(context)
                statuses = await self._apply(context, snapshot, live)
            finally:
                self._enter(context, RestoreState.IDLE)

            failed = [s for s in statuses if not s.ok]
            if failed:
                logger.error(
                    "restore_partially_applied",
                    context=context,
                    version_number=number,
                    failed=[f"{s.kind.value}/{s.id}" for s in failed]
                )
                raise ApplyError(
                    f"Restore of version {number} failed for {len(failed)} of {len(statuses)} entities",
                    statuses=statuses,
                )

            discarded = self.tracker.clear(context)
            if discarded:
                logger.warning(
                    "pending_changes_discarded",
                    context=context,
                    version_number=number,
                    discarded=discarded
                )

            elapsed_ms = (time.perf_counter() - start) * 1000
            result = RestoreResult(
                context=context,
                version_number=number,
                elements_restored=sum(1 for s in statuses if s.op == "restore"),
                elements_removed=sum(1 for s in statuses if s.op == "remove"),
                elapsed_ms=elapsed_ms,
                from_cache=from_cache,
                content_hash=snapshot.content_hash,
                discarded_changes=discarded,
            )

            logger.info(
                "version_restored",
                context=context,
                version_number=number,
                elements_restored=result.elements_restored,
                elements_removed=result.elements_removed,
                elapsed_ms=round(elapsed_ms, 3),
                from_cache=from_cache
            )
            get_metrics_logger().log_duration(
                "restore", elapsed_ms, {"context": context, "from_cache": str(from_cache)}
            )

            if self.events:
                await self.events.emit(
                    "version_restored",
                    EventCategory.RESTORE,
                    result.to_dict(),
                    source="restore"
                )
            return result

    async def _apply(self, context, snapshot, live) -> List[EntityWriteStatus]:
        statuses: List[EntityWriteStatus] = []

        for entity in snapshot.entities:
            statuses.append(await self._write(
                context, entity.kind, entity.id, "restore", copy.deepcopy(entity.value)
            ))

        wanted = set(snapshot.keys())
        for key in live.keys():
            if key not in wanted:
                statuses.append(await self._write(context, key[0], key[1], "remove", TOMBSTONE))

        return statuses

    async def _write(self, context, kind, entity_id, op, value) -> EntityWriteStatus:
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
