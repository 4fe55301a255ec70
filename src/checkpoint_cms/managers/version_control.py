"""
Version control manager.

Public entry point of the engine. It wires the content store, capture,
tracker, ledger, cache, pruner and orchestrators together from one
configuration and exposes the operations an editing UI calls.
"""

from typing import Any, Dict, List, Optional

from ..checkpoint.capture import StateCapture
from ..checkpoint.locks import ContextLocks
from ..checkpoint.pruner import Pruner
from ..checkpoint.store import CheckpointStore
from ..checkpoint.tracker import ChangeTracker
from ..models import (
    ChangeOp,
    PendingChangeSetView,
    RECORD_KINDS,
    RestoreResult,
    SaveResult,
    Snapshot,
    Version,
    VersionSummary,
)
from ..storage.cache import SnapshotCache
from ..storage.codec import SnapshotCodec
from ..storage.content_store import ContentStore, SQLiteContentStore
from ..storage.database import Database
from ..utils.config import CheckpointCMSConfig
from ..utils.notifications import EventBus, EventCategory, EventPriority
from ..utils.validators import ContentValidator, context_name_validator
from .base import BaseManager, ManagerConfig
from .restore import RestoreEngine
from .save import SaveOrchestrator


class VersionControlManager(BaseManager):
    """
    Checkpoint version control for CMS content.

    Typical use::

        async with VersionControlManager(config) as vcm:
            await vcm.open_context("about")
            await vcm.track_change("about", "text", "hero-title", "Old", "New")
            result = await vcm.save("about", "Update hero")
            await vcm.restore("about", result.version_number)
    """

    def __init__(
        self,
        config: Optional[CheckpointCMSConfig] = None,
        content_store: Optional[ContentStore] = None,
        events: Optional[EventBus] = None,
        db: Optional[Database] = None
    ):
        super().__init__(ManagerConfig(name="version_control"), events=events)
        self.settings = config or CheckpointCMSConfig()
        self._content_store_override = content_store

        self.db: Optional[Database] = db
        self.content_store: Optional[ContentStore] = None
        self.checkpoints: Optional[CheckpointStore] = None
        self.cache: Optional[SnapshotCache] = None
        self.capturer: Optional[StateCapture] = None
        self.tracker: Optional[ChangeTracker] = None
        self.pruner: Optional[Pruner] = None
        self.locks = ContextLocks()
        self.saver: Optional[SaveOrchestrator] = None
        self.restorer: Optional[RestoreEngine] = None
        self._context_validator = context_name_validator()

    async def _initialize(self) -> None:
        settings = self.settings
        events = self.events if self.config.enable_notifications else None

        if self.db is None:
            self.db = Database(
                settings.database.path,
                timeout=settings.database.timeout,
                journal_mode=settings.database.journal_mode,
                synchronous=settings.database.synchronous,
            )
        await self.db.connect()

        if self._content_store_override is not None:
            self.content_store = self._content_store_override
        else:
            self.content_store = SQLiteContentStore(self.db)
        await self.content_store.initialize()

        self.checkpoints = CheckpointStore(self.db, SnapshotCodec())
        await self.checkpoints.initialize()

        self.cache = SnapshotCache(
            max_entries=settings.cache.max_entries,
            max_size_mb=settings.cache.max_size_mb,
            enabled=settings.cache.enabled,
        )
        self.capturer = StateCapture(
            self.content_store,
            read_retries=settings.capture.read_retries,
            retry_base_delay=settings.capture.retry_base_delay,
            retry_max_delay=settings.capture.retry_max_delay,
        )
        self.tracker = ChangeTracker(
            validator=ContentValidator(
                settings.validation.field_limits,
                default_limit=settings.validation.default_limit,
                record_kinds=RECORD_KINDS,
            ),
            events=events,
        )
        self.pruner = Pruner(
            self.checkpoints,
            max_versions=settings.versioning.max_versions,
            protect_baseline=settings.versioning.protect_baseline,
            cache=self.cache,
        )
        self.saver = SaveOrchestrator(
            self.capturer,
            self.tracker,
            self.checkpoints,
            self.content_store,
            self.pruner,
            self.locks,
            events=events,
            description_template=settings.versioning.auto_description_template,
        )
        self.restorer = RestoreEngine(
            self.cache,
            self.checkpoints,
            self.content_store,
            self.capturer,
            self.tracker,
            self.locks,
            events=events,
        )

        self.logger.info(
            "version_control_ready",
            db_path=str(settings.database.path),
            max_versions=settings.versioning.max_versions,
            protect_baseline=settings.versioning.protect_baseline,
            cache_enabled=settings.cache.enabled
        )

    async def _close(self) -> None:
        if self.db:
            await self.db.close()
            self.db = None

    async def _health_check(self) -> Dict[str, Any]:
        self._require_ready()
        contexts = await self.checkpoints.contexts()
        return {
            "contexts": len(contexts),
            "pending_contexts": sorted(self.tracker.contexts()),
            "cache": self.cache.get_stats().to_dict(),
        }

    # Baseline

    async def open_context(self, context: str) -> bool:
        """
        Ensure ``context`` has a baseline.

        Captures the live state as version 1 when the context has no versions.

        Returns:
            True if a baseline was created
        """
        self._require_ready()
        self._context_validator.validate(context)

        async with self.locks.hold(context, "baseline"):
            if await self.checkpoints.count_versions(context) > 0:
                return False

            snapshot = await self.capturer.capture(context)
            description = self.settings.versioning.baseline_description
            number = await self.checkpoints.create_version(context, snapshot, description)

        self.logger.info("baseline_created", context=context, number=number, entities=len(snapshot))
        await self._notify_event(
            "baseline_created",
            EventCategory.CHECKPOINT,
            {"context": context, "version_number": number, "entities": len(snapshot)}
        )
        return True

    # Capture and tracking

    async def capture(self, context: str) -> Snapshot:
        self._require_ready()
        return await self.capturer.capture(context)

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
        self._require_ready()
        return await self.tracker.track_change(
            context, kind, entity_id, old_value, new_value, op, metadata
        )

    def get_pending_change_set(self, context: str) -> PendingChangeSetView:
        self._require_ready()
        return self.tracker.get_pending_change_set(context)

    def has_pending_changes(self, context: str) -> bool:
        self._require_ready()
        return self.tracker.has_pending_changes(context)

    def clear(self, context: str) -> int:
        """Cancel the editing session: drop all pending edits."""
        self._require_ready()
        return self.tracker.clear(context)

    # Save and restore

    async def save(
        self,
        context: str,
        description: Optional[str] = None,
        author: Optional[str] = None
    ) -> SaveResult:
        self._require_ready()
        return await self.saver.save(context, description, author)

    async def retry_failed(self, context: str) -> SaveResult:
        self._require_ready()
        return await self.saver.retry_failed(context)

    async def restore(self, context: str, number: int) -> RestoreResult:
        self._require_ready()
        return await self.restorer.restore(context, number)

    # History

    async def list_versions(self, context: str, limit: Optional[int] = None) -> List[VersionSummary]:
        self._require_ready()
        return await self.checkpoints.list_versions(context, limit)

    async def get_version(self, context: str, number: int) -> Version:
        self._require_ready()
        return await self.checkpoints.get_version_record(context, number)

    async def clear_all_versions(self, context: str) -> int:
        """
        Delete the whole history of ``context``.

        Destructive; the caller confirms with the user. The next save
        becomes version 1, holding the state captured at that time.

        Returns:
            Number of versions deleted
        """
        self._require_ready()
        async with self.locks.hold(context, "clear"):
            deleted = await self.checkpoints.delete_all_versions(context)
            await self.cache.invalidate_context(context)

        await self._notify_event(
            "versions_cleared",
            EventCategory.CHECKPOINT,
            {"context": context, "deleted": deleted},
            priority=EventPriority.HIGH
        )
        return deleted
