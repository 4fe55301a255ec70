"""
State capture.

Reads every tracked kind for a context and builds one deterministic Snapshot.
"""

from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional
import time

from ..models import ContentEntity, ContentKind, Snapshot
from ..storage.content_store import ContentStore
from ..utils.errors import CaptureError, ErrorRecovery
from ..utils.logging import get_logger, get_metrics_logger


logger = get_logger("checkpoint-cms.checkpoint.capture")

_NEVER = datetime.min.replace(tzinfo=timezone.utc)


def _recency(updated_at: Optional[datetime]) -> datetime:
    # Naive timestamps are stored as UTC.
    if updated_at is None:
        return _NEVER
    if updated_at.tzinfo is None:
        return updated_at.replace(tzinfo=timezone.utc)
    return updated_at.astimezone(timezone.utc)


def resolve_latest(rows: Iterable[ContentEntity]) -> List[ContentEntity]:
    """
    Collapse duplicate ids to one entity each.

    The most recently updated row wins; on equal ``updated_at`` the row that
    comes later in ``rows`` (later insertion) wins. Rows without a timestamp
    lose to any row with one. Naive and aware timestamps compare as UTC.
    """
    winners: Dict[str, ContentEntity] = {}
    for row in rows:
        current = winners.get(row.id)
        if current is None or _recency(row.updated_at) >= _recency(current.updated_at):
            winners[row.id] = row
    return list(winners.values())


class StateCapture:
    """Produces snapshots from a ContentStore. Side-effect free."""

    def __init__(
        self,
        store: ContentStore,
        kinds: Optional[Iterable[ContentKind]] = None,
        read_retries: int = 3,
        retry_base_delay: float = 0.1,
        retry_max_delay: float = 2.0
    ):
        self.store = store
        self.kinds = list(kinds) if kinds is not None else list(ContentKind)
        self.read_retries = read_retries
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay

    async def _read_kind(self, context: str, kind: ContentKind) -> List[ContentEntity]:
        try:
            return await ErrorRecovery.exponential_backoff(
                lambda: self.store.read(context, kind),
                max_retries=self.read_retries,
                base_delay=self.retry_base_delay,
                max_delay=self.retry_max_delay,
            )
        except Exception as e:
            raise CaptureError(
                f"Failed to read {kind.value} content for context '{context}': {e}",
                kind=kind.value,
                cause=e
            ) from e

    async def capture(self, context: str) -> Snapshot:
        """
        Capture the complete live state of ``context``.

        Raises:
            CaptureError: If any read fails after retries. No partial
                snapshot is produced.
        """
        start = time.perf_counter()
        captured_at = datetime.utcnow()
        entities: List[ContentEntity] = []

        for kind in self.kinds:
            rows = await self._read_kind(context, kind)
            resolved = resolve_latest(rows)
            if len(resolved) != len(rows):
                logger.debug(
                    "duplicate_rows_resolved",
                    context=context,
                    kind=kind.value,
                    rows=len(rows),
                    entities=len(resolved)
                )
            entities.extend(resolved)

        snapshot = Snapshot.build(context, entities, captured_at=captured_at)
        duration_ms = (time.perf_counter() - start) * 1000

        logger.debug(
            "state_captured",
            context=context,
            entities=len(snapshot),
            content_hash=snapshot.content_hash,
            duration_ms=duration_ms
        )
        get_metrics_logger().log_duration("capture", duration_ms, {"context": context})
        return snapshot
