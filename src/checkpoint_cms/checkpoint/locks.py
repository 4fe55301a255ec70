"""Per-context single-writer locks shared by save and restore."""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

from ..utils.errors import ConcurrencyError
from ..utils.logging import get_logger


logger = get_logger("checkpoint-cms.checkpoint.locks")


class ContextLocks:
    """
    At most one save or restore per context.

    Acquisition never waits: a second caller is rejected with
    ``ConcurrencyError`` while the first is in flight. The check and the
    claim contain no await, so they are atomic on one event loop.
    """

    def __init__(self):
        self._active: Dict[str, str] = {}

    def active_operation(self, context: str) -> Optional[str]:
        return self._active.get(context)

    def is_locked(self, context: str) -> bool:
        return context in self._active

    @asynccontextmanager
    async def hold(self, context: str, operation: str) -> AsyncIterator[None]:
        current = self._active.get(context)
        if current is not None:
            logger.warning(
                "session_already_active",
                context=context,
                requested=operation,
                active=current
            )
            raise ConcurrencyError(context, operation=current)

        self._active[context] = operation
        try:
            yield
        finally:
            del self._active[context]
