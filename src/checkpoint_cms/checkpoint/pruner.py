"""
Retention pruning.

Keeps at most ``max_versions`` versions per context, deleting the oldest.
With ``protect_baseline`` the baseline (version 1) is always kept and counts
toward the limit.
"""

from typing import List, Optional

from ..storage.cache import SnapshotCache
from ..utils.logging import get_logger
from .store import CheckpointStore


logger = get_logger("checkpoint-cms.checkpoint.pruner")


class Pruner:
    """Enforces the retained-version limit."""

    def __init__(
        self,
        store: CheckpointStore,
        max_versions: int = 20,
        protect_baseline: bool = False,
        cache: Optional[SnapshotCache] = None
    ):
        if max_versions < 1:
            raise ValueError("max_versions must be at least 1")
        self.store = store
        self.max_versions = max_versions
        self.protect_baseline = protect_baseline
        self.cache = cache

    def select_victims(self, numbers: List[int]) -> List[int]:
        """Pick which of ``numbers`` (ascending) to delete."""
        excess = len(numbers) - self.max_versions
        if excess <= 0:
            return []

        candidates = numbers
        if self.protect_baseline and numbers and numbers[0] == 1:
            if self.max_versions == 1:
                # Only the baseline survives
                return numbers[1:]
            candidates = numbers[1:]

        return candidates[:excess]

    async def enforce(self, context: str) -> List[int]:
        """
        Delete the oldest excess versions of ``context``.

        Returns:
            The deleted version numbers, oldest first
        """
        numbers = await self.store.version_numbers(context)
        victims = self.select_victims(numbers)
        if not victims:
            return []

        await self.store.delete_versions(context, victims)
        if self.cache is not None:
            await self.cache.invalidate(context, victims)

        logger.info(
            "versions_pruned",
            context=context,
            pruned=victims,
            kept=len(numbers) - len(victims),
            max_versions=self.max_versions,
            protect_baseline=self.protect_baseline
        )
        return victims
