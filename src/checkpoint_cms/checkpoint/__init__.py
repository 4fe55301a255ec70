"""
Checkpoint engine components.

This package provides:
- State capture with latest-wins duplicate resolution
- Pending change tracking
- The versions ledger
- Retention pruning
- Per-context single-writer locks
"""

from .capture import StateCapture, resolve_latest
from .tracker import ChangeTracker, merge_value
from .store import CheckpointStore
from .pruner import Pruner
from .locks import ContextLocks

__all__ = [
    "StateCapture",
    "resolve_latest",
    "ChangeTracker",
    "merge_value",
    "CheckpointStore",
    "Pruner",
    "ContextLocks",
]
