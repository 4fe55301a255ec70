"""
Data models for the checkpoint engine.
"""

from .content import (
    ContentKind,
    ContentEntity,
    EntityKey,
    Snapshot,
    Version,
    VersionSummary,
    RECORD_KINDS,
    canonical_json,
)
from .changes import ChangeOp, TrackedChange, PendingChangeSet, PendingChangeSetView
from .results import EntityWriteStatus, SaveResult, RestoreResult

__all__ = [
    'ContentKind',
    'ContentEntity',
    'EntityKey',
    'Snapshot',
    'Version',
    'VersionSummary',
    'RECORD_KINDS',
    'canonical_json',
    'ChangeOp',
    'TrackedChange',
    'PendingChangeSet',
    'PendingChangeSetView',
    'EntityWriteStatus',
    'SaveResult',
    'RestoreResult',
]
