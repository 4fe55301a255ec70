"""
checkpoint-cms - reversible in-place content editing.

This package provides a checkpoint version-control engine for small CMS
deployments with:
- Deterministic snapshots of page content
- Buffered change tracking per editing context
- Linear, numbered checkpoints stored in SQLite
- Fast cached restores and retention pruning
"""

__version__ = "0.1.0"

from .managers.version_control import VersionControlManager

__all__ = [
    'VersionControlManager',
    '__version__',
]
