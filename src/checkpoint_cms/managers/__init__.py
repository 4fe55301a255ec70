"""
Managers package.
"""

from .base import BaseManager, ManagerConfig, ManagerState, HealthStatus, ManagerError, ManagerNotReadyError
from .save import SaveOrchestrator, SaveState
from .restore import RestoreEngine, RestoreState
from .version_control import VersionControlManager

__all__ = [
    # Base
    'BaseManager',
    'ManagerConfig',
    'ManagerState',
    'HealthStatus',
    'ManagerError',
    'ManagerNotReadyError',

    # Orchestrators
    'SaveOrchestrator',
    'SaveState',
    'RestoreEngine',
    'RestoreState',

    # Facade
    'VersionControlManager',
]
