"""
Base manager abstract class.

This module provides the foundation for manager components with:
- Lifecycle management (initialize/close)
- Event notification through the shared EventBus
- Health checking
"""

from abc import ABC, abstractmethod
from typing import Optional, Dict, Any
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from ..utils.errors import CheckpointCMSError
from ..utils.logging import get_logger
from ..utils.notifications import EventBus, EventCategory, EventPriority


class ManagerState(Enum):
    """Manager lifecycle states."""
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    CLOSING = "closing"
    CLOSED = "closed"
    ERROR = "error"


class ManagerError(CheckpointCMSError):
    """Base exception for manager lifecycle errors."""
    code = "MANAGER_ERROR"
    default_message = "Manager error"


class ManagerNotReadyError(ManagerError):
    """Raised when a manager operation is called before initialization."""
    code = "MANAGER_NOT_READY"
    default_message = "Manager not initialized"


@dataclass
class ManagerConfig:
    """Base configuration for all managers."""
    name: str
    enable_notifications: bool = True
    custom_config: Dict[str, Any] = field(default_factory=dict)


@dataclass
class HealthStatus:
    """Health status information."""
    healthy: bool
    last_check: datetime
    details: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "healthy": self.healthy,
            "last_check": self.last_check.isoformat(),
            "details": self.details,
            "error": self.error,
        }


class BaseManager(ABC):
    """
    Abstract base class for manager components.

    Subclasses implement ``_initialize``, ``_close`` and ``_health_check``.
    """

    def __init__(self, config: ManagerConfig, events: Optional[EventBus] = None):
        self.config = config
        self.logger = get_logger(f"checkpoint-cms.managers.{config.name}")
        self.state = ManagerState.UNINITIALIZED
        self.events = events or EventBus()
        self._health_status = HealthStatus(healthy=True, last_check=datetime.utcnow())

    @property
    def is_ready(self) -> bool:
        """Check if manager is ready for operations."""
        return self.state == ManagerState.READY

    def _require_ready(self) -> None:
        if not self.is_ready:
            raise ManagerNotReadyError(
                f"Manager {self.config.name} is {self.state.value}, not ready"
            )

    async def initialize(self) -> None:
        """
        Initialize the manager.

        Performs component setup and transitions to READY.
        """
        if self.state != ManagerState.UNINITIALIZED:
            raise ManagerError(f"Cannot initialize from state: {self.state.value}")

        self.state = ManagerState.INITIALIZING
        self.logger.info("initializing_manager", manager=self.config.name)

        try:
            await self._initialize()
        except Exception as e:
            self.state = ManagerState.ERROR
            self.logger.error("initialization_failed", error=str(e), exc_info=True)
            raise ManagerError(f"Failed to initialize {self.config.name}: {e}", cause=e) from e

        self.state = ManagerState.READY
        self.logger.info("manager_initialized", manager=self.config.name)
        await self._notify_event("initialized", EventCategory.SYSTEM, {"manager": self.config.name})

    async def close(self) -> None:
        """Release resources. Safe to call more than once."""
        if self.state in (ManagerState.CLOSED, ManagerState.UNINITIALIZED):
            return

        self.state = ManagerState.CLOSING
        try:
            await self._close()
        except Exception as e:
            self.state = ManagerState.ERROR
            self.logger.error("close_failed", error=str(e), exc_info=True)
            raise ManagerError(f"Failed to close {self.config.name}: {e}", cause=e) from e

        self.state = ManagerState.CLOSED
        self.logger.info("manager_closed", manager=self.config.name)

    async def health_check(self) -> HealthStatus:
        """
        Perform health check.

        Returns current health status of the manager.
        """
        try:
            details = await self._health_check()
            self._health_status = HealthStatus(
                healthy=True,
                last_check=datetime.utcnow(),
                details=details
            )
        except Exception as e:
            self._health_status = HealthStatus(
                healthy=False,
                last_check=datetime.utcnow(),
                error=str(e)
            )
            self.logger.error("health_check_failed", error=str(e))

        return self._health_status

    async def _notify_event(
        self,
        name: str,
        category: EventCategory,
        data: Dict[str, Any],
        priority: EventPriority = EventPriority.NORMAL
    ) -> None:
        """Publish an event unless notifications are disabled."""
        if not self.config.enable_notifications:
            return
        await self.events.emit(name, category, data, priority=priority, source=self.config.name)

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @abstractmethod
    async def _initialize(self) -> None:
        """Component-specific initialization logic."""

    @abstractmethod
    async def _close(self) -> None:
        """Component-specific shutdown logic."""

    @abstractmethod
    async def _health_check(self) -> Dict[str, Any]:
        """Component-specific health check logic."""
