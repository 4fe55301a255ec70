"""
Error handling framework for the checkpoint engine.

This module provides:
- Hierarchical exception classes
- Error context preservation
- Structured error responses for UI layers
- Retry helpers for idempotent operations
"""

from typing import Optional, Dict, Any, List, Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import traceback
import asyncio
import inspect

from .logging import get_logger


logger = get_logger("checkpoint-cms.errors")


class ErrorSeverity(Enum):
    """Error severity levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories for classification."""
    CAPTURE = "capture"
    PERSISTENCE = "persistence"
    APPLY = "apply"
    LOOKUP = "lookup"
    VALIDATION = "validation"
    CONCURRENCY = "concurrency"
    CONFIGURATION = "configuration"
    DATABASE = "database"
    CACHE = "cache"
    UNKNOWN = "unknown"


@dataclass
class ErrorContext:
    """Context information for an error."""
    timestamp: datetime = field(default_factory=datetime.utcnow)
    context: Optional[str] = None
    component: Optional[str] = None
    operation: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    stack_trace: Optional[str] = None


class CheckpointCMSError(Exception):
    """Base exception for all checkpoint engine errors."""

    code: str = "CHECKPOINT_CMS_ERROR"
    default_message: str = "An error occurred in the checkpoint engine"
    severity: ErrorSeverity = ErrorSeverity.ERROR
    category: ErrorCategory = ErrorCategory.UNKNOWN
    is_retryable: bool = False

    def __init__(
        self,
        message: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        **kwargs
    ):
        self.message = message or self.default_message
        self.context = context or ErrorContext()
        self.cause = cause
        self.kwargs = kwargs

        if not self.context.stack_trace and cause is not None:
            self.context.stack_trace = "".join(
                traceback.format_exception(type(cause), cause, cause.__traceback__)
            )

        super().__init__(self.message)

    def get_suggestions(self) -> List[str]:
        """Get error resolution suggestions."""
        return []

    def details(self) -> Dict[str, Any]:
        """Error-specific payload merged into ``to_dict``."""
        return {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "severity": self.severity.value,
                "category": self.category.value,
                "is_retryable": self.is_retryable,
                "suggestions": self.get_suggestions(),
                "details": self.details(),
                "context": {
                    "timestamp": self.context.timestamp.isoformat(),
                    "context": self.context.context,
                    "component": self.context.component,
                    "operation": self.context.operation,
                    "metadata": self.context.metadata,
                },
            }
        }


class ConfigurationError(CheckpointCMSError):
    """Configuration errors."""
    code = "CONFIG_ERROR"
    default_message = "Configuration error"
    category = ErrorCategory.CONFIGURATION

    def get_suggestions(self) -> List[str]:
        return [
            "Check your configuration file syntax",
            "Verify CHECKPOINT_CMS_* environment variables",
        ]


class DatabaseError(CheckpointCMSError):
    """Database-related errors."""
    code = "DATABASE_ERROR"
    default_message = "Database error occurred"
    category = ErrorCategory.DATABASE


class CacheError(CheckpointCMSError):
    """Snapshot cache errors."""
    code = "CACHE_ERROR"
    default_message = "Cache error occurred"
    category = ErrorCategory.CACHE
    severity = ErrorSeverity.WARNING


class CaptureError(CheckpointCMSError):
    """A content read failed while capturing a snapshot; nothing was changed."""
    code = "CAPTURE_ERROR"
    default_message = "Failed to capture content state"
    category = ErrorCategory.CAPTURE
    is_retryable = True

    def __init__(self, message: Optional[str] = None, kind: Optional[str] = None, **kwargs):
        self.kind = kind
        super().__init__(message, **kwargs)

    def details(self) -> Dict[str, Any]:
        return {"kind": self.kind}


class PersistError(CheckpointCMSError):
    """A version could not be durably written; no edits were applied."""
    code = "PERSIST_ERROR"
    default_message = "Failed to persist version"
    category = ErrorCategory.PERSISTENCE

    def get_suggestions(self) -> List[str]:
        return ["Live content is unchanged; retry the save"]


class NotFoundError(CheckpointCMSError):
    """Requested version does not exist."""
    code = "NOT_FOUND"
    default_message = "Version not found"
    category = ErrorCategory.LOOKUP
    severity = ErrorSeverity.WARNING

    def __init__(self, context_name: str, number: int, **kwargs):
        self.context_name = context_name
        self.number = number
        super().__init__(
            f"Version {number} not found for context '{context_name}'", **kwargs
        )

    def details(self) -> Dict[str, Any]:
        return {"context": self.context_name, "number": self.number}


class ValidationError(CheckpointCMSError):
    """An entity value violates a declared constraint."""
    code = "VALIDATION_ERROR"
    default_message = "Validation error"
    category = ErrorCategory.VALIDATION
    severity = ErrorSeverity.WARNING

    def __init__(self, field: str, value: Any, constraint: str, **kwargs):
        self.field = field
        self.value = value
        self.constraint = constraint
        message = f"Validation failed for field '{field}': {constraint}"
        super().__init__(message, **kwargs)

    def get_suggestions(self) -> List[str]:
        return [
            f"Check the value of field '{self.field}'",
            f"Ensure it meets the constraint: {self.constraint}",
        ]

    def details(self) -> Dict[str, Any]:
        return {"field": self.field, "constraint": self.constraint}


class ConcurrencyError(CheckpointCMSError):
    """A save or restore is already running for the context."""
    code = "CONCURRENCY_ERROR"
    default_message = "session already active"
    category = ErrorCategory.CONCURRENCY
    severity = ErrorSeverity.WARNING
    is_retryable = True

    def __init__(self, context_name: str, operation: Optional[str] = None, **kwargs):
        self.context_name = context_name
        self.operation = operation
        super().__init__(self.default_message, **kwargs)

    def details(self) -> Dict[str, Any]:
        return {"context": self.context_name, "active_operation": self.operation}


class ApplyError(CheckpointCMSError):
    """
    Some entity writes failed.

    For a save, the version was written and is valid, but the live content only
    carries part of the edits. The failed entries stay pending for
    ``retry_failed``.
    """
    code = "APPLY_ERROR"
    default_message = "Version saved, but not all edits were applied"
    category = ErrorCategory.APPLY
    is_retryable = True

    def __init__(
        self,
        message: Optional[str] = None,
        statuses: Optional[Sequence[Any]] = None,
        version_number: Optional[int] = None,
        **kwargs
    ):
        self.statuses = list(statuses or [])
        self.version_number = version_number
        super().__init__(message, **kwargs)

    @property
    def succeeded(self) -> List[Any]:
        return [s for s in self.statuses if s.ok]

    @property
    def failed(self) -> List[Any]:
        return [s for s in self.statuses if not s.ok]

    def get_suggestions(self) -> List[str]:
        if self.version_number is not None:
            return [
                f"Version {self.version_number} was saved",
                "Retry the remaining writes",
            ]
        return ["Repeat the restore"]

    def details(self) -> Dict[str, Any]:
        return {
            "version_number": self.version_number,
            "succeeded": [s.to_dict() for s in self.succeeded],
            "failed": [s.to_dict() for s in self.failed],
        }


class ErrorRecovery:
    """Error recovery strategies."""

    @staticmethod
    async def exponential_backoff(
        func: Callable,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        exceptions: tuple = (Exception,)
    ) -> Any:
        """
        Retry with exponential backoff.

        Only use this for idempotent operations.

        Args:
            func: Zero-argument callable; awaitable results are awaited
            max_retries: Maximum attempts
            base_delay: Base delay in seconds
            max_delay: Maximum delay in seconds
            exceptions: Exceptions to retry on
        """
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")

        last_exception: Optional[BaseException] = None

        for attempt in range(max_retries):
            try:
                result = func()
                if inspect.isawaitable(result):
                    result = await result
                return result
            except exceptions as e:
                last_exception = e
                if attempt < max_retries - 1:
                    delay = min(base_delay * (2 ** attempt), max_delay)
                    logger.warning(
                        "retrying_after_error",
                        attempt=attempt + 1,
                        max_retries=max_retries,
                        delay=delay,
                        error=str(e)
                    )
                    await asyncio.sleep(delay)
                else:
                    logger.error(
                        "max_retries_exceeded",
                        attempts=max_retries,
                        error=str(e)
                    )

        raise last_exception


__all__ = [
    'CheckpointCMSError',
    'ErrorContext',
    'ErrorSeverity',
    'ErrorCategory',
    'ConfigurationError',
    'DatabaseError',
    'CacheError',
    'CaptureError',
    'PersistError',
    'ApplyError',
    'NotFoundError',
    'ValidationError',
    'ConcurrencyError',
    'ErrorRecovery',
]
