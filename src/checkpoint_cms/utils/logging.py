"""
Logging configuration for the checkpoint engine.

This module provides centralized logging setup with:
- Structured logging via structlog
- Rich console output
- Rotating JSON file logs
- Performance metrics logging
- Optional Sentry error tracking
"""

import logging
import logging.handlers
import asyncio
import functools
import json
import os
import time
from pathlib import Path
from typing import Optional, Dict, Any
from datetime import datetime
import structlog
from rich.logging import RichHandler
from rich.console import Console
import sentry_sdk
from sentry_sdk.integrations.logging import LoggingIntegration


console = Console(stderr=True)

_RESERVED_RECORD_KEYS = frozenset((
    'name', 'msg', 'args', 'created', 'filename', 'funcName', 'levelname',
    'levelno', 'lineno', 'module', 'msecs', 'message', 'pathname', 'process',
    'processName', 'relativeCreated', 'thread', 'threadName', 'exc_info',
    'exc_text', 'stack_info', 'taskName',
))


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured file logs."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            'timestamp': datetime.utcnow().isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        for key, value in record.__dict__.items():
            if key in _RESERVED_RECORD_KEYS:
                continue
            try:
                json.dumps(value)
                log_obj[key] = value
            except (TypeError, ValueError):
                log_obj[key] = str(value)

        if record.exc_info:
            log_obj['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_obj)


class MetricsLogger:
    """Logger for performance metrics."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def log_metric(self, name: str, value: Any, tags: Optional[Dict[str, str]] = None):
        """Log a metric value."""
        self.logger.info(
            "metric",
            extra={
                "metric_name": name,
                "metric_value": value,
                "metric_tags": tags or {},
                "metric_timestamp": datetime.utcnow().isoformat(),
            }
        )

    def log_duration(self, name: str, duration_ms: float, tags: Optional[Dict[str, str]] = None):
        """Log a duration metric."""
        self.log_metric(f"{name}.duration_ms", duration_ms, tags)

    def log_count(self, name: str, count: int = 1, tags: Optional[Dict[str, str]] = None):
        """Log a count metric."""
        self.log_metric(f"{name}.count", count, tags)


_metrics_logger: Optional[MetricsLogger] = None


def get_metrics_logger() -> MetricsLogger:
    """Return the configured metrics logger, or one bound to the default logger tree."""
    global _metrics_logger
    if _metrics_logger is None:
        _metrics_logger = MetricsLogger(logging.getLogger("checkpoint-cms.metrics"))
    return _metrics_logger


def setup_logging(
    app_name: str = "checkpoint-cms",
    log_level: str = "INFO",
    log_dir: Optional[Path] = None,
    enable_json: bool = True,
    enable_console: bool = True,
    enable_sentry: bool = False,
    sentry_dsn: Optional[str] = None,
    enable_metrics: bool = True,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 10,
) -> Dict[str, Any]:
    """
    Set up logging for the application.

    Args:
        app_name: Application name for log identification
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for log files (defaults to ~/.checkpoint-cms/logs)
        enable_json: Use JSON for the file handlers and structlog renderer
        enable_console: Attach a rich console handler
        enable_sentry: Enable Sentry error tracking
        sentry_dsn: Sentry DSN for error tracking
        enable_metrics: Write metrics to a dedicated JSONL file
        max_bytes: Rotation size per log file
        backup_count: Rotated files to keep

    Returns:
        Dictionary with logger instances and configuration
    """
    global _metrics_logger

    if log_dir is None:
        log_dir = Path.home() / ".checkpoint-cms" / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)

    renderer = structlog.processors.JSONRenderer() if enable_json else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if enable_console:
        console_handler = RichHandler(
            console=console,
            show_time=True,
            show_path=False,
            rich_tracebacks=True,
        )
        console_handler.setLevel(getattr(logging, log_level.upper()))
        console_handler.setFormatter(logging.Formatter('%(message)s'))
        root_logger.addHandler(console_handler)

    file_formatter: logging.Formatter
    if enable_json:
        file_formatter = JSONFormatter()
    else:
        file_formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
        )

    file_handler = logging.handlers.RotatingFileHandler(
        log_dir / f"{app_name}.log",
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding='utf-8'
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(file_formatter)
    root_logger.addHandler(file_handler)

    error_handler = logging.handlers.RotatingFileHandler(
        log_dir / f"{app_name}-errors.log",
        maxBytes=max_bytes,
        backupCount=5,
        encoding='utf-8'
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(file_formatter)
    root_logger.addHandler(error_handler)

    metrics_logger = None
    if enable_metrics:
        metrics_logger_instance = logging.getLogger(f"{app_name}.metrics")
        for handler in metrics_logger_instance.handlers[:]:
            metrics_logger_instance.removeHandler(handler)
            handler.close()
        metrics_handler = logging.handlers.RotatingFileHandler(
            log_dir / f"{app_name}-metrics.jsonl",
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding='utf-8'
        )
        metrics_handler.setLevel(logging.INFO)
        metrics_handler.setFormatter(JSONFormatter())
        metrics_logger_instance.addHandler(metrics_handler)
        metrics_logger_instance.propagate = False
        metrics_logger = MetricsLogger(metrics_logger_instance)
        _metrics_logger = metrics_logger

    if enable_sentry and sentry_dsn:
        sentry_logging = LoggingIntegration(
            level=logging.INFO,
            event_level=logging.ERROR
        )
        sentry_sdk.init(
            dsn=sentry_dsn,
            integrations=[sentry_logging],
            traces_sample_rate=0.1,
        )

    loggers = {
        'main': structlog.get_logger(app_name),
        'capture': structlog.get_logger(f"{app_name}.capture"),
        'tracker': structlog.get_logger(f"{app_name}.tracker"),
        'checkpoint': structlog.get_logger(f"{app_name}.checkpoint"),
        'storage': structlog.get_logger(f"{app_name}.storage"),
        'metrics': metrics_logger,
    }

    loggers['main'].info(
        "logging_initialized",
        app_name=app_name,
        log_level=log_level,
        log_dir=str(log_dir),
        enable_json=enable_json,
        enable_sentry=enable_sentry,
        enable_metrics=enable_metrics,
        pid=os.getpid(),
    )

    return {
        'loggers': loggers,
        'log_dir': log_dir,
        'console': console,
        'config': {
            'app_name': app_name,
            'log_level': log_level,
            'enable_json': enable_json,
            'enable_sentry': enable_sentry,
            'enable_metrics': enable_metrics,
        }
    }


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a logger instance by name."""
    return structlog.get_logger(name)


def log_function_call(logger: structlog.BoundLogger):
    """Decorator to log coroutine calls with timing."""
    def decorator(func):
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            start = time.perf_counter()
            logger.debug(f"calling_{func.__name__}")
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                logger.error(
                    f"failed_{func.__name__}",
                    duration_ms=(time.perf_counter() - start) * 1000,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise
            logger.debug(
                f"completed_{func.__name__}",
                duration_ms=(time.perf_counter() - start) * 1000,
            )
            return result

        if not asyncio.iscoroutinefunction(func):
            raise TypeError("log_function_call only wraps coroutine functions")
        return async_wrapper

    return decorator


__all__ = [
    'setup_logging',
    'get_logger',
    'get_metrics_logger',
    'log_function_call',
    'MetricsLogger',
    'JSONFormatter',
]
