"""
Logging and error handling framework for ntm-robot.

This module provides:
- Structured logging configuration
- Domain exception classes carrying machine-readable error codes
- Error handling, performance and audit decorators (sync and async)
- Context-aware logging utilities
"""

import asyncio
import functools
import json
import logging
import sys
import time
import traceback
from collections.abc import Callable
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from ..core.enums import ErrorCode


class LogLevel(str, Enum):
    """Log level enumeration for type safety."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogContext(str, Enum):
    """Log context categories for structured logging."""

    ROBOT = "robot"
    REGISTRY = "registry"
    DETECTOR = "detector"
    ACTIVITY = "activity"
    CONFLICTS = "conflicts"
    TRACKER = "tracker"
    TMUX = "tmux"
    TOOLS = "tools"
    ALERTS = "alerts"
    CONTEXT = "context"
    OUTPUT = "output"
    CASS = "cass"
    CLI = "cli"
    CONFIG = "config"


class NtmRobotError(Exception):
    """Base exception class for all ntm-robot errors."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        hint: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.hint = hint
        self.timestamp = datetime.now(timezone.utc)


class ValidationError(NtmRobotError):
    """Invalid input such as a malformed flag, session name or tag."""

    code = ErrorCode.INVALID_FLAG


class SessionNotFoundError(NtmRobotError):
    """The requested tmux session does not exist."""

    code = ErrorCode.SESSION_NOT_FOUND


class PaneNotFoundError(NtmRobotError):
    """The requested pane no longer exists."""

    code = ErrorCode.PANE_NOT_FOUND


class DependencyMissingError(NtmRobotError):
    """An external tool is not installed or is incompatible."""

    code = ErrorCode.DEPENDENCY_MISSING


class ToolTimeoutError(NtmRobotError):
    """An external invocation exceeded its deadline or was cancelled."""

    code = ErrorCode.TIMEOUT


class ToolError(NtmRobotError):
    """An external tool failed or produced unparseable output."""

    code = ErrorCode.INTERNAL_ERROR


class TmuxError(NtmRobotError):
    """Errors reported by the tmux multiplexer."""

    code = ErrorCode.INTERNAL_ERROR


class ConfigurationError(NtmRobotError):
    """Errors related to configuration and setup."""

    code = ErrorCode.INVALID_FLAG


class AlertDeliveryError(NtmRobotError):
    """An alert channel failed to deliver."""

    code = ErrorCode.INTERNAL_ERROR


class StructuredFormatter(logging.Formatter):
    """Custom formatter for structured JSON logging."""

    _standard_fields = {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "getMessage",
        "context",
        "session",
        "pane",
    }

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if hasattr(record, "context"):
            log_data["context"] = record.context
        if getattr(record, "session", None):
            log_data["session"] = record.session
        if getattr(record, "pane", None):
            log_data["pane"] = record.pane

        for key, value in record.__dict__.items():
            if key not in self._standard_fields and not key.startswith("_"):
                log_data[key] = value

        if record.exc_info and record.exc_info[0] is not None:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info),
            }

        return json.dumps(log_data, default=str)


class ContextualLogger:
    """Logger with context management for structured logging."""

    def __init__(self, name: str, context: LogContext):
        self.logger = logging.getLogger(name)
        self.context = context.value
        self.session: str | None = None
        self.pane: str | None = None

    def set_session(self, session: str | None) -> None:
        """Set the session name for all subsequent log messages."""
        self.session = session

    def set_pane(self, pane: str | None) -> None:
        """Set the pane id for all subsequent log messages."""
        self.pane = pane

    def _extra(self, extra_context: dict[str, Any] | None) -> dict[str, Any]:
        extra: dict[str, Any] = {"context": self.context}
        if self.session:
            extra["session"] = self.session
        if self.pane:
            extra["pane"] = self.pane
        if extra_context:
            extra.update(extra_context)
        return extra

    def _log(
        self, level: int, message: str, extra_context: dict[str, Any] | None = None
    ) -> None:
        """Internal logging method with context injection."""
        self.logger.log(level, message, extra=self._extra(extra_context))

    def debug(self, message: str, **kwargs) -> None:
        """Log debug message with context."""
        self._log(logging.DEBUG, message, kwargs)

    def info(self, message: str, **kwargs) -> None:
        """Log info message with context."""
        self._log(logging.INFO, message, kwargs)

    def warning(self, message: str, **kwargs) -> None:
        """Log warning message with context."""
        self._log(logging.WARNING, message, kwargs)

    def error(self, message: str, exception: Exception | None = None, **kwargs) -> None:
        """Log error message with context and optional exception."""
        if exception:
            self.logger.error(message, exc_info=exception, extra=self._extra(kwargs))
        else:
            self._log(logging.ERROR, message, kwargs)

    def critical(
        self, message: str, exception: Exception | None = None, **kwargs
    ) -> None:
        """Log critical message with context and optional exception."""
        if exception:
            self.logger.critical(
                message, exc_info=exception, extra=self._extra(kwargs)
            )
        else:
            self._log(logging.CRITICAL, message, kwargs)


def get_logger(name: str, context: LogContext) -> ContextualLogger:
    """Get a contextual logger instance."""
    return ContextualLogger(name, context)


def setup_logging(
    log_level: str | LogLevel = LogLevel.WARNING,
    log_file: Path | None = None,
    enable_structured: bool = True,
    enable_console: bool = True,
) -> None:
    """
    Setup logging configuration.

    Console output goes to stderr; stdout is reserved for robot envelopes.

    Args:
        log_level: Minimum log level to capture
        log_file: Optional file path for log output
        enable_structured: Use JSON structured logging format
        enable_console: Enable console output
    """
    if isinstance(log_level, LogLevel):
        log_level = log_level.value

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)

    plain = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    handlers: list[logging.Handler] = []

    if enable_console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(
            StructuredFormatter() if enable_structured else plain
        )
        handlers.append(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(StructuredFormatter() if enable_structured else plain)
        handlers.append(file_handler)

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper()))
    for handler in handlers:
        root_logger.addHandler(handler)

    # Suppress noisy third-party loggers
    logging.getLogger("git").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("libtmux").setLevel(logging.WARNING)


def handle_errors(
    log_context: LogContext = LogContext.ROBOT,
    reraise: bool = True,
    default: Any = None,
):
    """
    Decorator that logs failures and wraps unexpected exceptions.

    Domain errors (``NtmRobotError``) are logged and re-raised unchanged.
    Anything else is wrapped in ``NtmRobotError`` with code INTERNAL_ERROR.
    Works for both plain functions and coroutines.

    Args:
        log_context: Context for logging
        reraise: Whether to reraise the exception after handling
        default: Value returned when ``reraise`` is False
    """

    def decorator(func: Callable) -> Callable:
        logger = get_logger(func.__module__, log_context)

        def _handle(e: Exception) -> Any:
            if isinstance(e, NtmRobotError):
                logger.error(
                    f"ntm-robot error in {func.__name__}: {e.message}",
                    function=func.__name__,
                    error_code=e.code.value,
                    error_context=e.context,
                )
                if reraise:
                    raise e
                return default

            logger.error(
                f"Unexpected error in {func.__name__}: {e}",
                exception=e,
                function=func.__name__,
            )
            if reraise:
                raise NtmRobotError(
                    f"Unexpected error in {func.__name__}: {e}",
                    context={"function": func.__name__},
                ) from e
            return default

        if asyncio.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                try:
                    return await func(*args, **kwargs)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    return _handle(e)

            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except Exception as e:
                return _handle(e)

        return wrapper

    return decorator


def log_performance(log_context: LogContext = LogContext.ROBOT):
    """Decorator to log function execution time (sync or async)."""

    def decorator(func: Callable) -> Callable:
        logger = get_logger(func.__module__, log_context)

        def _report(start_time: float, error: Exception | None = None) -> None:
            execution_time = time.perf_counter() - start_time
            if error is None:
                logger.debug(
                    f"Performance: {func.__name__} completed",
                    function=func.__name__,
                    execution_time=execution_time,
                    status="success",
                )
            else:
                logger.warning(
                    f"Performance: {func.__name__} failed",
                    function=func.__name__,
                    execution_time=execution_time,
                    status="error",
                    error=str(error),
                )

        if asyncio.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                start_time = time.perf_counter()
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    _report(start_time, e)
                    raise
                _report(start_time)
                return result

            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                _report(start_time, e)
                raise
            _report(start_time)
            return result

        return wrapper

    return decorator


def audit_log(action: str, log_context: LogContext = LogContext.ROBOT):
    """Decorator for audit logging of operations that touch panes."""

    def decorator(func: Callable) -> Callable:
        logger = get_logger(f"{func.__module__}.audit", log_context)

        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            logger.info(f"Audit: {action} started", action=action, function=func.__name__)
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                logger.error(
                    f"Audit: {action} failed",
                    action=action,
                    function=func.__name__,
                    status="error",
                    error=str(e),
                )
                raise
            logger.info(
                f"Audit: {action} completed",
                action=action,
                function=func.__name__,
                status="success",
            )
            return result

        return wrapper

    return decorator
