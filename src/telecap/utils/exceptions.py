"""
TeleCap Custom Exceptions
=========================

Exception hierarchy for the capture engine with severity, context and
recovery suggestions, plus the result type used to hand capture failures
back to callers without raising into the control loop.
"""

import errno
import logging
import traceback
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar

from telecap.utils.logger import get_logger


class ErrorSeverity(Enum):
    """Error severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories for classification."""
    STORAGE = "storage"
    TELEMETRY = "telemetry"
    VIDEO = "video"
    CONFIGURATION = "configuration"
    SYSTEM = "system"


@dataclass
class ErrorContext:
    """Additional context information for errors."""
    component: str
    operation: Optional[str] = None
    stream: Optional[str] = None
    path: Optional[str] = None
    timestamp: Optional[datetime] = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now()


@dataclass
class RecoverySuggestion:
    """Recovery suggestion for error handling."""
    action: str
    description: str
    automated: bool = False
    priority: int = 1  # 1=high, 2=medium, 3=low


class TeleCapError(Exception):
    """Base exception class for all TeleCap errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.SYSTEM,
        context: Optional[ErrorContext] = None,
        recovery_suggestions: Optional[List[RecoverySuggestion]] = None,
        technical_details: Optional[Dict[str, Any]] = None,
        original_exception: Optional[BaseException] = None
    ):
        super().__init__(message)

        self.message = message
        self.severity = severity
        self.category = category
        self.error_code = error_code or self._generate_error_code()
        self.context = context or ErrorContext(component="unknown")
        self.recovery_suggestions = recovery_suggestions or []
        self.technical_details = technical_details or {}
        self.original_exception = original_exception
        self.traceback_info = traceback.format_exc() if original_exception else None

    def _generate_error_code(self) -> str:
        """Generate error code from category, severity and time."""
        category_code = self.category.value[:3].upper()
        severity_code = self.severity.value[0].upper()
        timestamp_code = datetime.now().strftime("%H%M%S")
        return f"TC-{category_code}-{severity_code}{timestamp_code}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for serialization."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "context": {
                "component": self.context.component,
                "operation": self.context.operation,
                "stream": self.context.stream,
                "path": self.context.path,
                "timestamp": self.context.timestamp.isoformat() if self.context.timestamp else None,
            },
            "recovery_suggestions": [
                {
                    "action": s.action,
                    "description": s.description,
                    "automated": s.automated,
                    "priority": s.priority,
                }
                for s in self.recovery_suggestions
            ],
            "technical_details": self.technical_details,
            "original_exception": str(self.original_exception) if self.original_exception else None,
        }


# ============ CAPTURE ERRORS ============

class CaptureError(TeleCapError):
    """Base class for storage and capture failures.

    These are never raised into the caller's control loop. Writers return
    them inside a WriterResult and the owning session disables the feature.
    """

    def __init__(self, message: str, path: Optional[str] = None, stream: Optional[str] = None, **kwargs):
        kwargs.setdefault('category', ErrorCategory.STORAGE)
        kwargs['context'] = kwargs.get('context') or ErrorContext(
            component=kwargs.pop('component', 'capture'),
            stream=stream,
            path=path
        )
        super().__init__(message, **kwargs)


class StorageUnavailableError(CaptureError):
    """Not enough free space on the target volume, or the volume is unreadable."""

    def __init__(self, path: str, free_bytes: Optional[int], minimum_bytes: int, **kwargs):
        if free_bytes is None:
            message = f"Unable to determine free space for {path}"
        else:
            message = f"Insufficient free space at {path}: {free_bytes} bytes free, need more than {minimum_bytes}"
        kwargs['severity'] = ErrorSeverity.LOW
        kwargs['technical_details'] = {
            "free_bytes": free_bytes,
            "minimum_bytes": minimum_bytes
        }
        kwargs['recovery_suggestions'] = [
            RecoverySuggestion(
                action="free_storage",
                description="Remove old captures or lower the retention counts",
                priority=1
            )
        ]
        super().__init__(message, path=path, **kwargs)


class OpenFailureError(CaptureError):
    """A capture file could not be opened."""

    def __init__(self, path: str, reason: str, **kwargs):
        message = f"Failed to open {path}: {reason}"
        kwargs.setdefault('severity', ErrorSeverity.MEDIUM)
        kwargs['technical_details'] = {"reason": reason}
        kwargs['recovery_suggestions'] = [
            RecoverySuggestion(
                action="check_storage_directory",
                description="Verify the storage directory exists and is writable",
                priority=1
            )
        ]
        super().__init__(message, path=path, **kwargs)


class WriteFailureError(CaptureError):
    """Writing to an open capture file failed mid-session."""

    def __init__(self, path: str, reason: str, **kwargs):
        message = f"Write to {path} failed: {reason}"
        kwargs.setdefault('severity', ErrorSeverity.MEDIUM)
        kwargs['technical_details'] = {"reason": reason}
        super().__init__(message, path=path, **kwargs)


class RotationFailureError(CaptureError):
    """Renaming or deleting an old capture file failed."""

    def __init__(self, path: str, reason: str, **kwargs):
        message = f"Rotation of {path} failed: {reason}"
        kwargs['severity'] = ErrorSeverity.LOW
        kwargs['technical_details'] = {"reason": reason}
        super().__init__(message, path=path, **kwargs)


# ============ CONFIGURATION ERRORS ============

class ConfigurationError(TeleCapError):
    """Base class for configuration errors."""

    def __init__(self, message: str, **kwargs):
        kwargs['category'] = ErrorCategory.CONFIGURATION
        kwargs['context'] = kwargs.get('context') or ErrorContext(component="config_manager")
        super().__init__(message, **kwargs)


class ConfigFileError(ConfigurationError):
    """Configuration file could not be read or written."""

    def __init__(self, config_file: str, reason: str, **kwargs):
        message = f"Configuration file error in {config_file}: {reason}"
        kwargs['technical_details'] = {
            "config_file": config_file,
            "error_reason": reason
        }
        kwargs['recovery_suggestions'] = [
            RecoverySuggestion(
                action="create_default_config",
                description="Run 'telecap init' to create a default configuration file",
                priority=1
            ),
            RecoverySuggestion(
                action="validate_config_syntax",
                description="Check configuration file syntax",
                priority=2
            )
        ]
        super().__init__(message, **kwargs)


class ConfigValidationError(ConfigurationError):
    """Configuration validation failed."""

    def __init__(self, field: str, value: Any, expected: str, **kwargs):
        message = f"Invalid configuration value for '{field}': {value} (expected: {expected})"
        kwargs['technical_details'] = {
            **kwargs.get('technical_details', {}),
            "field": field,
            "invalid_value": str(value),
            "expected_format": expected
        }
        super().__init__(message, **kwargs)


# ============ RESULT TYPE ============

W = TypeVar('W')


@dataclass
class WriterResult(Generic[W]):
    """Outcome of starting a capture writer.

    Exactly one of ``writer`` and ``error`` is set.
    """
    writer: Optional[W] = None
    error: Optional[CaptureError] = None

    @property
    def ok(self) -> bool:
        return self.writer is not None

    @classmethod
    def success(cls, writer: W) -> 'WriterResult[W]':
        return cls(writer=writer)

    @classmethod
    def failure(cls, error: CaptureError) -> 'WriterResult[W]':
        return cls(error=error)


# ============ UTILITY FUNCTIONS ============

def handle_exception(
    operation: str,
    exception: BaseException,
    component: str,
    path: Optional[str] = None,
    stream: Optional[str] = None
) -> TeleCapError:
    """Convert a generic exception into a TeleCapError with context."""
    if isinstance(exception, TeleCapError):
        return exception

    context = ErrorContext(component=component, operation=operation, stream=stream, path=path)
    reason = f"{type(exception).__name__}: {exception}"
    target = path or getattr(exception, 'filename', None) or "unknown"

    if isinstance(exception, OSError) and exception.errno == errno.ENOSPC:
        return WriteFailureError(str(target), reason, severity=ErrorSeverity.HIGH,
                                 original_exception=exception, context=context)

    if operation in ("rotate", "sweep"):
        return RotationFailureError(str(target), reason, original_exception=exception, context=context)

    if operation in ("open", "start"):
        return OpenFailureError(str(target), reason, original_exception=exception, context=context)

    if operation == "write" or isinstance(exception, (OSError, ValueError)):
        return WriteFailureError(str(target), reason, original_exception=exception, context=context)

    return TeleCapError(
        message=f"Unexpected error in {operation}: {reason}",
        category=ErrorCategory.SYSTEM,
        original_exception=exception,
        context=context
    )


def log_error(error: TeleCapError, logger=None):
    """Log a TeleCapError with a level chosen by severity."""
    if logger is None:
        logger = get_logger("errors")

    if error.severity == ErrorSeverity.CRITICAL:
        log_level = logging.CRITICAL
    elif error.severity == ErrorSeverity.HIGH:
        log_level = logging.ERROR
    elif error.severity == ErrorSeverity.MEDIUM:
        log_level = logging.WARNING
    else:
        log_level = logging.INFO

    logger.log(
        log_level,
        f"{error.error_code}: {error.message}",
        error_code=error.error_code,
        operation=error.context.operation,
        severity=error.severity.value,
        category=error.category.value
    )
