"""Error taxonomy and handling for result harvesting.

- Classification of binding failures into enhanced errors
- Error context preservation for debugging
- Severity-based logging and per-category statistics

Only ``BindingUnavailable`` is meant to propagate to callers. Every other
condition here is recorded and folded into a structured result.
"""

from __future__ import annotations

import logging
import traceback
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from ..models import StabilityReport


class ErrorSeverity(str, Enum):
    """Error severity levels for prioritized handling."""
    CRITICAL = "critical"  # Binding gone, call cannot continue
    HIGH = "high"          # Programming error
    MEDIUM = "medium"      # Recoverable, result flagged
    LOW = "low"            # Per-candidate issue, skipped
    INFO = "info"          # Expected outcome


class ErrorCategory(str, Enum):
    """Error categories for targeted handling."""
    BINDING = "binding"        # Automation binding unreachable
    STABILITY = "stability"    # Page never settled
    PARSING = "parsing"        # Captured payload unreadable
    VALIDATION = "validation"  # Record failed the quality gate
    SESSION = "session"        # Session state machine misuse
    EXTRACTION = "extraction"  # Chain produced nothing
    UNKNOWN = "unknown"


class ErrorContext(BaseModel):
    """Detailed error context for debugging."""
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    session_id: Optional[str] = None
    strategy: Optional[str] = None
    url: Optional[str] = None
    selector: Optional[str] = None
    parameters: Dict[str, Any] = Field(default_factory=dict)
    traceback: Optional[str] = None


class EnhancedError(Exception):
    """Base enhanced error with category, severity and context."""

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        context: Optional[ErrorContext] = None,
        cause: Optional[BaseException] = None
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()
        self.cause = cause

        if not self.context.traceback and cause is not None:
            self.context.traceback = ''.join(
                traceback.format_exception(type(cause), cause, cause.__traceback__)
            )

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging."""
        return {
            "message": self.message,
            "category": self.category.value,
            "severity": self.severity.value,
            "context": self.context.model_dump(mode="json"),
            "cause": str(self.cause) if self.cause else None
        }


class BindingUnavailable(EnhancedError):
    """The browser-automation binding cannot be reached. Fatal, never retried."""
    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.BINDING,
            severity=ErrorSeverity.CRITICAL,
            **kwargs
        )


class StabilityTimeout(EnhancedError):
    """The page did not settle before the hard ceiling (or the wait was cancelled)."""
    def __init__(self, message: str, report: Optional["StabilityReport"] = None, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.STABILITY,
            severity=ErrorSeverity.MEDIUM,
            **kwargs
        )
        self.report = report


class MalformedCapture(EnhancedError):
    """A captured payload could not be parsed."""
    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.PARSING,
            severity=ErrorSeverity.LOW,
            **kwargs
        )


class MissingCoreFields(EnhancedError):
    """A candidate lacks a name or any of price/availability/id."""
    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.VALIDATION,
            severity=ErrorSeverity.LOW,
            **kwargs
        )


class NoStrategySucceeded(EnhancedError):
    """Every strategy was inapplicable or gated out. A valid empty outcome."""
    def __init__(self, message: str = "no_strategy_succeeded", **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.EXTRACTION,
            severity=ErrorSeverity.INFO,
            **kwargs
        )


class InvalidTransition(EnhancedError):
    """Session state machine was driven through an illegal transition."""
    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.SESSION,
            severity=ErrorSeverity.HIGH,
            **kwargs
        )


_BINDING_FAILURE_TERMS = (
    'target closed', 'target page, context or browser has been closed',
    'browser has been closed', 'disconnected', 'crashed', 'connection refused',
    'connect econnrefused', 'websocket', 'no page attached',
)


def classify_binding_error(error: BaseException, context: Optional[ErrorContext] = None) -> EnhancedError:
    """Classify an exception raised by the binding into an enhanced error."""
    if isinstance(error, EnhancedError):
        return error

    error_str = str(error).lower()
    error_type = type(error).__name__.lower()

    if isinstance(error, (ConnectionError, OSError)) or any(term in error_str for term in _BINDING_FAILURE_TERMS):
        return BindingUnavailable(str(error) or error_type, context=context, cause=error)

    if 'json' in error_str or 'decode' in error_type:
        return MalformedCapture(str(error), context=context, cause=error)

    return EnhancedError(
        str(error),
        category=ErrorCategory.UNKNOWN,
        context=context,
        cause=error
    )


_SEVERITY_LEVELS = {
    ErrorSeverity.CRITICAL: logging.CRITICAL,
    ErrorSeverity.HIGH: logging.ERROR,
    ErrorSeverity.MEDIUM: logging.WARNING,
    ErrorSeverity.LOW: logging.INFO,
    ErrorSeverity.INFO: logging.DEBUG,
}


class ErrorHandler:
    """Logs enhanced errors at their severity and keeps per-category counts."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("harvester.errors")
        self.error_counts: Dict[str, int] = {}
        self.last_errors: Dict[str, datetime] = {}

    def handle(self, error: BaseException, context: Optional[ErrorContext] = None) -> EnhancedError:
        """Classify, log and count an error. Returns the enhanced error."""
        enhanced = classify_binding_error(error, context)
        self._log_error(enhanced)
        key = f"{enhanced.category.value}:{enhanced.severity.value}"
        self.error_counts[key] = self.error_counts.get(key, 0) + 1
        self.last_errors[key] = datetime.utcnow()
        return enhanced

    def _log_error(self, error: EnhancedError) -> None:
        level = _SEVERITY_LEVELS.get(error.severity, logging.WARNING)
        self.logger.log(level, f"[{error.category.value}] {error.message}")

    def get_error_stats(self) -> Dict[str, Any]:
        """Get current error statistics."""
        return {
            "error_counts": dict(self.error_counts),
            "recent_errors": {
                k: v.isoformat() for k, v in self.last_errors.items()
                if (datetime.utcnow() - v).total_seconds() < 3600
            }
        }
