"""Reliability module: error taxonomy and handling for result harvesting."""

from .errors import (
    ErrorHandler, ErrorContext, EnhancedError,
    ErrorCategory, ErrorSeverity,
    BindingUnavailable, StabilityTimeout, MalformedCapture,
    MissingCoreFields, NoStrategySucceeded, InvalidTransition,
    classify_binding_error
)

__all__ = [
    'ErrorHandler', 'ErrorContext', 'EnhancedError',
    'ErrorCategory', 'ErrorSeverity',
    'BindingUnavailable', 'StabilityTimeout', 'MalformedCapture',
    'MissingCoreFields', 'NoStrategySucceeded', 'InvalidTransition',
    'classify_binding_error'
]
