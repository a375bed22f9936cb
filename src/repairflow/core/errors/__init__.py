"""Failure classification and the repairflow exception hierarchy."""

from repairflow.core.errors.codes import (
    RETRYABLE_CLASSES,
    TERMINAL_CLASSES,
    FailureClass,
    is_retryable,
)
from repairflow.core.errors.models import (
    AuthenticationError,
    CircuitOpenError,
    NotFoundError,
    PlatformNetworkError,
    PlatformTimeoutError,
    PlatformUnavailableError,
    PlaybookError,
    ResponseParseError,
    StaleSessionError,
)
from repairflow.core.errors.classifier import FailureClassifier, classify

__all__ = [
    "AuthenticationError",
    "CircuitOpenError",
    "FailureClass",
    "FailureClassifier",
    "NotFoundError",
    "PlatformNetworkError",
    "PlatformTimeoutError",
    "PlatformUnavailableError",
    "PlaybookError",
    "RETRYABLE_CLASSES",
    "ResponseParseError",
    "StaleSessionError",
    "TERMINAL_CLASSES",
    "classify",
    "is_retryable",
]
