"""Execution layer: retry policy, circuit breakers, progress and diagnostics."""

from repairflow.execution.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitBreakerStats,
    CircuitState,
    get_shared_registry,
)
from repairflow.execution.diagnostics import DiagnosticHook, JsonDumpHook
from repairflow.execution.progress import ProgressChannel, ProgressEvent
from repairflow.execution.retry import RetryContext, with_retry

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitBreakerStats",
    "CircuitState",
    "DiagnosticHook",
    "JsonDumpHook",
    "ProgressChannel",
    "ProgressEvent",
    "RetryContext",
    "get_shared_registry",
    "with_retry",
]
