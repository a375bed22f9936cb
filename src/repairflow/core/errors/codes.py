"""Failure classes and retry semantics.

Failure Class Taxonomy
======================

Every error raised at a collaborator boundary maps to exactly one
``FailureClass``. The class decides whether the retry policy may spend
budget on it.

    | Class                | Retryable | Typical source                      |
    |----------------------|-----------|-------------------------------------|
    | TIMEOUT              | Yes       | slow page, slow HTTP round trip     |
    | STALE_SESSION        | Yes       | redirected to login, detached tab   |
    | NETWORK              | Yes       | connection refused, DNS failure     |
    | AUTH_FAILED          | No        | 401/403, bad credentials            |
    | PLATFORM_UNAVAILABLE | No        | 503, maintenance page               |
    | NOT_FOUND            | No        | 404, empty search results           |
    | PARSE_ERROR          | No        | malformed response body             |
    | UNKNOWN              | No        | anything unrecognised               |
    | CIRCUIT_OPEN         | No        | breaker rejected the call           |

Usage::

    failure = classify(exc)
    if is_retryable(failure):
        ...
"""

from __future__ import annotations

from enum import Enum


class FailureClass(str, Enum):
    """Classification tag attached to a raised error."""

    TIMEOUT = "TIMEOUT"
    STALE_SESSION = "STALE_SESSION"
    NETWORK = "NETWORK"
    AUTH_FAILED = "AUTH_FAILED"
    PLATFORM_UNAVAILABLE = "PLATFORM_UNAVAILABLE"
    NOT_FOUND = "NOT_FOUND"
    PARSE_ERROR = "PARSE_ERROR"
    UNKNOWN = "UNKNOWN"
    CIRCUIT_OPEN = "CIRCUIT_OPEN"
    """Raised by the circuit breaker itself, never by a collaborator."""


RETRYABLE_CLASSES: frozenset[FailureClass] = frozenset({
    FailureClass.TIMEOUT,
    FailureClass.STALE_SESSION,
    FailureClass.NETWORK,
})

TERMINAL_CLASSES: frozenset[FailureClass] = frozenset(
    fc for fc in FailureClass if fc not in RETRYABLE_CLASSES
)


def is_retryable(failure: FailureClass) -> bool:
    """Whether the retry policy may re-attempt an operation failing with ``failure``."""
    return failure in RETRYABLE_CLASSES
