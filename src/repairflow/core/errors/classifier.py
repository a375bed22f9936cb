"""Failure classification for errors raised by external actions.

The classifier is a pure function of the error object: it honours an
explicit ``failure_class`` hint when present, otherwise matches the error
message against pattern groups in a fixed precedence order.
"""

from __future__ import annotations

import re

from .codes import FailureClass

# =============================================================================
# Default pattern strings, checked top to bottom. First group to match wins.
# =============================================================================

_TIMEOUT_PATTERNS: list[str] = [
    r"timeout",
    r"timed out",
    r"ETIMEDOUT",
]

_STALE_SESSION_PATTERNS: list[str] = [
    r"login",
    r"redirect",
    r"session.{0,10}(expired|closed|detached)",
    r"target closed",
    r"detached frame",
]

_NETWORK_PATTERNS: list[str] = [
    r"ECONNREFUSED",
    r"ECONNRESET",
    r"ENOTFOUND",
    r"network",
    r"connection.?(refused|reset|error|aborted)",
    r"name.?resolution",
]

_AUTH_PATTERNS: list[str] = [
    r"\b401\b",
    r"\b403\b",
    r"auth",
    r"unauthori[sz]ed",
    r"forbidden",
    r"invalid.?credentials",
]

_PLATFORM_UNAVAILABLE_PATTERNS: list[str] = [
    r"\b503\b",
    r"\b502\b",
    r"maintenance",
    r"service.?unavailable",
    r"bad gateway",
]

_NOT_FOUND_PATTERNS: list[str] = [
    r"not found",
    r"no results",
    r"\b404\b",
]

_PARSE_ERROR_PATTERNS: list[str] = [
    r"parse",
    r"json",
    r"malformed",
    r"unexpected token",
    r"invalid response",
]


def _compile(strings: list[str]) -> list[re.Pattern[str]]:
    return [re.compile(p, re.IGNORECASE) for p in strings]


class FailureClassifier:
    """Maps raised errors to FailureClass tags.

    Pattern groups can be overridden per instance; the precedence order is
    fixed: timeout, stale session, network, auth, platform unavailable,
    not found, parse error.
    """

    def __init__(
        self,
        timeout_patterns: list[str] | None = None,
        stale_session_patterns: list[str] | None = None,
        network_patterns: list[str] | None = None,
        auth_patterns: list[str] | None = None,
        platform_unavailable_patterns: list[str] | None = None,
        not_found_patterns: list[str] | None = None,
        parse_error_patterns: list[str] | None = None,
    ) -> None:
        self._ordered: list[tuple[FailureClass, list[re.Pattern[str]]]] = [
            (FailureClass.TIMEOUT, _compile(timeout_patterns or _TIMEOUT_PATTERNS)),
            (
                FailureClass.STALE_SESSION,
                _compile(stale_session_patterns or _STALE_SESSION_PATTERNS),
            ),
            (FailureClass.NETWORK, _compile(network_patterns or _NETWORK_PATTERNS)),
            (FailureClass.AUTH_FAILED, _compile(auth_patterns or _AUTH_PATTERNS)),
            (
                FailureClass.PLATFORM_UNAVAILABLE,
                _compile(platform_unavailable_patterns or _PLATFORM_UNAVAILABLE_PATTERNS),
            ),
            (FailureClass.NOT_FOUND, _compile(not_found_patterns or _NOT_FOUND_PATTERNS)),
            (
                FailureClass.PARSE_ERROR,
                _compile(parse_error_patterns or _PARSE_ERROR_PATTERNS),
            ),
        ]

    def classify(self, error: BaseException) -> FailureClass:
        """Classify an error.

        Args:
            error: The raised exception.

        Returns:
            The explicit hint carried by the error if any, TIMEOUT for builtin
            timeout errors, else the first matching pattern group, else UNKNOWN.
        """
        hint = getattr(error, "failure_class", None)
        if isinstance(hint, FailureClass):
            return hint
        if isinstance(hint, str):
            try:
                return FailureClass(hint)
            except ValueError:
                pass

        if isinstance(error, TimeoutError):
            return FailureClass.TIMEOUT

        message = str(error)
        for failure_class, patterns in self._ordered:
            if any(p.search(message) for p in patterns):
                return failure_class
        return FailureClass.UNKNOWN


_default_classifier = FailureClassifier()


def classify(error: BaseException) -> FailureClass:
    """Classify ``error`` with the default pattern set."""
    return _default_classifier.classify(error)
