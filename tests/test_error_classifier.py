"""Tests for repairflow.core.errors classification."""

import pytest

from repairflow.core.errors import (
    RETRYABLE_CLASSES,
    TERMINAL_CLASSES,
    AuthenticationError,
    CircuitOpenError,
    FailureClass,
    FailureClassifier,
    NotFoundError,
    PlatformTimeoutError,
    PlaybookError,
    ResponseParseError,
    classify,
    is_retryable,
)


class TestFailureClassTaxonomy:
    """Tests for the retryable/terminal split."""

    def test_retryable_classes(self):
        """Only timeouts, stale sessions and network errors are retryable."""
        assert RETRYABLE_CLASSES == {
            FailureClass.TIMEOUT,
            FailureClass.STALE_SESSION,
            FailureClass.NETWORK,
        }

    def test_every_class_is_either_retryable_or_terminal(self):
        """The two sets partition the taxonomy."""
        assert RETRYABLE_CLASSES | TERMINAL_CLASSES == set(FailureClass)
        assert not RETRYABLE_CLASSES & TERMINAL_CLASSES

    @pytest.mark.parametrize(
        "failure_class",
        [
            FailureClass.AUTH_FAILED,
            FailureClass.PLATFORM_UNAVAILABLE,
            FailureClass.NOT_FOUND,
            FailureClass.PARSE_ERROR,
            FailureClass.UNKNOWN,
            FailureClass.CIRCUIT_OPEN,
        ],
    )
    def test_terminal_classes_are_not_retryable(self, failure_class):
        """Deterministic failures never spend retry budget."""
        assert not is_retryable(failure_class)


class TestClassifyHints:
    """Explicit hints win over message inspection."""

    def test_subclass_hint(self):
        """A typed error classifies by its class attribute."""
        assert classify(PlatformTimeoutError("anything")) == FailureClass.TIMEOUT
        assert classify(NotFoundError("anything")) == FailureClass.NOT_FOUND
        assert classify(ResponseParseError("anything")) == FailureClass.PARSE_ERROR

    def test_hint_beats_message(self):
        """A message that looks like a timeout still honours the hint."""
        error = AuthenticationError("request timed out while logging in")
        assert classify(error) == FailureClass.AUTH_FAILED

    def test_instance_hint(self):
        """A per-instance failure_class is honoured on the base error."""
        error = PlaybookError("odd", failure_class=FailureClass.NETWORK)
        assert classify(error) == FailureClass.NETWORK

    def test_string_hint_on_foreign_error(self):
        """Any exception carrying a valid string hint is honoured."""
        error = RuntimeError("boom")
        error.failure_class = "STALE_SESSION"
        assert classify(error) == FailureClass.STALE_SESSION

    def test_invalid_string_hint_falls_through(self):
        """An unknown hint falls back to message matching."""
        error = RuntimeError("connection refused")
        error.failure_class = "NOT_A_CLASS"
        assert classify(error) == FailureClass.NETWORK

    def test_circuit_open(self):
        """Breaker rejections classify as CIRCUIT_OPEN and are not retryable."""
        error = CircuitOpenError("shop_api", 42.0)
        assert classify(error) == FailureClass.CIRCUIT_OPEN
        assert error.retryable is False
        assert "shop_api" in str(error)

    def test_builtin_timeout(self):
        """asyncio/builtin timeouts classify as TIMEOUT."""
        assert classify(TimeoutError()) == FailureClass.TIMEOUT


class TestClassifyMessages:
    """Pattern-based classification of untyped errors."""

    @pytest.mark.parametrize(
        "message,expected",
        [
            ("Navigation timeout of 30000 ms exceeded", FailureClass.TIMEOUT),
            ("operation timed out", FailureClass.TIMEOUT),
            ("connect ETIMEDOUT 10.0.0.1:443", FailureClass.TIMEOUT),
            ("Redirected to /login", FailureClass.STALE_SESSION),
            ("Target closed", FailureClass.STALE_SESSION),
            ("session expired", FailureClass.STALE_SESSION),
            ("connect ECONNREFUSED 127.0.0.1:9222", FailureClass.NETWORK),
            ("network error", FailureClass.NETWORK),
            ("HTTP 401 from server", FailureClass.AUTH_FAILED),
            ("Forbidden", FailureClass.AUTH_FAILED),
            ("HTTP 503", FailureClass.PLATFORM_UNAVAILABLE),
            ("Scheduled maintenance", FailureClass.PLATFORM_UNAVAILABLE),
            ("customer not found", FailureClass.NOT_FOUND),
            ("No results for query", FailureClass.NOT_FOUND),
            ("Unexpected token < in JSON", FailureClass.PARSE_ERROR),
            ("malformed body", FailureClass.PARSE_ERROR),
            ("something else entirely", FailureClass.UNKNOWN),
        ],
    )
    def test_default_patterns(self, message, expected):
        """Each default pattern group maps to its class."""
        assert classify(RuntimeError(message)) == expected

    def test_precedence_timeout_before_network(self):
        """Timeout patterns are checked before network patterns."""
        assert classify(RuntimeError("network timeout")) == FailureClass.TIMEOUT

    def test_precedence_stale_before_auth(self):
        """A login redirect is a stale session, not an auth failure."""
        assert classify(RuntimeError("auth redirect to login")) == FailureClass.STALE_SESSION

    def test_case_insensitive(self):
        """Patterns ignore case."""
        assert classify(RuntimeError("SERVICE UNAVAILABLE")) == FailureClass.PLATFORM_UNAVAILABLE


class TestCustomClassifier:
    """Pattern groups can be overridden per instance."""

    def test_custom_patterns(self):
        """A custom classifier uses its own patterns."""
        classifier = FailureClassifier(not_found_patterns=[r"vanished"])
        assert classifier.classify(RuntimeError("record vanished")) == FailureClass.NOT_FOUND
        assert classifier.classify(RuntimeError("not found")) == FailureClass.UNKNOWN
