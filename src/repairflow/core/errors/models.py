"""Exception hierarchy for repairflow.

All collaborator-boundary errors inherit from PlaybookError so callers can
catch broadly or narrowly. An error may carry an explicit classification
hint; operations that already know their failure kind should set it, and it
is never rewritten downstream.
"""

from __future__ import annotations

from .codes import FailureClass


class PlaybookError(Exception):
    """Base exception for errors raised while driving an external platform.

    Attributes:
        failure_class: Explicit classification hint, or None to let the
            classifier inspect the message.
        retryable: Per-error retry override. True forces a retry even for a
            terminal class; False forbids one even for a retryable class;
            None defers to the class.
    """

    failure_class: FailureClass | None = None

    def __init__(
        self,
        message: str,
        *,
        failure_class: FailureClass | None = None,
        retryable: bool | None = None,
    ) -> None:
        super().__init__(message)
        if failure_class is not None:
            self.failure_class = failure_class
        self.retryable = retryable

    @property
    def message(self) -> str:
        return str(self)


class PlatformTimeoutError(PlaybookError):
    """A remote interaction exceeded its per-call timeout."""

    failure_class = FailureClass.TIMEOUT


class StaleSessionError(PlaybookError):
    """The remote session was lost (redirected to login, page detached)."""

    failure_class = FailureClass.STALE_SESSION


class PlatformNetworkError(PlaybookError):
    """The remote platform could not be reached."""

    failure_class = FailureClass.NETWORK


class AuthenticationError(PlaybookError):
    """Credentials were missing or rejected."""

    failure_class = FailureClass.AUTH_FAILED


class PlatformUnavailableError(PlaybookError):
    """The platform answered but is down or in maintenance."""

    failure_class = FailureClass.PLATFORM_UNAVAILABLE


class NotFoundError(PlaybookError):
    """The requested remote entity or result does not exist."""

    failure_class = FailureClass.NOT_FOUND


class ResponseParseError(PlaybookError):
    """The remote platform returned a body that could not be interpreted."""

    failure_class = FailureClass.PARSE_ERROR


class CircuitOpenError(PlaybookError):
    """Raised instead of calling a dependency whose circuit is open.

    Terminal by class and never retried.
    """

    failure_class = FailureClass.CIRCUIT_OPEN

    def __init__(self, name: str, remaining_seconds: float) -> None:
        super().__init__(
            f"Circuit open for {name}: cooling down "
            f"({round(remaining_seconds)}s remaining)",
            retryable=False,
        )
        self.name = name
        self.remaining_seconds = remaining_seconds
