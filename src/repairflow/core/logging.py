"""Structured logging infrastructure for repairflow.

Provides structured logging using structlog with run-specific context such
as run_id, estimate_id and the current phase. Supports console and JSON
output, optionally mirrored to a rotating log file.

Example usage:
    from repairflow.core.logging import get_logger, configure_logging, with_context

    # Configure once at startup
    configure_logging(level="DEBUG", format="console")

    # Get a component-specific logger
    logger = get_logger("playbook")

    # Log with auto-context
    ctx = RunContext(run_id="abc123")
    with with_context(ctx):
        logger.info("playbook.phase_started", phase="source_parts")
"""

from __future__ import annotations

import logging
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Literal

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

# Field names that must never reach a log sink in clear text
SENSITIVE_PATTERNS = frozenset({
    "api_key",
    "apikey",
    "token",
    "secret",
    "password",
    "credential",
    "authorization",
    "bearer",
})


@dataclass(frozen=True)
class RunContext:
    """Immutable correlation context for one estimate run.

    Attributes:
        run_id: Unique identifier of the playbook run.
        estimate_id: Remote estimate identifier, once known.
        phase: Name of the phase currently executing.
    """

    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    estimate_id: str | None = None
    phase: str | None = None

    def with_phase(self, phase: str) -> RunContext:
        """Return a copy of this context bound to ``phase``."""
        return replace(self, phase=phase)

    def with_estimate(self, estimate_id: str) -> RunContext:
        """Return a copy of this context bound to ``estimate_id``."""
        return replace(self, estimate_id=estimate_id)

    def to_dict(self) -> dict[str, Any]:
        """Context fields for log entries, omitting unset values."""
        result: dict[str, Any] = {"run_id": self.run_id}
        if self.estimate_id is not None:
            result["estimate_id"] = self.estimate_id
        if self.phase is not None:
            result["phase"] = self.phase
        return result


_current_context: ContextVar[RunContext | None] = ContextVar(
    "repairflow_context", default=None
)


def get_current_context() -> RunContext | None:
    """Get the RunContext active in the current task, if any."""
    return _current_context.get()


@contextmanager
def with_context(ctx: RunContext) -> Iterator[RunContext]:
    """Set ``ctx`` as the active RunContext for the duration of a block.

    Args:
        ctx: The context to activate.

    Yields:
        The activated context.
    """
    token = _current_context.set(ctx)
    try:
        yield ctx
    finally:
        _current_context.reset(token)


def _sanitize_value(key: str, value: Any) -> Any:
    key_lower = key.lower()
    for pattern in SENSITIVE_PATTERNS:
        if pattern in key_lower:
            return "[REDACTED]"
    return value


def _sanitize_event_dict(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that redacts sensitive fields (one level deep)."""
    sanitized: EventDict = {}
    for key, value in event_dict.items():
        if isinstance(value, dict):
            sanitized[key] = {k: _sanitize_value(k, v) for k, v in value.items()}
        else:
            sanitized[key] = _sanitize_value(key, value)
    return sanitized


def _add_timestamp(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    event_dict["timestamp"] = datetime.now(UTC).isoformat()
    return event_dict


def _add_context(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that merges the active RunContext.

    Explicitly logged fields take precedence over context fields.
    """
    ctx = get_current_context()
    if ctx is not None:
        for key, value in ctx.to_dict().items():
            event_dict.setdefault(key, value)
    return event_dict


class RepairflowLogger:
    """Component logger wrapper around structlog.

    The underlying structlog logger is fetched lazily on every call so that
    loggers created at import time still honour a later configure_logging().
    """

    def __init__(self, component: str, **initial_context: Any) -> None:
        self._component = component
        self._context: dict[str, Any] = {"component": component, **initial_context}

    def _get_logger(self) -> structlog.stdlib.BoundLogger:
        logger: structlog.stdlib.BoundLogger = structlog.get_logger().bind(**self._context)
        return logger

    def bind(self, **context: Any) -> RepairflowLogger:
        """Create a new logger with additional bound context."""
        new_logger = RepairflowLogger.__new__(RepairflowLogger)
        new_logger._component = self._component
        new_logger._context = {**self._context, **context}
        return new_logger

    def debug(self, event: str, **kw: Any) -> None:
        self._get_logger().debug(event, **kw)

    def info(self, event: str, **kw: Any) -> None:
        self._get_logger().info(event, **kw)

    def warning(self, event: str, **kw: Any) -> None:
        self._get_logger().warning(event, **kw)

    def error(self, event: str, **kw: Any) -> None:
        self._get_logger().error(event, **kw)

    def exception(self, event: str, **kw: Any) -> None:
        """Log an error with traceback; call from inside an except block."""
        self._get_logger().exception(event, **kw)


def _build_processors(renderer: Processor, include_timestamps: bool) -> list[Processor]:
    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        _sanitize_event_dict,
        _add_context,
    ]
    if include_timestamps:
        processors.append(_add_timestamp)
    processors.extend([
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        renderer,
    ])
    return processors


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO",
    format: Literal["json", "console"] = "console",  # noqa: A002
    file_path: Path | None = None,
    max_file_size_mb: int = 20,
    backup_count: int = 5,
    include_timestamps: bool = True,
) -> None:
    """Configure structured logging for the process.

    Call once at startup, before any run begins.

    Args:
        level: Minimum log level to emit.
        format: "console" for human-readable output on stderr, "json" for
            one JSON object per line.
        file_path: Optional rotating log file receiving the same entries.
        max_file_size_mb: File size that triggers rotation.
        backup_count: Number of rotated files to keep.
        include_timestamps: Whether to stamp entries with ISO8601 UTC time.
    """
    log_level = getattr(logging, level)

    handlers: list[logging.Handler] = []
    stream = sys.stderr if format == "console" else sys.stdout
    stream_handler = logging.StreamHandler(stream)
    stream_handler.setLevel(log_level)
    handlers.append(stream_handler)

    if file_path is not None:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            file_path,
            maxBytes=max_file_size_mb * 1024 * 1024,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(log_level)
        handlers.append(file_handler)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in handlers:
        root_logger.addHandler(handler)

    renderer: Processor
    if format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=stream.isatty())

    # cache_logger_on_first_use=False keeps import-time loggers configurable
    structlog.configure(
        processors=_build_processors(renderer, include_timestamps),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(component: str, **initial_context: Any) -> RepairflowLogger:
    """Get a logger bound to ``component``.

    Args:
        component: Component name (e.g. "playbook", "navigator").
        **initial_context: Extra fields bound to every entry.

    Returns:
        A RepairflowLogger that also picks up the active RunContext.
    """
    return RepairflowLogger(component, **initial_context)


__all__ = [
    "RepairflowLogger",
    "RunContext",
    "SENSITIVE_PATTERNS",
    "configure_logging",
    "get_current_context",
    "get_logger",
    "with_context",
]
