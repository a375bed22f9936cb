"""Health reporting for external dependencies and the runtime environment."""

from __future__ import annotations

import os
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from repairflow.core.config import PlaybookConfig
from repairflow.core.logging import get_logger
from repairflow.execution.circuit_breaker import CircuitBreakerRegistry, CircuitState

_logger = get_logger("health")

ARTIFACT_MAX_AGE_SECONDS = 24 * 60 * 60


@dataclass(frozen=True)
class EnvValidation:
    """Result of checking required environment variables."""

    valid: bool
    missing: list[str] = field(default_factory=list)


def validate_env(
    names: Iterable[str], environ: Mapping[str, str] | None = None
) -> EnvValidation:
    """Report which of ``names`` are unset or empty."""
    env = os.environ if environ is None else environ
    missing = [name for name in names if not env.get(name)]
    if missing:
        _logger.warning("health.env_missing", missing=missing)
    return EnvValidation(valid=not missing, missing=missing)


def required_env(config: PlaybookConfig) -> list[str]:
    """Environment variables the configured platforms read credentials from."""
    return [config.shop_api.token_env, config.categorizer.api_key_env]


def health_report(registry: CircuitBreakerRegistry) -> dict[str, Any]:
    """Snapshot every known dependency's breaker state.

    Overall status is ``unhealthy`` if any circuit is open, ``degraded`` if
    any has recent failures or is half-open, otherwise ``healthy``.
    """
    dependencies: dict[str, Any] = {}
    states: list[CircuitState] = []
    for name in registry.names():
        breaker = registry.get(name)
        state = breaker.get_state()
        states.append(state)
        dependencies[name] = {
            "state": state.value,
            "consecutive_failures": breaker.consecutive_failures,
            "retry_in_seconds": breaker.time_until_retry(),
            "stats": breaker.get_stats().to_dict(),
        }

    if CircuitState.OPEN in states:
        status = "unhealthy"
    elif CircuitState.DEGRADED in states or CircuitState.HALF_OPEN in states:
        status = "degraded"
    else:
        status = "healthy"

    return {
        "status": status,
        "dependencies": dependencies,
        "timestamp": datetime.now(UTC).isoformat(),
    }


def cleanup_artifacts(
    directory: Path,
    max_age_seconds: float = ARTIFACT_MAX_AGE_SECONDS,
    dry_run: bool = False,
    now: float | None = None,
) -> int:
    """Delete exported documents older than ``max_age_seconds``.

    Returns:
        Number of files removed (or that would be removed on a dry run).
    """
    directory = Path(directory)
    if not directory.is_dir():
        return 0

    cutoff = (time.time() if now is None else now) - max_age_seconds
    removed = 0
    for path in directory.glob("estimate-*.pdf"):
        try:
            if path.stat().st_mtime >= cutoff:
                continue
            if not dry_run:
                path.unlink()
            removed += 1
        except OSError:
            _logger.warning("health.cleanup_failed", path=str(path), exc_info=True)

    _logger.info("health.artifacts_cleaned", removed=removed, dry_run=dry_run)
    return removed


__all__ = [
    "EnvValidation",
    "cleanup_artifacts",
    "health_report",
    "required_env",
    "validate_env",
]
