"""Configuration models for repairflow.

Pydantic models loaded from YAML. Secrets are never stored in the file;
each platform names the environment variable that holds its credential.

Example YAML:
    retry:
      max_retries: 2
      base_delay_seconds: 1.0
      jitter_fraction: 0.2
    circuit_breaker:
      failure_threshold: 3
      cooldown_seconds: 120
    shop_api:
      base_url: "https://api.myautoleap.com/api/v1"
    vehicle_unconfirmed_policy: warn
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, model_validator

from repairflow.core.constants import (
    MAX_TREE_LEVELS,
    SETTLE_AFTER_CONTEXT_SECONDS,
    SETTLE_AFTER_SELECT_SECONDS,
)


class RetryConfig(BaseModel):
    """Exponential backoff with jitter for transient failures."""

    max_retries: int = Field(default=2, ge=0, description="Retries after the first attempt")
    base_delay_seconds: float = Field(
        default=1.0, gt=0, description="Delay before the first retry; doubles each attempt"
    )
    jitter_fraction: float = Field(
        default=0.2, ge=0, le=1, description="Delay is randomized by +/- this fraction"
    )
    max_delay_seconds: float = Field(
        default=60.0, gt=0, description="Cap on a single backoff delay"
    )

    @model_validator(mode="after")
    def _validate_delay_range(self) -> RetryConfig:
        if self.base_delay_seconds > self.max_delay_seconds:
            raise ValueError(
                f"base_delay_seconds ({self.base_delay_seconds}) must not exceed "
                f"max_delay_seconds ({self.max_delay_seconds})"
            )
        return self


class CircuitBreakerConfig(BaseModel):
    """Per-dependency circuit breaker settings.

    State transitions:
    - CLOSED: calls flow through, consecutive failures are counted
    - OPEN: calls are rejected after failure_threshold consecutive failures
    - HALF_OPEN: after cooldown_seconds, one trial call is permitted
    """

    enabled: bool = Field(default=True, description="Wrap phase calls in circuit breakers")
    failure_threshold: int = Field(
        default=3, ge=1, le=100, description="Consecutive failures before opening"
    )
    cooldown_seconds: float = Field(
        default=120.0, gt=0, le=3600, description="Seconds the circuit stays open"
    )


class NavigatorConfig(BaseModel):
    """Category-tree navigation settings."""

    max_levels: int = Field(default=MAX_TREE_LEVELS, ge=1, le=MAX_TREE_LEVELS)
    settle_seconds: float = Field(
        default=SETTLE_AFTER_SELECT_SECONDS, ge=0, description="Fixed pause after each selection"
    )
    probe_qualifier: bool = Field(default=True, description="Probe for a leaf qualifier choice")
    probe_add_ons: bool = Field(default=True, description="Probe for leaf add-ons")


class ShopApiConfig(BaseModel):
    """Shop-workflow platform HTTP API."""

    base_url: str = Field(default="https://api.myautoleap.com/api/v1")
    app_origin: str = Field(default="https://app.myautoleap.com")
    timeout_seconds: float = Field(default=30.0, gt=0)
    token_env: str = Field(
        default="AUTOLEAP_TOKEN",
        description="Environment variable holding a pre-acquired bearer token",
    )
    export_path: str = Field(
        default="/estimates/{estimate_id}/pdf",
        description="Path template of the estimate document export",
    )


class CategorizerConfig(BaseModel):
    """External language-model categorization service."""

    model: str = Field(default="claude-haiku-4-5-20251001")
    max_tokens: int = Field(default=100, ge=1)
    api_key_env: str = Field(default="ANTHROPIC_API_KEY")
    timeout_seconds: float = Field(default=30.0, gt=0)


class PlaybookConfig(BaseModel):
    """Top-level configuration for an estimate run."""

    retry: RetryConfig = Field(default_factory=RetryConfig)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)
    navigator: NavigatorConfig = Field(default_factory=NavigatorConfig)
    shop_api: ShopApiConfig = Field(default_factory=ShopApiConfig)
    categorizer: CategorizerConfig = Field(default_factory=CategorizerConfig)

    labor_rate: float = Field(
        default_factory=lambda: float(os.environ.get("AUTOLEAP_LABOR_RATE") or 120.0),
        gt=0,
        description="Shop labor rate reported alongside totals",
    )
    artifact_dir: Path = Field(
        default_factory=lambda: Path(tempfile.gettempdir()),
        description="Directory receiving exported estimate documents",
    )
    vehicle_unconfirmed_policy: Literal["warn", "fail"] = Field(
        default="warn",
        description=(
            "What to do when the vehicle is visible on the estimate but not "
            "confirmed: 'warn' records a warning, 'fail' aborts the run"
        ),
    )
    phase_timeout_seconds: float = Field(
        default=300.0, gt=0, description="Upper bound on a single phase attempt"
    )
    settle_seconds: float = Field(
        default=SETTLE_AFTER_CONTEXT_SECONDS,
        ge=0,
        description="Pause after the estimate page is opened",
    )

    @classmethod
    def from_yaml(cls, path: Path) -> PlaybookConfig:
        """Load configuration from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f)
        return cls.model_validate(data or {})

    @classmethod
    def from_yaml_string(cls, yaml_str: str) -> PlaybookConfig:
        """Load configuration from a YAML string."""
        data = yaml.safe_load(yaml_str)
        return cls.model_validate(data or {})


__all__ = [
    "CategorizerConfig",
    "CircuitBreakerConfig",
    "NavigatorConfig",
    "PlaybookConfig",
    "RetryConfig",
    "ShopApiConfig",
]
