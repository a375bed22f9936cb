"""Pytest fixtures for repairflow tests."""

import logging
from collections.abc import Generator

import pytest
import structlog

from repairflow.core.config import PlaybookConfig
from repairflow.execution.circuit_breaker import CircuitBreakerRegistry
from repairflow.playbook.models import (
    Customer,
    Diagnosis,
    EstimateRequest,
    PartRequest,
    Vehicle,
)
from repairflow.session import Session

from tests.helpers import FakeClock, RecordingSleep


@pytest.fixture(autouse=True)
def reset_logging_state() -> Generator[None, None, None]:
    """Reset structlog and root handlers around each test."""
    structlog.reset_defaults()

    root_logger = logging.getLogger()
    original_handlers = root_logger.handlers[:]
    for handler in original_handlers:
        root_logger.removeHandler(handler)

    yield

    structlog.reset_defaults()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in original_handlers:
        root_logger.addHandler(handler)


@pytest.fixture
def sleep() -> RecordingSleep:
    """Sleep replacement that records requested delays without waiting."""
    return RecordingSleep()


@pytest.fixture
def clock() -> FakeClock:
    """Manually advanced monotonic clock."""
    return FakeClock()


@pytest.fixture
def registry(clock: FakeClock) -> CircuitBreakerRegistry:
    """Fresh breaker registry per test so state never leaks across tests."""
    return CircuitBreakerRegistry(failure_threshold=3, cooldown_seconds=120, clock=clock)


@pytest.fixture
def session() -> Session:
    """A session far from expiry."""
    return Session(token="Bearer test-token", expires_at=4_102_444_800.0)


@pytest.fixture
def config(tmp_path) -> PlaybookConfig:
    """Default configuration writing artifacts under tmp_path."""
    return PlaybookConfig(artifact_dir=tmp_path / "artifacts", labor_rate=120.0)


@pytest.fixture
def request_with_parts() -> EstimateRequest:
    """A typical request: existing-looking customer, one part, a diagnosis."""
    return EstimateRequest(
        customer=Customer(name="Jane Q Doe", phone="555-0100"),
        vehicle=Vehicle(year=2018, make="Honda", model="Civic", displacement="2.0L"),
        diagnosis=Diagnosis(
            codes=["P0420"],
            causes=["Catalytic converter efficiency below threshold"],
            repair_description="Replace catalytic converter",
        ),
        parts=[PartRequest(search_terms=["catalytic converter"])],
    )
