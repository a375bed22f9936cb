"""Request and result models for an estimate run.

Requests are pydantic models validated at the boundary. Results are plain
dataclasses mutated additively by the phases and serialized with
``to_dict()`` for callers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from repairflow.sourcing.selector import Candidate

if TYPE_CHECKING:
    from repairflow.navigation.navigator import NavigationResult


# =============================================================================
# Requests
# =============================================================================


class Customer(BaseModel):
    """Customer as supplied by the caller."""

    name: str = "Customer"
    phone: str | None = None
    email: str | None = None

    def split_name(self) -> tuple[str, str]:
        """First word is the first name; the rest is the last name."""
        parts = (self.name or "Customer").split()
        if not parts:
            return "", ""
        return parts[0], " ".join(parts[1:])


class Vehicle(BaseModel):
    """Vehicle as supplied by the caller."""

    year: int | None = None
    make: str | None = None
    model: str | None = None
    vin: str | None = None
    displacement: str | None = Field(default=None, description="Engine displacement, e.g. '2.0L'")
    drivetrain: str | None = None

    @property
    def is_identified(self) -> bool:
        return bool(self.year or self.make or self.vin)

    def describe(self) -> str:
        return " ".join(str(p) for p in (self.year, self.make, self.model) if p)


class Diagnosis(BaseModel):
    """Prior diagnosis used to steer catalog navigation."""

    codes: list[str] = Field(default_factory=list, description="DTC codes")
    causes: list[str] = Field(default_factory=list, description="Ranked likely causes")
    repair_description: str | None = None

    @property
    def top_cause(self) -> str | None:
        return self.causes[0] if self.causes else None


class PartRequest(BaseModel):
    """One part the caller wants sourced."""

    search_terms: list[str] = Field(default_factory=list)
    part_type: str | None = None
    description: str | None = None

    @property
    def search_term(self) -> str:
        if self.search_terms and self.search_terms[0].strip():
            return self.search_terms[0].strip()
        return (self.part_type or self.description or "").strip()


class EstimateRequest(BaseModel):
    """Everything an estimate run needs from the caller."""

    customer: Customer = Field(default_factory=Customer)
    vehicle: Vehicle = Field(default_factory=Vehicle)
    diagnosis: Diagnosis = Field(default_factory=Diagnosis)
    parts: list[PartRequest] = Field(default_factory=list)


# =============================================================================
# Results
# =============================================================================


class Phase(str, Enum):
    """Ordered phases of an estimate run.

    Values are the names published on the progress channel.
    """

    AUTHENTICATE = "authenticate"
    ESTABLISH_CONTEXT = "establish_context"
    SOURCE_PARTS = "source_parts"
    SOURCE_LABOR = "source_labor"
    LINK_PARTS = "link_parts"
    PERSIST_EXPORT = "persist_export"


HARD_PHASES: frozenset[Phase] = frozenset({Phase.AUTHENTICATE, Phase.ESTABLISH_CONTEXT})
"""Phases whose failure aborts the run."""


class WarningCode(str, Enum):
    """Codes for non-fatal issues recorded on a run."""

    PT_NO_SEARCH_TERM = "PT_NO_SEARCH_TERM"
    PT_PART_FAILED = "PT_PART_FAILED"
    PT_SUBMIT_FAILED = "PT_SUBMIT_FAILED"
    PT_NO_TAB = "PT_NO_TAB"
    MOTOR_FAILED = "MOTOR_FAILED"
    LINK_FAILED = "LINK_FAILED"
    PDF_FAILED = "PDF_FAILED"
    SAVE_FAILED = "SAVE_FAILED"
    TOTALS_UNAVAILABLE = "TOTALS_UNAVAILABLE"
    VEHICLE_CREATE_FAILED = "VEHICLE_CREATE_FAILED"
    VEHICLE_UNCONFIRMED = "VEHICLE_UNCONFIRMED"


@dataclass(frozen=True)
class Warning:
    """A non-fatal issue. Its presence never halts the sequencer."""

    code: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


@dataclass
class PhaseResult:
    """Outcome of one phase."""

    phase: Phase
    success: bool
    data: dict[str, Any] = field(default_factory=dict)
    warnings: list[Warning] = field(default_factory=list)
    error: str | None = None

    def warn(self, code: str | WarningCode, message: str) -> None:
        self.warnings.append(Warning(code=str(getattr(code, "value", code)), message=message))

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "success": self.success,
            "data": self.data,
            "warnings": [w.to_dict() for w in self.warnings],
            "error": self.error,
        }


@dataclass
class Totals:
    """Estimate totals in dollars."""

    labor: float = 0.0
    parts: float = 0.0
    grand: float = 0.0
    source: str = "local"
    """``local`` when summed from line items, ``remote`` when read back."""

    def to_dict(self) -> dict[str, Any]:
        return {
            "labor": self.labor,
            "parts": self.parts,
            "grand": self.grand,
            "source": self.source,
        }


@dataclass
class PlaybookResult:
    """Caller-facing result of an estimate run.

    Created at the start of a run and mutated additively by each phase.
    ``success`` is set only once Persist and Export completes.
    """

    success: bool = False
    customer_id: str | None = None
    vehicle_id: str | None = None
    estimate_id: str | None = None
    ro_number: str | None = None
    parts_added: list[Candidate] = field(default_factory=list)
    labor: NavigationResult | None = None
    labor_hours: float | None = None
    totals: Totals = field(default_factory=Totals)
    labor_rate: float | None = None
    artifact_path: Path | None = None
    warnings: list[Warning] = field(default_factory=list)
    phases: list[PhaseResult] = field(default_factory=list)
    error: str | None = None
    partial_result: dict[str, Any] | None = None

    @property
    def identifiers(self) -> dict[str, str | None]:
        return {
            "customer_id": self.customer_id,
            "vehicle_id": self.vehicle_id,
            "estimate_id": self.estimate_id,
            "ro_number": self.ro_number,
        }

    def warning_codes(self) -> list[str]:
        return [w.code for w in self.warnings]

    def to_dict(self, include_partial: bool = True) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "identifiers": self.identifiers,
            "parts_added": [p.to_dict() for p in self.parts_added],
            "labor": self.labor.to_dict() if self.labor is not None else None,
            "labor_hours": self.labor_hours,
            "totals": self.totals.to_dict(),
            "labor_rate": self.labor_rate,
            "artifact_path": str(self.artifact_path) if self.artifact_path else None,
            "warnings": [w.to_dict() for w in self.warnings],
            "phases": [p.to_dict() for p in self.phases],
            "error": self.error,
        }
        if include_partial:
            data["partial_result"] = self.partial_result
        return data


__all__ = [
    "Customer",
    "Diagnosis",
    "EstimateRequest",
    "HARD_PHASES",
    "PartRequest",
    "Phase",
    "PhaseResult",
    "PlaybookResult",
    "Totals",
    "Vehicle",
    "Warning",
    "WarningCode",
]
