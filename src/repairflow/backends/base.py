"""Abstract collaborator interfaces for the estimate playbook.

The playbook never talks to a web page or HTTP endpoint directly. Each
external platform is reached through one of these interfaces, so DOM
heuristics, selectors and wire formats stay inside the implementations and
can be swapped per target platform.

Implementations raise ``PlaybookError`` subclasses (or set a
``failure_class`` hint) at the boundary where the failure is observed.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from repairflow.playbook.models import Vehicle
    from repairflow.session import Session
    from repairflow.sourcing.selector import Candidate


class CatalogScope(str, Enum):
    """Regions of the labor catalog an operation addresses."""

    TREE = "tree"
    """The category option set for the current tree level."""

    PROCEDURE = "procedure"
    """Leaf procedures listed once the tree is exhausted."""

    QUALIFIER = "qualifier"
    """Optional single-choice qualifier at the leaf."""

    ADD_ON = "add_on"
    """Optional multi-select add-ons at the leaf."""

    HOURS = "hours"
    """Billable duration read back after the leaf is confirmed."""


@dataclass(frozen=True)
class CategoryOption:
    """One option read from the remote option tree."""

    label: str
    level: int


@dataclass(frozen=True)
class VehicleStatus:
    """What the estimate page shows about its vehicle."""

    visible: bool
    """Vehicle text is present on the estimate."""

    confirmed: bool
    """The platform has accepted the vehicle (its dependent actions are enabled)."""


class CatalogBrowser(ABC):
    """Read and manipulate the labor catalog in a remote browser session."""

    @abstractmethod
    async def list_options(self, scope: CatalogScope) -> list[CategoryOption]:
        """Return the options currently visible in ``scope``."""
        ...

    @abstractmethod
    async def select(self, scope: CatalogScope, label: str) -> bool:
        """Click/select ``label`` in ``scope``. Returns False if it was not found."""
        ...

    @abstractmethod
    async def read_value(self, scope: CatalogScope) -> Any:
        """Read a text or numeric field, e.g. the billable hours."""
        ...

    @abstractmethod
    async def can_confirm(self) -> bool:
        """Whether the terminal confirm action is available."""
        ...

    @abstractmethod
    async def confirm(self) -> bool:
        """Invoke the terminal confirm action."""
        ...


class Categorizer(ABC):
    """External language-model categorization service."""

    @abstractmethod
    async def ask(self, prompt: str) -> str | None:
        """Return a short text answer, or None when no decision could be made.

        An empty or unusable answer must be reported as None, never raised.
        """
        ...


class PartsMarketplace(ABC):
    """Parts marketplace reached from the estimate page."""

    @abstractmethod
    async def open(self) -> bool:
        """Open the marketplace for the current estimate. False if unavailable."""
        ...

    @abstractmethod
    async def search(self, term: str) -> list[Candidate]:
        """Search for ``term`` and return the priced results."""
        ...

    @abstractmethod
    async def add_to_cart(self, candidate: Candidate) -> bool:
        ...

    @abstractmethod
    async def submit_cart(self) -> bool:
        """Send the cart back to the estimate."""
        ...

    async def close(self) -> None:
        """Close the marketplace view. Default does nothing."""
        return None


class ShopPlatform(ABC):
    """Shop-workflow platform API."""

    @abstractmethod
    async def authenticate(self, session: Session) -> None:
        """Verify ``session`` against the platform; raise on rejection."""
        ...

    @abstractmethod
    async def search_customer(self, query: str) -> dict[str, Any] | None:
        """Return the first customer matching ``query`` (phone or name)."""
        ...

    @abstractmethod
    async def create_customer(
        self,
        first_name: str,
        last_name: str,
        phone: str | None = None,
        email: str | None = None,
    ) -> dict[str, Any]:
        ...

    @abstractmethod
    async def create_vehicle(self, customer_id: str, vehicle: Vehicle) -> dict[str, Any]:
        ...

    @abstractmethod
    async def create_estimate(
        self, customer_id: str, vehicle_id: str | None = None
    ) -> dict[str, Any]:
        ...

    @abstractmethod
    async def get_estimate(self, estimate_id: str) -> dict[str, Any] | None:
        ...

    @abstractmethod
    async def export_document(self, estimate_id: str) -> bytes:
        """Fetch the rendered estimate document."""
        ...


class EstimateWorkspace(ABC):
    """The remote browser session a run owns exclusively.

    Attached during authentication and always released at the end of the
    run, including on error paths.
    """

    @abstractmethod
    async def attach(self, session: Session) -> None:
        ...

    @abstractmethod
    async def open_estimate(self, estimate_id: str) -> None:
        ...

    @abstractmethod
    async def vehicle_status(self) -> VehicleStatus:
        ...

    @abstractmethod
    async def link_parts(self, parts: list[Candidate]) -> int:
        """Link added parts to the labor service. Returns the number linked."""
        ...

    @abstractmethod
    async def save(self) -> None:
        ...

    @abstractmethod
    async def read_totals(self) -> dict[str, float] | None:
        """Authoritative ``labor``/``parts``/``grand`` totals, or None."""
        ...

    @abstractmethod
    async def release(self) -> None:
        """Detach from the remote session."""
        ...


__all__ = [
    "CatalogBrowser",
    "CatalogScope",
    "Categorizer",
    "CategoryOption",
    "EstimateWorkspace",
    "PartsMarketplace",
    "ShopPlatform",
    "VehicleStatus",
]
